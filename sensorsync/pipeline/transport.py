"""Point-to-point link between the origin device and its companion.

The link is an opaque "send bytes / receive bytes" channel: a payload is the
raw archive plus a delivery timestamp, addressed to one logical channel.
Delivery is best-effort and reports an immediate ack/failure result.

Implementations:
    QueueTransport — in-process FIFO link; ``QueueTransport.pair()`` wires an
                     origin endpoint to a companion endpoint.  The companion's
                     HTTP inbound route also feeds it via ``deliver()``.
    HttpTransport  — origin-side push to a companion's ``POST <channel>``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from sensorsync.pipeline.base import format_instant, utc_now
from sensorsync.pipeline.errors import TransportError

logger = logging.getLogger("sensorsync.pipeline.transport")

#: Logical channel every sensor payload is addressed to.
DEFAULT_CHANNEL = "/sensor-data"

TIMESTAMP_HEADER = "X-Sensor-Timestamp"
CHANNEL_HEADER = "X-Sensor-Channel"


@dataclass(frozen=True)
class TransportPayload:
    """Archive bytes in flight between the two devices."""

    channel: str
    data: bytes = field(repr=False)
    timestamp: datetime

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TransportResult:
    acknowledged: bool
    detail: str = ""


class Transport(ABC):
    """Abstract base class for a device-to-device link.

    ``send`` reports refusal through :class:`TransportResult`; a link that
    cannot be used at all raises :class:`TransportError`.
    """

    def __init__(self, channel: str = DEFAULT_CHANNEL) -> None:
        self.channel = channel

    @abstractmethod
    async def send(self, payload: TransportPayload) -> TransportResult:
        """Deliver one payload to the peer."""

    @abstractmethod
    async def receive(self) -> TransportPayload | None:
        """Return the next pending inbound payload, or None if there is none."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True when the peer is currently reachable."""

    def make_payload(self, data: bytes, timestamp: datetime | None = None) -> TransportPayload:
        return TransportPayload(channel=self.channel, data=data, timestamp=timestamp or utc_now())

    async def close(self) -> None:
        """Release any resources held by the link."""


# ---------------------------------------------------------------------------
# In-process link
# ---------------------------------------------------------------------------


class QueueTransport(Transport):
    """In-process link backed by asyncio queues.

    Each endpoint owns an inbound queue.  ``send`` appends to the peer's
    inbound queue; ``receive`` pops from its own without waiting.
    """

    def __init__(self, channel: str = DEFAULT_CHANNEL) -> None:
        super().__init__(channel)
        self._inbound: asyncio.Queue[TransportPayload] = asyncio.Queue()
        self._peer: QueueTransport | None = None
        self.available = True

    @classmethod
    def pair(cls, channel: str = DEFAULT_CHANNEL) -> tuple["QueueTransport", "QueueTransport"]:
        """Return a connected (origin, companion) pair."""
        origin, companion = cls(channel), cls(channel)
        origin._peer, companion._peer = companion, origin
        return origin, companion

    @property
    def pending(self) -> int:
        return self._inbound.qsize()

    def deliver(self, payload: TransportPayload) -> None:
        """Enqueue an inbound payload on this endpoint.

        Raises:
            TransportError: If the payload is addressed to another channel.
        """
        if payload.channel != self.channel:
            raise TransportError(
                f"Payload addressed to {payload.channel!r}, endpoint listens on {self.channel!r}"
            )
        self._inbound.put_nowait(payload)
        logger.debug("Queued %d-byte payload on %s", payload.size, self.channel)

    async def send(self, payload: TransportPayload) -> TransportResult:
        if self._peer is None:
            raise TransportError("Endpoint is not paired with a peer")
        if not (self.available and self._peer.available):
            raise TransportError("Peer is not reachable")
        try:
            self._peer.deliver(payload)
        except TransportError as exc:
            return TransportResult(acknowledged=False, detail=str(exc))
        return TransportResult(acknowledged=True, detail=f"delivered {payload.size} bytes")

    async def receive(self) -> TransportPayload | None:
        try:
            return self._inbound.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def is_available(self) -> bool:
        if not self.available:
            return False
        return self._peer is None or self._peer.available


# ---------------------------------------------------------------------------
# HTTP push link
# ---------------------------------------------------------------------------


class HttpTransport(Transport):
    """Origin-side link that POSTs archives to the companion's inbound route.

    Push-only: there is nothing to receive on the origin side.

    Args:
        base_url:    Companion base URL, e.g. ``http://companion.local:8000``.
        channel:     Path of the inbound route.
        timeout:     Request timeout in seconds.
        http_client: Optional pre-configured httpx client (for testing).
    """

    def __init__(
        self,
        base_url: str,
        channel: str = DEFAULT_CHANNEL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(channel)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}{self.channel}"

    async def send(self, payload: TransportPayload) -> TransportResult:
        headers = {
            "Content-Type": "application/zip",
            TIMESTAMP_HEADER: format_instant(payload.timestamp),
            CHANNEL_HEADER: payload.channel,
        }
        try:
            response = await self._client.post(self.endpoint, content=payload.data, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"POST {self.endpoint} failed: {exc}") from exc

        if response.is_success:
            return TransportResult(acknowledged=True, detail=f"HTTP {response.status_code}")
        logger.warning("Companion refused payload: HTTP %d", response.status_code)
        return TransportResult(
            acknowledged=False, detail=f"HTTP {response.status_code}: {response.text[:200]}"
        )

    async def receive(self) -> TransportPayload | None:
        return None

    async def is_available(self) -> bool:
        try:
            response = await self._client.get(f"{self._base_url}/health")
        except httpx.HTTPError as exc:
            logger.debug("Companion health probe failed: %s", exc)
            return False
        return response.is_success

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
