"""Reading producers for sensorsync.

Each producer implements the ReadingProducer ABC and pushes records of a
single sensor kind to a sink:

Available producers:
    SyntheticProducer — fixed-rate generator of plausible values
    HardwareProducer  — bridge from a platform sensor callback
"""

from __future__ import annotations

from typing import Mapping

from sensorsync.pipeline.base import SensorKind
from sensorsync.pipeline.config_loader import CollectionConfig
from sensorsync.pipeline.producers.base import ReadingProducer, RecordSink
from sensorsync.pipeline.producers.hardware import HardwareProducer, SensorSource
from sensorsync.pipeline.producers.synthetic import SyntheticProducer

__all__ = [
    "HardwareProducer",
    "ReadingProducer",
    "RecordSink",
    "SensorSource",
    "SyntheticProducer",
    "build_producers",
    "get_producer",
]

# Registry: producer_id → producer class
PRODUCER_REGISTRY: dict[str, type[ReadingProducer]] = {
    "synthetic": SyntheticProducer,
    "hardware": HardwareProducer,
}


def get_producer(producer_id: str) -> type[ReadingProducer]:
    """Return the producer class for a given slug.

    Args:
        producer_id: 'synthetic' or 'hardware'

    Raises:
        KeyError: If the producer_id is not registered.
    """
    if producer_id not in PRODUCER_REGISTRY:
        raise KeyError(
            f"No producer registered for '{producer_id}'. "
            f"Available: {list(PRODUCER_REGISTRY)}"
        )
    return PRODUCER_REGISTRY[producer_id]


def build_producers(
    config: CollectionConfig,
    hardware: Mapping[SensorKind, SensorSource] | None = None,
) -> list[ReadingProducer]:
    """One producer per sensor kind: hardware where available, synthetic otherwise."""
    hardware = hardware or {}
    producers: list[ReadingProducer] = []
    for kind in SensorKind:
        source = hardware.get(kind)
        if source is not None:
            producers.append(HardwareProducer(kind, source))
        else:
            producers.append(SyntheticProducer(kind, config))
    return producers
