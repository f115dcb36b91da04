"""Single-file bundles of per-sensor logs.

An archive is a ZIP file holding zero or more of the four known sensor logs,
each stored under its bare file name.  Archives travel between devices as
opaque bytes, so extraction treats every entry name as untrusted input.
"""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from datetime import datetime
from pathlib import Path

from sensorsync.pipeline.base import KNOWN_FILE_NAMES, utc_now
from sensorsync.pipeline.errors import PathTraversalError, PipelineIOError

logger = logging.getLogger("sensorsync.pipeline.archiver")

ARCHIVE_PREFIX = "sensordata_"
ARCHIVE_SUFFIX = ".zip"
_COPY_CHUNK_BYTES = 64 * 1024


def archive_name(created_at: datetime | None = None) -> str:
    """Return the canonical archive file name for a creation instant."""
    stamp = (created_at or utc_now()).strftime("%Y%m%d_%H%M%S")
    return f"{ARCHIVE_PREFIX}{stamp}{ARCHIVE_SUFFIX}"


def _unique_path(directory: Path, name: str) -> Path:
    candidate = directory / name
    stem = candidate.stem
    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}{ARCHIVE_SUFFIX}"
        counter += 1
    return candidate


def create_archive(source_dir: Path | str, output_dir: Path | str) -> Path | None:
    """Bundle the known sensor logs found in ``source_dir`` into a new archive.

    Source logs are only read, never truncated or removed.

    Args:
        source_dir: Directory holding the per-sensor CSV logs.
        output_dir: Directory the archive is written to (created if missing).

    Returns:
        Path of the new archive, or None if ``source_dir`` does not exist.

    Raises:
        PipelineIOError: If a log cannot be read or the archive cannot be written.
    """
    source = Path(source_dir)
    if not source.is_dir():
        logger.info("No sensor data directory at %s; nothing to package", source)
        return None

    out_dir = Path(output_dir)
    archive_path: Path | None = None
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        archive_path = _unique_path(out_dir, archive_name())
        added: list[str] = []
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name in KNOWN_FILE_NAMES:
                log_path = source / name
                if log_path.is_file():
                    zf.write(log_path, arcname=name)
                    added.append(name)
    except (OSError, zipfile.BadZipFile) as exc:
        if archive_path is not None and archive_path.exists():
            archive_path.unlink()
        raise PipelineIOError(f"Failed to create archive from {source}: {exc}") from exc

    logger.info("Created archive %s with %d entries %s", archive_path.name, len(added), added)
    return archive_path


def save_archive(data: bytes, inbox_dir: Path | str, received_at: datetime | None = None) -> Path:
    """Persist received archive bytes to the inbox under a canonical name.

    Raises:
        PipelineIOError: If the inbox cannot be written.
    """
    inbox = Path(inbox_dir)
    try:
        inbox.mkdir(parents=True, exist_ok=True)
        target = _unique_path(inbox, archive_name(received_at))
        target.write_bytes(data)
    except OSError as exc:
        raise PipelineIOError(f"Failed to save received archive to {inbox}: {exc}") from exc
    logger.info("Saved received archive %s (%d bytes)", target.name, len(data))
    return target


def _confined_target(root: Path, entry_name: str) -> Path:
    """Resolve ``entry_name`` under ``root``, refusing anything that escapes it.

    ``root`` must already be canonical.  Absolute names, drive letters,
    parent-directory segments, and symlinked directories that point outside
    ``root`` all resolve to a path that is not contained in it.
    """
    target = Path(os.path.realpath(root / entry_name))
    if target == root or not target.is_relative_to(root):
        raise PathTraversalError(entry_name)
    return target


def extract_archive(archive_path: Path | str, dest_dir: Path | str) -> list[Path]:
    """Extract every entry of an archive into ``dest_dir``.

    All entry names are validated before any byte is written: a single
    entry resolving outside ``dest_dir`` rejects the whole archive.

    Args:
        archive_path: Archive to read.
        dest_dir:     Extraction root (created if missing).

    Returns:
        Paths of the extracted files, in archive order.

    Raises:
        PathTraversalError: If any entry would land outside ``dest_dir``.
        PipelineIOError:    If the archive is unreadable or a write fails.
    """
    dest = Path(dest_dir)
    try:
        dest.mkdir(parents=True, exist_ok=True)
        root = Path(os.path.realpath(dest))
        with zipfile.ZipFile(archive_path) as zf:
            members = zf.infolist()
            targets = [(info, _confined_target(root, info.filename)) for info in members]

            extracted: list[Path] = []
            for info, target in targets:
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst, _COPY_CHUNK_BYTES)
                extracted.append(target)
    except PathTraversalError:
        logger.error("Rejected archive %s: entry escapes %s", archive_path, dest)
        raise
    except (OSError, zipfile.BadZipFile) as exc:
        raise PipelineIOError(f"Failed to extract {archive_path}: {exc}") from exc

    logger.info("Extracted %d files from %s", len(extracted), Path(archive_path).name)
    return extracted


def list_archives(directory: Path | str) -> list[Path]:
    """Return archive artifacts in ``directory``, most recently modified first."""
    folder = Path(directory)
    if not folder.is_dir():
        return []
    archives = [
        p for p in folder.iterdir()
        if p.is_file() and p.name.startswith(ARCHIVE_PREFIX) and p.suffix == ARCHIVE_SUFFIX
    ]
    return sorted(archives, key=lambda p: p.stat().st_mtime, reverse=True)
