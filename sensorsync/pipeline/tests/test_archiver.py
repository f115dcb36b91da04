"""Tests for archive creation, confined extraction, and archive listing."""

from __future__ import annotations

import os
import time
import zipfile
from pathlib import Path

import pytest

from sensorsync.pipeline.archiver import (
    archive_name,
    create_archive,
    extract_archive,
    list_archives,
    save_archive,
)
from sensorsync.pipeline.base import KNOWN_FILE_NAMES, SensorKind
from sensorsync.pipeline.errors import PathTraversalError, PipelineIOError
from sensorsync.pipeline.tests.conftest import T0


def _zip_with(path: Path, entries: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


class TestCreateArchive:
    def test_missing_source_dir_returns_none(self, tmp_path: Path) -> None:
        assert create_archive(tmp_path / "nope", tmp_path / "out") is None

    def test_only_known_present_files_are_added(self, tmp_path: Path) -> None:
        source = tmp_path / "logs"
        source.mkdir()
        (source / "eda.csv").write_text("timestamp,eda_value\n")
        (source / "notes.txt").write_text("ignored")

        archive = create_archive(source, tmp_path / "out")

        assert archive is not None
        with zipfile.ZipFile(archive) as zf:
            assert zf.namelist() == ["eda.csv"]

    def test_source_logs_are_left_untouched(self, sample_log_dir: Path, tmp_path: Path) -> None:
        before = {p.name: p.read_bytes() for p in sample_log_dir.iterdir()}
        create_archive(sample_log_dir, tmp_path / "out")
        after = {p.name: p.read_bytes() for p in sample_log_dir.iterdir()}
        assert before == after

    def test_empty_source_dir_gives_empty_archive(self, tmp_path: Path) -> None:
        source = tmp_path / "logs"
        source.mkdir()
        archive = create_archive(source, tmp_path / "out")
        assert archive is not None
        with zipfile.ZipFile(archive) as zf:
            assert zf.namelist() == []

    def test_same_second_archives_do_not_collide(self, sample_log_dir: Path, tmp_path: Path) -> None:
        first = create_archive(sample_log_dir, tmp_path / "out")
        second = create_archive(sample_log_dir, tmp_path / "out")
        assert first != second
        assert first.exists() and second.exists()


class TestRoundTrip:
    def test_extract_reproduces_identical_bytes(self, sample_log_dir: Path, tmp_path: Path) -> None:
        """extract(create(dir)) gives byte-identical copies of every log."""
        archive = create_archive(sample_log_dir, tmp_path / "out")
        dest = tmp_path / "dest"

        extracted = extract_archive(archive, dest)

        assert sorted(p.name for p in extracted) == sorted(KNOWN_FILE_NAMES)
        for kind in SensorKind:
            assert (dest / kind.file_name).read_bytes() == (
                sample_log_dir / kind.file_name
            ).read_bytes()


class TestPathConfinement:
    @pytest.mark.parametrize(
        "entry_name",
        ["../evil.csv", "../../etc/passwd", "sub/../../evil.csv", "/tmp/abs_evil.csv"],
    )
    def test_escaping_entry_is_rejected(self, tmp_path: Path, entry_name: str) -> None:
        archive = _zip_with(tmp_path / "bad.zip", {entry_name: b"pwned"})
        dest = tmp_path / "extract" / "dest"

        with pytest.raises(PathTraversalError) as exc_info:
            extract_archive(archive, dest)

        assert exc_info.value.entry_name == entry_name
        assert not (tmp_path / "extract" / "evil.csv").exists()
        assert not (tmp_path / "evil.csv").exists()

    def test_one_bad_entry_aborts_whole_archive(self, tmp_path: Path) -> None:
        """No entry is written, not even the benign ones listed before the bad one."""
        archive = _zip_with(
            tmp_path / "mixed.zip",
            {"eda.csv": b"timestamp,eda_value\n", "../evil.csv": b"pwned"},
        )
        dest = tmp_path / "dest"

        with pytest.raises(PathTraversalError):
            extract_archive(archive, dest)

        assert not (dest / "eda.csv").exists()
        assert not (tmp_path / "evil.csv").exists()

    def test_path_traversal_is_an_io_error(self) -> None:
        assert issubclass(PathTraversalError, PipelineIOError)

    def test_corrupt_archive_raises_pipeline_io_error(self, tmp_path: Path) -> None:
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"definitely not a zip")
        with pytest.raises(PipelineIOError):
            extract_archive(bogus, tmp_path / "dest")


class TestInboxHelpers:
    def test_archive_name_format(self) -> None:
        assert archive_name(T0) == "sensordata_20240101_100000.zip"

    def test_save_archive_writes_bytes(self, tmp_path: Path) -> None:
        path = save_archive(b"PK\x05\x06" + b"\x00" * 18, tmp_path / "inbox", T0)
        assert path.name == "sensordata_20240101_100000.zip"
        assert path.read_bytes().startswith(b"PK")

    def test_list_archives_newest_first(self, tmp_path: Path) -> None:
        now = time.time()
        for i in range(3):
            p = tmp_path / f"sensordata_2024010{i + 1}_000000.zip"
            p.write_bytes(b"x")
            os.utime(p, (now - 100 + i, now - 100 + i))
        (tmp_path / "other.zip").write_bytes(b"x")

        names = [p.name for p in list_archives(tmp_path)]

        assert names == [
            "sensordata_20240103_000000.zip",
            "sensordata_20240102_000000.zip",
            "sensordata_20240101_000000.zip",
        ]

    def test_list_archives_missing_dir(self, tmp_path: Path) -> None:
        assert list_archives(tmp_path / "missing") == []
