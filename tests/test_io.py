"""Tests for webplab.io module."""

import json
import logging

import pytest

from webplab.io import atomic_write, load_json, save_json, setup_logging, write_bytes_atomic


class TestAtomicWrite:
    @pytest.mark.fast
    def test_creates_parent_and_writes(self, tmp_path):
        target = tmp_path / "nested" / "out.txt"
        with atomic_write(target) as f:
            f.write("hello")

        assert target.read_text() == "hello"
        assert [p.name for p in target.parent.iterdir()] == ["out.txt"]

    @pytest.mark.fast
    def test_failure_keeps_existing_file(self, tmp_path):
        target = tmp_path / "out.webp"
        target.write_bytes(b"previous")

        with pytest.raises(RuntimeError):
            with atomic_write(target, "wb") as f:
                f.write(b"partial")
                raise RuntimeError("encode crashed")

        assert target.read_bytes() == b"previous"
        assert [p.name for p in tmp_path.iterdir()] == ["out.webp"]

    @pytest.mark.fast
    def test_write_bytes(self, tmp_path):
        target = tmp_path / "a.webp"
        write_bytes_atomic(target, b"RIFF")
        assert target.read_bytes() == b"RIFF"


class TestJson:
    @pytest.mark.fast
    def test_round_trip_with_paths(self, tmp_path):
        target = tmp_path / "report.json"
        save_json({"source": tmp_path / "in.gif", "metrics": {"psnr": None}}, target)

        data = load_json(target)
        assert data["source"] == str(tmp_path / "in.gif")
        assert data["metrics"]["psnr"] is None
        assert target.read_text().startswith("{\n  ")

    @pytest.mark.fast
    def test_invalid_json(self, tmp_path):
        target = tmp_path / "broken.json"
        target.write_text("{")
        with pytest.raises(json.JSONDecodeError):
            load_json(target)


class TestSetupLogging:
    @pytest.mark.fast
    def test_file_handler(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            logger = setup_logging(tmp_path / "logs", "debug")
            logger.debug("written to file")
            for handler in root.handlers:
                handler.flush()

            (log_file,) = (tmp_path / "logs").glob("webplab_*.log")
            assert "written to file" in log_file.read_text()
            assert root.level == logging.DEBUG
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
