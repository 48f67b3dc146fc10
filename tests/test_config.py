"""
tests/test_config.py — Config loading, constants and the JSONL event logger.
"""

from __future__ import annotations

import json
import os
import unittest
from pathlib import Path
from unittest.mock import patch

import pytest

from pictovoice.core.config import PictoConfig, load_config
from pictovoice.core.constants import C
from pictovoice.core.logger import EventLogger, get_logger


def _write_yaml(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:

    def test_partial_file_keeps_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(_write_yaml(tmp_path / "c.yaml", "dwell:\n  dwell_ms: 1500\n"))
        assert cfg.dwell.dwell_ms == 1500
        assert cfg.proxy == PictoConfig().proxy
        assert cfg.board.columns == 4

    def test_lists_become_tuples(self, tmp_path: Path) -> None:
        cfg = load_config(
            _write_yaml(
                tmp_path / "c.yaml",
                "proxy:\n  retry_delays_ms: [100, 200]\n"
                "server:\n  allowed_origins: ['http://a']\n",
            )
        )
        assert cfg.proxy.retry_delays_ms == (100, 200)
        assert cfg.server.allowed_origins == ("http://a",)

    def test_bundled_file_matches_defaults(self) -> None:
        bundled = Path(__file__).resolve().parent.parent / "config" / "pictovoice.yaml"
        cfg = load_config(bundled)
        assert cfg.proxy.retry_delays_ms == C.RETRY_DELAYS_MS
        assert cfg.dwell.dwell_ms == C.DWELL_DEFAULT_MS
        assert cfg.server.port == 3002

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_env_var_is_used(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "env.yaml", "gaze:\n  smoothing_alpha: 0.5\n")
        with patch.dict(os.environ, {"PICTOVOICE_CONFIG": str(path)}):
            assert load_config().gaze.smoothing_alpha == 0.5

    @pytest.mark.parametrize(
        "text",
        [
            "gaze:\n  smoothing_alpha: 0\n",
            "dwell:\n  dwell_ms: 100\n",
            "proxy:\n  retry_delays_ms: []\n",
            "proxy:\n  max_retries: -1\n",
            "tts:\n  volume: 2.0\n",
            "gaze:\n  unknown_key: 1\n",
            "- just\n- a list\n",
        ],
    )
    def test_invalid_values(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ValueError):
            load_config(_write_yaml(tmp_path / "bad.yaml", text))


class TestConstants(unittest.TestCase):

    def test_retry_table(self) -> None:
        self.assertEqual(C.RETRY_DELAYS_MS, (2000, 5000, 10000))
        self.assertEqual(C.MAX_RETRIES, 3)

    def test_timeouts(self) -> None:
        self.assertEqual(C.PROBE_TIMEOUT_MS, 5000)
        self.assertEqual(C.GENERATION_TIMEOUT_MS, 10000)
        self.assertEqual(C.CHECK_INTERVAL_MS, 30000)

    def test_dwell_bounds(self) -> None:
        self.assertLessEqual(C.DWELL_MIN_MS, C.DWELL_DEFAULT_MS)
        self.assertLessEqual(C.DWELL_DEFAULT_MS, C.DWELL_MAX_MS)
        self.assertEqual(C.SELECTION_CAPACITY, 3)

    def test_validate_does_not_raise(self) -> None:
        C.validate()


class TestEventLogger:

    def _lines(self, log_dir: Path) -> list:
        files = list(log_dir.glob("pictovoice_*.jsonl"))
        assert len(files) == 1
        return [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]

    def test_writes_jsonl_entries(self, tmp_path: Path) -> None:
        log = EventLogger(tmp_path)
        log.info("dwell", "commit", {"key": "water"})
        log.perf("composer", "remote_done", 12.34567)
        log.close()

        lines = self._lines(tmp_path)
        assert lines[0]["event"] == "startup"
        assert lines[1]["phase"] == "dwell"
        assert lines[1]["data"] == {"key": "water"}
        assert "latency_ms" not in lines[1]
        assert lines[2]["level"] == "PERF"
        assert lines[2]["latency_ms"] == 12.346

    def test_warn_and_error_levels(self, tmp_path: Path) -> None:
        log = EventLogger(tmp_path)
        log.warn("availability", "probe_failed", {"error": "timed out"})
        log.error("server", "generation_failed")
        log.close()
        levels = [entry["level"] for entry in self._lines(tmp_path)[1:]]
        assert levels == ["WARN", "ERROR"]

    def test_level_filter_keeps_perf(self, tmp_path: Path) -> None:
        log = EventLogger(tmp_path, level="INFO")
        log.debug("dwell", "tick")
        log.perf("server", "generated", 5.0)
        log.close()
        log.info("dwell", "after_close")
        events = [entry["event"] for entry in self._lines(tmp_path)]
        assert events == ["startup", "generated"]

    def test_singleton(self) -> None:
        assert get_logger() is get_logger()


if __name__ == "__main__":
    unittest.main()
