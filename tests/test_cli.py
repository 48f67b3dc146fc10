"""
tests/test_cli.py — Command-line entry point exit codes.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pictovoice.main import _build_parser, main


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "pictovoice.yaml"
    path.write_text(
        "proxy:\n"
        "  base_url: \"http://127.0.0.1:1\"\n"
        "  probe_timeout_ms: 2000\n"
        f"logging:\n  log_dir: \"{(tmp_path / 'logs').as_posix()}\"\n",
        encoding="utf-8",
    )
    return path


def test_missing_config_exits_2(capsys) -> None:
    assert main(["--config", "/nonexistent/pictovoice.yaml", "check"]) == 2
    assert "Config file not found" in capsys.readouterr().err


def test_command_required() -> None:
    with pytest.raises(SystemExit):
        _build_parser().parse_args([])


def test_check_unreachable_proxy_exits_1(config_file: Path, capsys) -> None:
    assert main(["--config", str(config_file), "check"]) == 1
    assert "[FAIL] http://127.0.0.1:1: unavailable" in capsys.readouterr().out


def test_simulate_unknown_key(config_file: Path, capsys) -> None:
    assert main(["--config", str(config_file), "simulate", "--keys", "self,unicorn"]) == 2
    assert "unicorn" in capsys.readouterr().err
