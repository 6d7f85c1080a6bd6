"""Tests for configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tracksync.config import DEFAULTS, ENV_MAP, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for env_name in ENV_MAP.values():
        monkeypatch.delenv(env_name, raising=False)


def test_defaults_without_file(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.json")

    assert cfg["DATABASE_PATH"] == Path(DEFAULTS["DATABASE_PATH"]).expanduser()
    assert cfg["LOG_LEVEL"] == "INFO"
    assert cfg["DUPLICATE_THRESHOLD"] == 0.6
    assert cfg["COPY_CHUNK_SIZE"] == 1024 * 1024


def test_file_values_are_coerced(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {"DATABASE_PATH": "~/music-db", "LOG_LEVEL": "debug", "COPY_CHUNK_SIZE": "4096"}
        )
    )

    cfg = load_config(path)

    assert cfg["DATABASE_PATH"] == Path("~/music-db").expanduser()
    assert cfg["LOG_LEVEL"] == "DEBUG"
    assert cfg["COPY_CHUNK_SIZE"] == 4096


def test_environment_wins_over_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"DUPLICATE_THRESHOLD": 0.9}))
    monkeypatch.setenv("TRACKSYNC_DUPLICATE_THRESHOLD", "0.75")
    monkeypatch.setenv("TRACKSYNC_DATABASE_PATH", str(tmp_path / "db"))

    cfg = load_config(path)

    assert cfg["DUPLICATE_THRESHOLD"] == 0.75
    assert cfg["DATABASE_PATH"] == tmp_path / "db"


def test_invalid_values_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"DUPLICATE_THRESHOLD": "high", "COPY_CHUNK_SIZE": -1}))

    cfg = load_config(path)

    assert cfg["DUPLICATE_THRESHOLD"] == DEFAULTS["DUPLICATE_THRESHOLD"]
    assert cfg["COPY_CHUNK_SIZE"] == DEFAULTS["COPY_CHUNK_SIZE"]


def test_unreadable_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert load_config(path)["LOG_LEVEL"] == "INFO"
