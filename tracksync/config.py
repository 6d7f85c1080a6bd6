#!/usr/bin/env python3
"""
Centralized configuration for tracksync with env var overrides.
- User config file: ~/.config/tracksync/config.json
- Precedence: environment > user config file > built-in defaults
- Types exposed to the app:
  - DATABASE_PATH: Path (directory holding the source catalog)
  - LOG_LEVEL: str
  - DUPLICATE_THRESHOLD: float
  - COPY_CHUNK_SIZE: int
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from rich.console import Console

logger = logging.getLogger(__name__)

# Paths
CONFIG_DIR = Path.home() / ".config" / "tracksync"
CONFIG_FILE = CONFIG_DIR / "config.json"

console = Console()

# Built-in defaults
DEFAULTS = {
    "DATABASE_PATH": str(CONFIG_DIR),
    "LOG_LEVEL": "INFO",
    # Minimum similarity for two album names to be reported as likely duplicates
    "DUPLICATE_THRESHOLD": 0.6,
    "COPY_CHUNK_SIZE": 1024 * 1024,
}

# Environment variable mapping
ENV_MAP = {
    "DATABASE_PATH": "TRACKSYNC_DATABASE_PATH",
    "LOG_LEVEL": "TRACKSYNC_LOG_LEVEL",
    "DUPLICATE_THRESHOLD": "TRACKSYNC_DUPLICATE_THRESHOLD",
    "COPY_CHUNK_SIZE": "TRACKSYNC_COPY_CHUNK_SIZE",
}


def _load_user_file(path: Path = CONFIG_FILE) -> Dict[str, Any]:
    if not path.exists():
        return DEFAULTS.copy()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        data = {}
    for k, v in DEFAULTS.items():
        data.setdefault(k, v)
    return data


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(cfg)
    for key, env_name in ENV_MAP.items():
        val = os.getenv(env_name)
        if val is None:
            continue
        out[key] = val
    return out


def _coerce_types(eff: Dict[str, Any]) -> Dict[str, Any]:
    eff["DATABASE_PATH"] = Path(str(eff["DATABASE_PATH"])).expanduser()
    eff["LOG_LEVEL"] = str(eff["LOG_LEVEL"]).upper()
    try:
        eff["DUPLICATE_THRESHOLD"] = float(eff["DUPLICATE_THRESHOLD"])
    except (TypeError, ValueError):
        eff["DUPLICATE_THRESHOLD"] = DEFAULTS["DUPLICATE_THRESHOLD"]
    try:
        eff["COPY_CHUNK_SIZE"] = int(eff["COPY_CHUNK_SIZE"])
    except (TypeError, ValueError):
        eff["COPY_CHUNK_SIZE"] = DEFAULTS["COPY_CHUNK_SIZE"]
    if eff["COPY_CHUNK_SIZE"] <= 0:
        eff["COPY_CHUNK_SIZE"] = DEFAULTS["COPY_CHUNK_SIZE"]
    return eff


def load_config(path: Path = CONFIG_FILE) -> Dict[str, Any]:
    """Load effective config: env > file > defaults, coerced to expected types."""
    file_cfg = _load_user_file(path)
    merged = DEFAULTS | file_cfg
    merged = _apply_env_overrides(merged)
    effective = _coerce_types(merged)
    return effective


# Exposed module-level config used by the CLI
config = load_config()
