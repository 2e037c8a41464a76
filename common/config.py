# common/config.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict

import yaml

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = REPO_ROOT / "config" / "config.yaml"

def config_path() -> Path:
    return Path(os.getenv("INSPECT_CONFIG", str(DEFAULT_CONFIG_PATH)))

def load_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Load the YAML config. A missing file gives {} so every lookup
    falls through to its default / env fallback.
    """
    p = Path(path) if path else config_path()
    if not p.exists():
        return {}
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}

def section(cfg: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    """Nested dict lookup that tolerates missing / null sections."""
    cur: Any = cfg
    for k in keys:
        cur = cur.get(k, {}) if isinstance(cur, dict) else {}
        cur = cur or {}
    return cur if isinstance(cur, dict) else {}

def window_ms(cfg: Dict[str, Any]) -> int:
    # debounce and fallback windows share this one value
    return int(section(cfg, "aggregator").get("window_ms", os.getenv("AGG_WINDOW_MS", 1000)))
