from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import InvalidInputError


@dataclass(frozen=True)
class Settings:
    database: Path = Path("auction.sqlite")
    min_increment: int = 100
    busy_timeout_sec: float = 5.0
    finalize_requires_ended: bool = False
    notify_on_schedule: bool = True
    dead_letter_path: Optional[Path] = None
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(Settings)}
        d2 = {k: v for k, v in (d or {}).items() if k in known}

        for key in ("database", "dead_letter_path", "log_dir"):
            if d2.get(key) is not None:
                d2[key] = Path(str(d2[key]))

        if "min_increment" in d2:
            v = d2["min_increment"]
            if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
                raise InvalidInputError(f"min_increment must be a positive integer, got {v!r}", field="min_increment")
        if "busy_timeout_sec" in d2:
            v = d2["busy_timeout_sec"]
            if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
                raise InvalidInputError(f"busy_timeout_sec must be a number >= 0, got {v!r}", field="busy_timeout_sec")
            d2["busy_timeout_sec"] = float(v)
        for key in ("finalize_requires_ended", "notify_on_schedule"):
            if key in d2 and not isinstance(d2[key], bool):
                raise InvalidInputError(f"{key} must be true or false, got {d2[key]!r}", field=key)
        if "log_level" in d2:
            d2["log_level"] = str(d2["log_level"]).upper()

        return Settings(**d2)


def load_config_dict(path: Path) -> dict[str, Any]:
    data = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        loaded = yaml.safe_load(data) or {}
    else:
        loaded = json.loads(data)
    if not isinstance(loaded, dict):
        raise InvalidInputError(f"Config file {path} must contain a mapping")
    return loaded


def load_config(path: Optional[Path]) -> Settings:
    if path is None:
        return Settings()
    return Settings.from_dict(load_config_dict(path))
