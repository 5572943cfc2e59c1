from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from .errors import ConfigError

ENV_PREFIX = "TAIGA_UPDATES_"


def read_env(name: str, default: Optional[str] = None) -> Optional[str]:
    key = f"{ENV_PREFIX}{name}"
    value = os.getenv(key)
    if value not in {None, ""}:
        return value

    file_var = os.getenv(f"{key}_FILE")
    if not file_var:
        return default

    try:
        content = Path(file_var).read_text(encoding="utf-8")
    except OSError:
        return default
    return content.rstrip("\r\n")


def read_int_env(name: str, default: int) -> int:
    raw = read_env(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc
