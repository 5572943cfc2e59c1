from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import read_env, read_int_env
from .errors import ConfigError
from .pipeline import DEFAULT_REMOTE
from .repo import is_inside

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9797
DEFAULT_LOG_FILE = "log.txt"
DEFAULT_LOG_LEVEL = "DEBUG"


class UsageError(ConfigError):
    """A bad argument that should be reported together with the usage text."""


@dataclass(frozen=True)
class Settings:
    template: Path
    target: Path
    repo: Path
    remote: str = DEFAULT_REMOTE
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_file: Optional[Path] = Path(DEFAULT_LOG_FILE)
    log_level: int = logging.DEBUG


def _log_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level {raw!r}")
    return level


def load_settings(template: str, target: str, repo: str, remote: Optional[str] = None) -> Settings:
    template_path = Path(template)
    if not template_path.is_file():
        raise UsageError(f"File {template} does not exist!")

    repo_path = Path(repo)
    if not (repo_path / ".git").is_dir():
        raise UsageError(f"Repository {repo} does not exist!")

    target_path = Path(target).resolve()
    if not is_inside(target_path, repo_path):
        raise ConfigError(f"File {target_path} not in {repo_path.resolve()}!")

    port = read_int_env("PORT", DEFAULT_PORT)
    if not 0 < port < 65536:
        raise ConfigError(f"Port {port} is out of range")

    log_file = read_env("LOG_FILE", DEFAULT_LOG_FILE)
    return Settings(
        template=template_path,
        target=target_path,
        repo=repo_path.resolve(),
        remote=remote or DEFAULT_REMOTE,
        host=read_env("HOST", DEFAULT_HOST) or DEFAULT_HOST,
        port=port,
        log_file=None if (log_file or "").strip().lower() in {"", "none", "-"} else Path(log_file),
        log_level=_log_level(read_env("LOG_LEVEL", DEFAULT_LOG_LEVEL) or DEFAULT_LOG_LEVEL),
    )
