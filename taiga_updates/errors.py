from __future__ import annotations

from typing import Optional


class MalformedPayload(ValueError):
    """The request body is not the JSON object Taiga sends."""


class DecodeError(MalformedPayload):
    """A text field carries a percent-escape that does not decode."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class TemplateCompileError(ValueError):
    pass


class ConfigError(ValueError):
    pass


class PublishError(RuntimeError):
    stage = "publish"


class WriteError(PublishError):
    stage = "write"


class CommitError(PublishError):
    stage = "commit"

    def __init__(self, message: str, stderr: Optional[str] = None) -> None:
        super().__init__(message)
        self.stderr = stderr


class PushError(PublishError):
    stage = "push"
