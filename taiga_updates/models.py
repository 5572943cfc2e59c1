from __future__ import annotations

import enum
import urllib.parse
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, TYPE_CHECKING

from .errors import DecodeError

if TYPE_CHECKING:
    from .repo import PendingPush


def unescape_text(value: str, field_name: str) -> str:
    try:
        return urllib.parse.unquote(value, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise DecodeError(field_name, f"invalid percent-encoding ({exc.reason})") from exc


@dataclass(frozen=True)
class Episode:
    title: str = ""
    number: int = 0

    def decoded(self, unescape: Callable[[str, str], str] = unescape_text) -> "Episode":
        return replace(self, title=unescape(self.title, "current_ep.title"))


@dataclass(frozen=True)
class TaigaUpdate:
    title: str = ""
    url: str = ""
    image_url: str = ""
    total_eps: int = 0
    watched_eps: int = 0
    rewatching: bool = False
    current_episode: Episode = field(default_factory=Episode)

    def decoded(self, unescape: Callable[[str, str], str] = unescape_text) -> "TaigaUpdate":
        """Return a copy with every text field percent-decoded."""
        return replace(
            self,
            title=unescape(self.title, "title"),
            url=unescape(self.url, "url"),
            image_url=unescape(self.image_url, "image"),
            current_episode=self.current_episode.decoded(unescape),
        )

    def template_context(self) -> dict[str, object]:
        return {
            "Title": self.title,
            "Url": self.url,
            "ImageUrl": self.image_url,
            "TotalEps": self.total_eps,
            "WatchedEps": self.watched_eps,
            "Rewatching": self.rewatching,
            "CurrentEpisode": {
                "Title": self.current_episode.title,
                "Number": self.current_episode.number,
            },
        }


class PipelineStage(str, enum.Enum):
    RECEIVED = "received"
    DECODED = "decoded"
    RENDERED = "rendered"
    WRITTEN = "written"
    COMMITTED = "committed"
    PUSH_LAUNCHED = "push_launched"


class CommitOutcome(str, enum.Enum):
    CHANGED = "changed"
    NOOP = "noop"


@dataclass
class PublishResult:
    stage: PipelineStage
    commit: Optional[CommitOutcome] = None
    commit_sha: Optional[str] = None
    push: Optional["PendingPush"] = None
