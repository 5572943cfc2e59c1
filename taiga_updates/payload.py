from __future__ import annotations

import json
from typing import Any

from .errors import MalformedPayload
from .models import Episode, TaigaUpdate

# Taiga sends 32-bit counts.
MAX_INT = 2**31 - 1

# Taiga sharing format:
# {"title":"%title%","url":"%animeurl%","image":"%image%","total_eps":%total%,"watched_eps":%watched%,
#  "rewatching":$if(%rewatching%,true,false),"current_ep":{"id":%episode%,"title":"%name%"}}


def _text(data: dict, key: str, label: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedPayload(f"{label} must be a string")
    return value


def _integer(data: dict, key: str, label: str, *, minimum: int | None = None) -> int:
    value = data.get(key, 0)
    if value is None:
        return 0
    # bool is an int subclass; JSON true/false is not a count.
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedPayload(f"{label} must be an integer")
    if minimum is not None and value < minimum:
        raise MalformedPayload(f"{label} must be >= {minimum}")
    if not -MAX_INT - 1 <= value <= MAX_INT:
        raise MalformedPayload(f"{label} is out of range")
    return value


def _flag(data: dict, key: str, label: str) -> bool:
    value = data.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedPayload(f"{label} must be a boolean")
    return value


def _episode(data: dict) -> Episode:
    raw: Any = data.get("current_ep")
    if raw is None:
        return Episode()
    if not isinstance(raw, dict):
        raise MalformedPayload("current_ep must be an object")
    return Episode(
        title=_text(raw, "title", "current_ep.title"),
        number=_integer(raw, "id", "current_ep.id"),
    )


def load_update(body: bytes) -> TaigaUpdate:
    """Parse the request body without touching the percent-encoding."""
    try:
        data = json.loads(body.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise MalformedPayload(f"body is not UTF-8: {exc.reason}") from exc
    except json.JSONDecodeError as exc:
        raise MalformedPayload(f"invalid JSON: {exc}") from exc
    except ValueError as exc:
        # int literals past the interpreter's digit limit
        raise MalformedPayload(f"invalid JSON number: {exc}") from exc
    except RecursionError as exc:
        raise MalformedPayload("JSON nested too deeply") from exc
    if not isinstance(data, dict):
        raise MalformedPayload("body must be a JSON object")

    return TaigaUpdate(
        title=_text(data, "title", "title"),
        url=_text(data, "url", "url"),
        image_url=_text(data, "image", "image"),
        total_eps=_integer(data, "total_eps", "total_eps", minimum=0),
        watched_eps=_integer(data, "watched_eps", "watched_eps", minimum=0),
        rewatching=_flag(data, "rewatching", "rewatching"),
        current_episode=_episode(data),
    )


def parse_payload(body: bytes) -> TaigaUpdate:
    return load_update(body).decoded()
