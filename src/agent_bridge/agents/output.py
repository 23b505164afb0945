"""Parse agent stdout into a reply and a session id.

Two grammars are recognized: a single JSON object carrying the reply under
``output``/``response``/``result``, and newline-delimited JSON events tagged by
``type``. Anything else, or parsed output that carries no reply text, is
passed through as raw text and marked degraded.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_REPLY_KEYS = ("output", "response", "result")
_SESSION_KEYS = ("sessionId", "session_id", "sessionID", "thread_id")


@dataclass(slots=True)
class ParsedOutput:
    output: str
    session_id: str
    grammar: str
    degraded: bool = False


def parse_agent_output(stdout: str, session_id: str) -> ParsedOutput:
    """Extract the reply; ``session_id`` is kept when the output names none."""

    text = stdout.strip()
    single = _load_object(text)
    if single is not None:
        reply = _reply_from(single)
        if reply is not None:
            return ParsedOutput(
                output=reply,
                session_id=_session_from(single) or session_id,
                grammar="json",
            )

    events = _load_events(text)
    if events is not None:
        parts: list[str] = []
        found_session: str | None = None
        for event in events:
            if found_session is None:
                found_session = _session_from(event)
            chunk = _event_text(event)
            if chunk:
                parts.append(chunk)
        if parts:
            return ParsedOutput(
                output="".join(parts),
                session_id=found_session or session_id,
                grammar="ndjson",
            )
        logger.warning("Agent event stream carried no reply text; using raw output.")
        return ParsedOutput(
            output=text,
            session_id=found_session or session_id,
            grammar="ndjson",
            degraded=True,
        )

    if single is not None:
        logger.warning("Agent JSON output carried no reply text; using raw output.")
        return ParsedOutput(
            output=text,
            session_id=_session_from(single) or session_id,
            grammar="json",
            degraded=True,
        )

    if text:
        logger.warning("Agent output did not match a known format; using raw text.")
    return ParsedOutput(output=text, session_id=session_id, grammar="raw", degraded=bool(text))


def _load_object(raw: str) -> dict[str, object] | None:
    if not raw.startswith("{"):
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _load_events(text: str) -> list[dict[str, object]] | None:
    events: list[dict[str, object]] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        event = _load_object(stripped)
        if event is None or not isinstance(event.get("type"), str):
            return None
        events.append(event)
    return events or None


def _event_text(event: dict[str, object]) -> str | None:
    event_type = event.get("type")
    if event_type == "text":
        direct = event.get("text")
        if isinstance(direct, str):
            return direct
        part = event.get("part")
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            return part["text"]
        return None
    if event_type == "item.completed":
        item = event.get("item")
        if (
            isinstance(item, dict)
            and item.get("type") == "agent_message"
            and isinstance(item.get("text"), str)
        ):
            return item["text"]
    return None


def _reply_from(payload: dict[str, object]) -> str | None:
    for key in _REPLY_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _session_from(payload: dict[str, object]) -> str | None:
    found = _first_string(payload, _SESSION_KEYS)
    if found:
        return found
    part = payload.get("part")
    if isinstance(part, dict):
        return _first_string(part, _SESSION_KEYS) or None
    return None


def _first_string(payload: dict[str, object], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None
