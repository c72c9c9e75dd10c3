# kerits/codec/stream.py
"""
Event stream codec.

A stream is a sequence of version-prefixed JSON bodies written back to back:

    -KERI10JSON00012b_{"a":[],"b":[],...}-KERI10JSON0000f3_{...}

The parser does not rely on the prefixes. It scans for brace-balanced
objects (string and escape aware), skipping whatever framing sits between
them, so the same routine reads the stream form and the JSON array form.
"""

import json
import re
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import structlog

from kerits.core.canon import canonical_json, canonical_json_str
from kerits.core.errors import MalformedInput
from kerits.core.events import Event, decode_event

log = structlog.get_logger(__name__)

Body = Union[Event, Dict[str, Any]]

VERSION_PREFIX_RE = re.compile(r"-(KERI|ACDC)[0-9a-f]{2}(JSON|CBOR|MGPK)[0-9a-f]{6}_")
FRAMED_TAIL_RE = re.compile(VERSION_PREFIX_RE.pattern + r"\Z")


def to_text(data: Union[str, bytes, bytearray]) -> str:
    if isinstance(data, (bytes, bytearray)):
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput(f"Stream is not valid UTF-8: {e}") from e
    if not isinstance(data, str):
        raise MalformedInput(f"Expected str or bytes, got {type(data).__name__}")
    return data


def _as_dict(body: Body) -> Dict[str, Any]:
    return body.to_dict() if isinstance(body, Event) else body


def _scan(text: str, start: int) -> Tuple[Optional[int], Optional[int]]:
    """
    Scan the object opening at `start`.
    Returns (end, None) when it closes, (None, offset) when a version prefix
    shows up inside it, and (None, None) when the text runs out first.
    """
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx + 1, None
        elif ch == "-" and VERSION_PREFIX_RE.match(text, idx):
            return None, idx
    return None, None


def _framed(text: str, start: int) -> bool:
    """True if the brace at `start` sits where a body is expected."""
    head = text[:start].rstrip()
    return not head or head[-1] in "[," or bool(FRAMED_TAIL_RE.search(head))


def iter_objects(text: str) -> Iterator[tuple]:
    """
    Yield (offset, text) of each complete top-level JSON object.

    A brace in the framing noise that never closes is skipped. An unclosed
    object right after a version prefix, `[` or `,` is a truncated body and
    ends the scan.
    """
    pos = 0
    while True:
        start = text.find("{", pos)
        if start < 0:
            return
        end, restart = _scan(text, start)
        if end is not None:
            yield start, text[start:end]
            pos = end
        elif restart is not None:
            log.debug("stream_noise_skipped", offset=start, skipped=restart - start)
            pos = restart
        elif _framed(text, start):
            log.debug("stream_tail_truncated", offset=start, dropped=len(text) - start)
            return
        else:
            log.debug("stream_noise_skipped", offset=start, skipped=1)
            pos = start + 1


def parse_stream(data: Union[str, bytes, bytearray]) -> List[Dict[str, Any]]:
    """
    Split `data` into raw event bodies.
    An incomplete trailing object is dropped; a complete object that is not
    valid JSON raises MalformedInput.
    """
    bodies = []
    for offset, chunk in iter_objects(to_text(data)):
        try:
            body = json.loads(chunk)
        except json.JSONDecodeError as e:
            raise MalformedInput(f"Invalid JSON object at offset {offset}: {e.msg}") from e
        bodies.append(body)
    return bodies


def serialize_stream(bodies: Iterable[Body]) -> bytes:
    """Concatenate `-<version>` + canonical body for each event."""
    out = bytearray()
    for body in bodies:
        sad = _as_dict(body)
        version = sad.get("v")
        if not isinstance(version, str):
            raise MalformedInput("Body has no version string")
        out += b"-" + version.encode("ascii") + canonical_json(sad)
    return bytes(out)


def to_json_array(bodies: Iterable[Body]) -> str:
    return "[" + ",".join(canonical_json_str(_as_dict(b)) for b in bodies) + "]"


def from_json_array(text: Union[str, bytes]) -> List[Dict[str, Any]]:
    try:
        items = json.loads(to_text(text))
    except json.JSONDecodeError as e:
        raise MalformedInput(f"Invalid JSON array: {e.msg}") from e
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise MalformedInput("Expected a JSON array of event objects")
    return items


def decode_events(data: Union[str, bytes, bytearray, List[Dict[str, Any]]]) -> List[Event]:
    """Parse any supported input shape into typed events."""
    bodies = data if isinstance(data, list) else parse_stream(data)
    return [decode_event(body) for body in bodies]


__all__ = [
    "iter_objects", "parse_stream", "serialize_stream",
    "to_json_array", "from_json_array", "decode_event", "decode_events",
]
