# kerits/core/said.py
"""
Self-addressing identifiers.

A SAID is the digest of a body computed while the field that will hold it
contains a placeholder of exactly the encoded digest's length. Because the
placeholder and the final value have the same length, the version string's
size field is a fixed point: sizing with the placeholder gives the size of the
finished body.
"""

import re
from typing import Any, Dict, Iterable, Tuple

from kerits.core.canon import canonical_json
from kerits.core.encoding import MatterCode, RAW_SIZES, qb64_size
from kerits.core.errors import MalformedInput
from kerits.crypto.hashing import digest

DUMMY = "#"

VERSION_RE = re.compile(r"^(KERI|ACDC)([0-9a-f])([0-9a-f])(JSON|CBOR|MGPK)([0-9a-f]{6})_$")

PROTO_KERI = "KERI"
PROTO_ACDC = "ACDC"


def placeholder(code: str = MatterCode.BLAKE3_256) -> str:
    return DUMMY * qb64_size(code, RAW_SIZES[code])


def versify(proto: str = PROTO_KERI, size: int = 0, major: int = 1, minor: int = 0,
            kind: str = "JSON") -> str:
    """Version string, e.g. versify(size=299) == 'KERI10JSON00012b_'."""
    if size < 0 or size > 0xFFFFFF:
        raise ValueError(f"Invalid body size {size}")
    return f"{proto}{major:x}{minor:x}{kind}{size:06x}_"


def deversify(vs: str) -> Tuple[str, int, int, str, int]:
    """Parse a version string into (proto, major, minor, kind, size)."""
    match = VERSION_RE.match(vs or "")
    if not match:
        raise MalformedInput(f"Invalid version string: {vs!r}")
    proto, major, minor, kind, size = match.groups()
    return proto, int(major, 16), int(minor, 16), kind, int(size, 16)


def _with_placeholders(body: Dict[str, Any], label: str, labels: Iterable[str],
                       code: str) -> Dict[str, Any]:
    if label not in body:
        raise MalformedInput(f"Missing id field labeled={label} in body")
    sad = dict(body)
    dummy = placeholder(code)
    sad[label] = dummy
    for extra in labels:
        if extra in sad:
            sad[extra] = dummy
    return sad


def derive(body: Dict[str, Any], label: str = "d", labels: Iterable[str] = (),
           code: str = MatterCode.BLAKE3_256) -> str:
    """Compute the SAID of `body` for the field `label`. Pure."""
    sad = _with_placeholders(body, label, labels, code)
    return digest(canonical_json(sad), code)


def saidify(body: Dict[str, Any], label: str = "d", labels: Iterable[str] = (),
            code: str = MatterCode.BLAKE3_256) -> Dict[str, Any]:
    """Return a copy of `body` with its SAID written into `label` (and `labels`)."""
    labels = tuple(labels)
    said = derive(body, label, labels, code)
    result = dict(body)
    result[label] = said
    for extra in labels:
        if extra in result:
            result[extra] = said
    return result


def verify(body: Dict[str, Any], label: str = "d", labels: Iterable[str] = (),
           code: str = MatterCode.BLAKE3_256) -> bool:
    """True when the SAID stored at `label` matches a fresh derivation."""
    labels = tuple(labels)
    claimed = body.get(label)
    if not isinstance(claimed, str) or not claimed:
        return False
    try:
        expected = derive(body, label, labels, code)
    except MalformedInput:
        return False
    if claimed != expected:
        return False
    return all(body[extra] == claimed for extra in labels if extra in body)


def sized(body: Dict[str, Any], label: str = "d", labels: Iterable[str] = (),
          proto: str = PROTO_KERI, code: str = MatterCode.BLAKE3_256) -> Dict[str, Any]:
    """
    Finish a new body: write the serialized size into `v`, then saidify.
    Sizing happens with placeholders in place, which yields the final size.
    """
    labels = tuple(labels)
    sad = _with_placeholders(body, label, labels, code)
    sad["v"] = versify(proto, 0)
    sad["v"] = versify(proto, len(canonical_json(sad)))
    return saidify(sad, label, labels, code)
