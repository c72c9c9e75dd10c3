# kerits/core/events.py
"""
KEL and TEL event variants.

Each variant wraps its body (the key event dict) and declares the field set it
requires. Bodies are decoded permissively: fields outside that set are kept as
an extension map and take part in the digest, since canonical serialization
covers the whole body.
"""

import math
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from kerits.core import said as saids
from kerits.core.canon import canonical_json_str
from kerits.core.encoding import encode_qb64
from kerits.core.errors import MalformedInput
from kerits.core.types import LogKind, Seal

SALT_CODE = "0A"    # 128-bit salt, used for registry nonces

HEX_RE = re.compile(r"^(0|[1-9a-f][0-9a-f]*)\Z")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_hex(num: int) -> str:
    if num < 0:
        raise ValueError(f"Invalid num = {num}, must be non-negative")
    return f"{num:x}"


def from_hex(value: Any, label: str = "s") -> int:
    if not isinstance(value, str) or not value:
        raise MalformedInput(f"Field '{label}' must be a hex string, got {value!r}")
    # lowercase, no prefix or leading zeros
    if not HEX_RE.match(value):
        raise MalformedInput(f"Field '{label}' is not canonical hex: {value!r}")
    return int(value, 16)


def default_threshold(key_count: int) -> int:
    if key_count < 1:
        raise ValueError(f"Invalid key count {key_count}, must be at least 1")
    return max(1, math.ceil(key_count / 2))


def default_next_threshold(next_count: int) -> int:
    if next_count < 0:
        raise ValueError(f"Invalid next key count {next_count}, must be non-negative")
    return math.ceil(next_count / 2)


def make_nonce() -> str:
    return encode_qb64(os.urandom(16), SALT_CODE)


def _seal_dicts(seals: Iterable[Union[Seal, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [s.to_dict() if isinstance(s, Seal) else dict(s) for s in seals]


@dataclass(frozen=True)
class Event:
    """Base of every log event. `body` is the full key event dict."""
    body: Dict[str, Any]

    ilk: ClassVar[str] = ""
    kind: ClassVar[LogKind] = LogKind.KEL
    required: ClassVar[Tuple[str, ...]] = ("v", "t", "d", "i", "s")
    said_labels: ClassVar[Tuple[str, ...]] = ()

    @property
    def said(self) -> str:
        return self.body["d"]

    @property
    def version(self) -> str:
        return self.body["v"]

    @property
    def sn(self) -> int:
        return from_hex(self.body["s"])

    @property
    def prior(self) -> Optional[str]:
        return self.body.get("p")

    @property
    def log_id(self) -> str:
        """Identifier of the log this event belongs to."""
        return self.body["i"]

    @property
    def seals(self) -> List[Seal]:
        anchors = self.body.get("a")
        if not isinstance(anchors, list):
            return []
        return [Seal.from_dict(a) for a in anchors if Seal.is_seal(a)]

    @property
    def extra(self) -> Dict[str, Any]:
        """Extension fields outside the variant's required set."""
        return {k: v for k, v in self.body.items() if k not in self.required}

    @property
    def raw(self) -> str:
        return canonical_json_str(self.body)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.body)

    def compute_said(self) -> str:
        return saids.derive(self.body, "d", self.said_labels)

    def verify_said(self) -> bool:
        return saids.verify(self.body, "d", self.said_labels)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        if not isinstance(data, dict):
            raise MalformedInput(f"Event body must be an object, got {type(data).__name__}")
        missing = [label for label in cls.required if label not in data]
        if missing:
            raise MalformedInput(f"'{cls.ilk}' event missing fields: {', '.join(missing)}")
        if data["t"] != cls.ilk:
            raise MalformedInput(f"Expected ilk '{cls.ilk}', got {data['t']!r}")
        saids.deversify(data["v"])
        for label in ("d", "i"):
            if not isinstance(data[label], str) or not data[label]:
                raise MalformedInput(f"Field '{label}' must be a non-empty string")
        from_hex(data["s"])
        if "p" in cls.required and (not isinstance(data["p"], str) or not data["p"]):
            raise MalformedInput("Field 'p' must be a non-empty string")
        event = cls(body=dict(data))
        event._check()
        return event

    def _check(self) -> None:
        """Variant-specific shape checks."""


class EstablishmentEvent(Event):
    """Events that set key state: inception and rotation."""

    @property
    def keys(self) -> List[str]:
        return list(self.body["k"])

    @property
    def next_key_digests(self) -> List[str]:
        return list(self.body["n"])

    @property
    def key_threshold(self) -> int:
        return _threshold(self.body["kt"], "kt")

    @property
    def next_threshold(self) -> int:
        return _threshold(self.body["nt"], "nt")

    def _check(self) -> None:
        for label in ("k", "n"):
            value = self.body[label]
            if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
                raise MalformedInput(f"Field '{label}' must be a list of strings")
        if not self.keys:
            raise MalformedInput("At least one signing key is required")
        kt = self.key_threshold
        if kt < 1 or kt > len(self.keys):
            raise MalformedInput(f"Invalid key threshold {kt} for {len(self.keys)} keys")
        nt = self.next_threshold
        if nt > len(self.next_key_digests) or (self.next_key_digests and nt < 1):
            raise MalformedInput(
                f"Invalid next threshold {nt} for {len(self.next_key_digests)} next key digests"
            )


def _threshold(value: Any, label: str) -> int:
    if isinstance(value, list):
        raise MalformedInput(f"Weighted threshold in '{label}' is not supported")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return from_hex(value, label)


class Inception(EstablishmentEvent):
    ilk = "icp"
    required = ("v", "t", "d", "i", "s", "kt", "k", "nt", "n", "bt", "b", "c", "a")
    said_labels = ("i",)

    @classmethod
    def create(
        cls,
        keys: Sequence[str],
        next_key_digests: Sequence[str],
        key_threshold: Optional[int] = None,
        next_threshold: Optional[int] = None,
        config: Sequence[str] = (),
    ) -> "Inception":
        kt = key_threshold if key_threshold is not None else default_threshold(len(keys))
        nt = next_threshold if next_threshold is not None else default_next_threshold(len(next_key_digests))
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": "",
            "s": to_hex(0),
            "kt": to_hex(kt),
            "k": list(keys),
            "nt": to_hex(nt),
            "n": list(next_key_digests),
            "bt": to_hex(0),
            "b": [],
            "c": list(config),
            "a": [],
        }
        return cls.from_dict(saids.sized(body, "d", cls.said_labels))

    def _check(self) -> None:
        super()._check()
        if self.sn != 0:
            raise MalformedInput(f"Inception must have sequence number 0, got {self.sn}")
        if self.body["i"] != self.body["d"]:
            raise MalformedInput("Inception identifier must equal its SAID")


class Rotation(EstablishmentEvent):
    ilk = "rot"
    required = ("v", "t", "d", "i", "s", "p", "kt", "k", "nt", "n", "bt", "br", "ba", "a")

    @classmethod
    def create(
        cls,
        prefix: str,
        sn: int,
        prior: str,
        keys: Sequence[str],
        next_key_digests: Sequence[str],
        key_threshold: Optional[int] = None,
        next_threshold: Optional[int] = None,
        seals: Iterable[Union[Seal, Dict[str, Any]]] = (),
    ) -> "Rotation":
        if sn < 1:
            raise ValueError(f"Invalid sequence number {sn}, must be >= 1 for rotation")
        kt = key_threshold if key_threshold is not None else default_threshold(len(keys))
        nt = next_threshold if next_threshold is not None else default_next_threshold(len(next_key_digests))
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": prefix,
            "s": to_hex(sn),
            "p": prior,
            "kt": to_hex(kt),
            "k": list(keys),
            "nt": to_hex(nt),
            "n": list(next_key_digests),
            "bt": to_hex(0),
            "br": [],
            "ba": [],
            "a": _seal_dicts(seals),
        }
        return cls.from_dict(saids.sized(body))


class Interaction(Event):
    ilk = "ixn"
    required = ("v", "t", "d", "i", "s", "p", "a")

    @classmethod
    def create(cls, prefix: str, sn: int, prior: str,
               seals: Iterable[Union[Seal, Dict[str, Any]]] = ()) -> "Interaction":
        if sn < 1:
            raise ValueError("Sequence number (sn) must be >= 1")
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": prefix,
            "s": to_hex(sn),
            "p": prior,
            "a": _seal_dicts(seals),
        }
        return cls.from_dict(saids.sized(body))

    def _check(self) -> None:
        if not isinstance(self.body["a"], list):
            raise MalformedInput("Field 'a' must be a list")


class RegistryInception(Event):
    kind = LogKind.TEL
    ilk = "vcp"
    required = ("v", "t", "d", "i", "ii", "s", "c", "bt", "b", "n")
    said_labels = ("i",)

    @property
    def issuer(self) -> str:
        return self.body["ii"]

    @property
    def nonce(self) -> str:
        return self.body["n"]

    @property
    def parent(self) -> Optional[str]:
        edges = self.body.get("e")
        if isinstance(edges, dict) and isinstance(edges.get("parent"), dict):
            return edges["parent"].get("n")
        return None

    @classmethod
    def create(cls, issuer: str, nonce: Optional[str] = None,
               parent: Optional[str] = None) -> "RegistryInception":
        if not issuer:
            raise ValueError("Issuer AID is required")
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": "",
            "ii": issuer,
            "s": to_hex(0),
            "c": [],
            "bt": to_hex(0),
            "b": [],
            "n": nonce or make_nonce(),
        }
        if parent:
            body["e"] = {"parent": {"n": parent}}
        return cls.from_dict(saids.sized(body, "d", cls.said_labels))

    def _check(self) -> None:
        if self.sn != 0:
            raise MalformedInput(f"Registry inception must have sequence number 0, got {self.sn}")
        if self.body["i"] != self.body["d"]:
            raise MalformedInput("Registry identifier must equal its inception SAID")


class CredentialEvent(Event):
    """Issuance and revocation: `i` is the credential SAID, `ri` the registry."""
    kind = LogKind.TEL

    @property
    def credential_said(self) -> str:
        return self.body["i"]

    @property
    def registry_id(self) -> str:
        return self.body["ri"]

    @property
    def log_id(self) -> str:
        return self.body["ri"]

    @property
    def dt(self) -> Optional[str]:
        return self.body.get("dt")


class Issuance(CredentialEvent):
    ilk = "iss"
    required = ("v", "t", "d", "i", "s", "ri", "p", "dt")

    @classmethod
    def create(cls, credential_said: str, registry_id: str, sn: int, prior: str,
               dt: Optional[str] = None) -> "Issuance":
        if not credential_said:
            raise ValueError("Credential SAID is required")
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": credential_said,
            "s": to_hex(sn),
            "ri": registry_id,
            "p": prior,
            "dt": dt or utc_now(),
        }
        return cls.from_dict(saids.sized(body))


class Revocation(CredentialEvent):
    ilk = "rev"
    required = ("v", "t", "d", "i", "s", "ri", "p", "dt")

    @classmethod
    def create(cls, credential_said: str, registry_id: str, sn: int, prior: str,
               dt: Optional[str] = None) -> "Revocation":
        if not credential_said:
            raise ValueError("Credential SAID is required")
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": credential_said,
            "s": to_hex(sn),
            "ri": registry_id,
            "p": prior,
            "dt": dt or utc_now(),
        }
        return cls.from_dict(saids.sized(body))


class RegistryInteraction(Event):
    """Registry-scoped interaction; seals child registries into the parent TEL."""
    kind = LogKind.TEL
    ilk = "ixn"
    required = ("v", "t", "d", "i", "s", "ri", "p", "a")

    @property
    def log_id(self) -> str:
        return self.body["ri"]

    @classmethod
    def create(cls, registry_id: str, sn: int, prior: str,
               seals: Iterable[Union[Seal, Dict[str, Any]]] = ()) -> "RegistryInteraction":
        body = {
            "v": saids.versify(),
            "t": cls.ilk,
            "d": "",
            "i": registry_id,
            "s": to_hex(sn),
            "ri": registry_id,
            "p": prior,
            "a": _seal_dicts(seals),
        }
        return cls.from_dict(saids.sized(body))

    def _check(self) -> None:
        if not isinstance(self.body["a"], list):
            raise MalformedInput("Field 'a' must be a list")
        if self.body["i"] != self.body["ri"]:
            raise MalformedInput("Registry interaction must carry its registry id in both 'i' and 'ri'")


KEL_TYPES: Dict[str, Type[Event]] = {
    "icp": Inception,
    "rot": Rotation,
    "ixn": Interaction,
}

TEL_TYPES: Dict[str, Type[Event]] = {
    "vcp": RegistryInception,
    "iss": Issuance,
    "rev": Revocation,
}


def decode_event(body: Dict[str, Any]) -> Event:
    """Decode a raw body into its event variant."""
    if not isinstance(body, dict):
        raise MalformedInput(f"Event body must be an object, got {type(body).__name__}")
    ilk = body.get("t")
    if ilk == "ixn" and "ri" in body and body["ri"] == body.get("i"):
        return RegistryInteraction.from_dict(body)
    cls = KEL_TYPES.get(ilk) or TEL_TYPES.get(ilk)
    if cls is None:
        raise MalformedInput(f"Unknown event type: {ilk!r}")
    return cls.from_dict(body)
