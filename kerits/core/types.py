# kerits/core/types.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ApplyOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"     # already applied; idempotent no-op


class CredentialStatus(str, Enum):
    ISSUED = "issued"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


class LogKind(str, Enum):
    KEL = "kel"
    TEL = "tel"
    ACDC = "acdc"               # stored credential body, one record per SAID


@dataclass(frozen=True)
class Seal:
    """Reference to an event of another log: its log identifier and SAID."""
    i: str                      # anchored identifier (AID or registry id)
    d: str                      # anchored event SAID
    s: Optional[str] = None     # anchored event sequence number (hex), optional

    def to_dict(self) -> Dict[str, str]:
        d = {"i": self.i}
        if self.s is not None:
            d["s"] = self.s
        d["d"] = self.d
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Seal":
        return cls(i=data["i"], d=data["d"], s=data.get("s"))

    @staticmethod
    def is_seal(data: Any) -> bool:
        return isinstance(data, dict) and isinstance(data.get("i"), str) and isinstance(data.get("d"), str)


@dataclass(frozen=True)
class KeyState:
    """Current key state of an identifier, derived from its KEL."""
    prefix: str
    sn: int
    last_digest: str
    keys: Tuple[str, ...]
    key_threshold: int
    next_key_digests: Tuple[str, ...]
    next_threshold: int
    last_establishment_sn: int = 0

    @property
    def transferable(self) -> bool:
        """False once the identifier has committed to no next keys."""
        return len(self.next_key_digests) > 0


@dataclass(frozen=True)
class IndexedSignature:
    """Signature by the key at `index` of the establishing key list."""
    index: int
    signature: str              # qb64, code 0B

    def to_dict(self) -> Dict[str, Any]:
        return {"i": self.index, "s": self.signature}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexedSignature":
        return cls(index=int(data["i"]), signature=data["s"])


@dataclass(frozen=True)
class StoredEvent:
    """Row of the append-only log store."""
    log_id: str
    sn: int
    said: str
    ilk: str
    kind: LogKind
    raw: str                    # canonical JSON body
    signatures: Tuple[IndexedSignature, ...] = field(default_factory=tuple)
