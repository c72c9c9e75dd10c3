# kerits/core/credential.py
"""
ACDC credentials. A credential's identity is the SAID of its own body; the
attribute block (and the edge block, when present) carry SAIDs of their own.
Issued/revoked status is not part of the credential: it is read from the
registry's TEL.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from kerits.core import said as saids
from kerits.core.canon import canonical_json_str
from kerits.core.errors import MalformedInput, SchemaViolation
from kerits.core.events import utc_now
from kerits.core.schema import Schema
from kerits.core.types import LogKind, StoredEvent

CREDENTIAL_ILK = "acdc"


def is_credential_body(body: Any) -> bool:
    """ACDC bodies carry an ACDC version string and no event type."""
    return (isinstance(body, dict) and "t" not in body
            and isinstance(body.get("v"), str) and body["v"].startswith(saids.PROTO_ACDC))


def _edge_block(edges: Mapping[str, Union[str, Dict[str, Any]]]) -> Dict[str, Any]:
    block: Dict[str, Any] = {"d": ""}
    for label, edge in edges.items():
        if label == "d":
            raise ValueError("Edge label 'd' is reserved")
        block[label] = {"n": edge} if isinstance(edge, str) else dict(edge)
    return saids.saidify(block)


@dataclass(frozen=True)
class Credential:
    sad: Dict[str, Any]

    @property
    def said(self) -> str:
        return self.sad["d"]

    @property
    def issuer(self) -> str:
        return self.sad["i"]

    @property
    def schema(self) -> str:
        return self.sad["s"]

    @property
    def registry(self) -> Optional[str]:
        return self.sad.get("ri")

    @property
    def holder(self) -> Optional[str]:
        return self.sad["a"].get("i")

    @property
    def issued_at(self) -> Optional[str]:
        return self.sad["a"].get("dt")

    @property
    def data(self) -> Dict[str, Any]:
        """Attribute values without the block's own d/i/dt fields."""
        return {k: v for k, v in self.sad["a"].items() if k not in ("d", "i", "dt")}

    @property
    def edges(self) -> Dict[str, Dict[str, Any]]:
        block = self.sad.get("e") or {}
        return {k: v for k, v in block.items() if k != "d"}

    @property
    def edge_saids(self) -> List[str]:
        """SAIDs of the credentials this one chains to."""
        return [edge["n"] for edge in self.edges.values() if isinstance(edge, dict) and "n" in edge]

    @property
    def raw(self) -> str:
        return canonical_json_str(self.sad)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.sad)

    def to_record(self) -> StoredEvent:
        return StoredEvent(log_id=self.said, sn=0, said=self.said, ilk=CREDENTIAL_ILK,
                           kind=LogKind.ACDC, raw=self.raw)

    def verify(self) -> bool:
        """Check the attribute, edge and credential SAIDs."""
        if not saids.verify(self.sad["a"]):
            return False
        if "e" in self.sad and not saids.verify(self.sad["e"]):
            return False
        return saids.verify(self.sad)

    def validate(self, schema: Schema) -> None:
        """Check that `schema` is the one this credential names and that its attributes satisfy it."""
        if schema.said != self.schema:
            raise SchemaViolation(f"Credential {self.said} names schema {self.schema}, not {schema.said}")
        schema.validate(self.data)

    @classmethod
    def create(
        cls,
        issuer: str,
        schema: Union[str, Schema],
        data: Mapping[str, Any],
        holder: Optional[str] = None,
        registry: Optional[str] = None,
        edges: Optional[Mapping[str, Union[str, Dict[str, Any]]]] = None,
        dt: Optional[str] = None,
    ) -> "Credential":
        if not schema:
            raise ValueError("Schema SAID is required")
        if not issuer:
            raise ValueError("Issuer AID is required")
        if data is None:
            raise ValueError("Credential data is required")
        if isinstance(schema, Schema):
            schema.validate({k: v for k, v in data.items() if k not in ("d", "i", "dt")})
            schema = schema.said

        subject: Dict[str, Any] = {"d": ""}
        if holder:
            subject["i"] = holder
        subject["dt"] = dt or data.get("dt") or utc_now()
        for key, value in data.items():
            if key not in ("d", "i", "dt"):
                subject[key] = value

        vc: Dict[str, Any] = {"v": saids.versify(saids.PROTO_ACDC), "d": "", "i": issuer}
        if registry:
            vc["ri"] = registry
        vc["s"] = schema
        vc["a"] = saids.saidify(subject)
        if edges:
            vc["e"] = _edge_block(edges)
        return cls(sad=saids.sized(vc, proto=saids.PROTO_ACDC))

    @classmethod
    def from_dict(cls, sad: Dict[str, Any]) -> "Credential":
        if not isinstance(sad, dict):
            raise MalformedInput("Credential must be a JSON object")
        proto, *_ = saids.deversify(sad.get("v", ""))
        if proto != saids.PROTO_ACDC:
            raise MalformedInput(f"Invalid credential version string: {sad.get('v')!r}")
        for label in ("d", "i", "s"):
            if not isinstance(sad.get(label), str) or not sad[label]:
                raise MalformedInput(f"Credential field '{label}' must be a non-empty string")
        if not isinstance(sad.get("a"), dict) or "d" not in sad["a"]:
            raise MalformedInput("Credential attribute block 'a' must be an object with a SAID")
        if "e" in sad and not isinstance(sad["e"], dict):
            raise MalformedInput("Credential edge block 'e' must be an object")
        return cls(sad=dict(sad))
