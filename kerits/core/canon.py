# kerits/core/canon.py
import json
from typing import Any

try:
    import jcs
except ImportError:
    raise ImportError("Please install jcs: pip install jcs")

def canonical_json(obj: Any) -> bytes:
    """
    Produce deterministic UTF-8 bytes according to RFC 8785 (JSON Canonicalization Scheme).
    Every event and credential body is digested over these bytes.
    """
    return jcs.canonicalize(obj)


def canonical_json_str(obj: Any) -> str:
    """Same as above, but returns string (used for the raw form kept in storage)."""
    return canonical_json(obj).decode("utf-8")


def loads(raw: str | bytes) -> Any:
    """Parse a JSON body (inverse of canonical_json_str)."""
    return json.loads(raw)
