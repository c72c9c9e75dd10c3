# kerits/core/encoding.py
import base64
from typing import Tuple

from kerits.core.errors import MalformedInput


class MatterCode:
    """CESR derivation codes used by kerits."""
    ED25519_SEED = "A"
    ED25519N = "B"          # non-transferable verification key
    ED25519 = "D"           # transferable verification key
    BLAKE3_256 = "E"
    ED25519_SIG = "0B"


# code → raw size in bytes
RAW_SIZES = {
    MatterCode.ED25519_SEED: 32,
    MatterCode.ED25519N: 32,
    MatterCode.ED25519: 32,
    MatterCode.BLAKE3_256: 32,
    MatterCode.ED25519_SIG: 64,
}


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url (no padding, URL-safe)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode base64url string back to bytes."""
    # Restore padding
    padding = len(s) % 4
    if padding:
        s += "=" * (4 - padding)
    return base64.urlsafe_b64decode(s)


def pad_size(raw_size: int) -> int:
    return (3 - (raw_size % 3)) % 3


def qb64_size(code: str, raw_size: int) -> int:
    """Length of the qualified base64 text for a raw value of `raw_size` bytes."""
    return len(code) + (raw_size + pad_size(raw_size)) * 4 // 3 - (len(code) % 4)


def encode_qb64(raw: bytes, code: str) -> str:
    """
    Fixed-size CESR encoding: left-pad the raw bytes with zeros to a multiple
    of three, base64url them, and swap the leading pad characters for the code.
    """
    padded = bytes(pad_size(len(raw))) + raw
    return code + b64url_encode(padded)[len(code) % 4:]


def _split_code(qb64: str) -> str:
    if qb64[:2] in RAW_SIZES:
        return qb64[:2]
    if qb64[:1] in RAW_SIZES:
        return qb64[:1]
    raise MalformedInput(f"Unknown derivation code in '{qb64[:4]}...'")


def decode_qb64(qb64: str) -> Tuple[str, bytes]:
    """Inverse of encode_qb64 for the codes in RAW_SIZES. Returns (code, raw)."""
    if not qb64:
        raise MalformedInput("Empty qb64 value")
    code = _split_code(qb64)
    raw_size = RAW_SIZES[code]
    if len(qb64) != qb64_size(code, raw_size):
        raise MalformedInput(
            f"Invalid length {len(qb64)} for code '{code}', expected {qb64_size(code, raw_size)}"
        )
    ps = pad_size(raw_size)
    try:
        padded = b64url_decode("A" * (len(code) % 4) + qb64[len(code):])
    except ValueError as e:
        raise MalformedInput(f"Invalid base64 in qb64 value: {e}")
    if any(padded[:ps]):
        raise MalformedInput("Non-zero pad bits in qb64 value")
    return code, padded[ps:]
