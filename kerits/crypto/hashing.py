# kerits/crypto/hashing.py
from typing import Union

import blake3

from kerits.core.encoding import MatterCode, encode_qb64


def blake3_256(data: bytes) -> bytes:
    """32-byte BLAKE3 digest (default mode, not keyed)."""
    return blake3.blake3(data).digest()


def digest(data: Union[bytes, str], code: str = MatterCode.BLAKE3_256) -> str:
    """
    Digest arbitrary bytes and return the qualified (qb64) digest.
    Strings are hashed as their UTF-8 bytes.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    if code != MatterCode.BLAKE3_256:
        raise ValueError(f"Unsupported digest code: {code}")
    return encode_qb64(blake3_256(data), code)


def next_key_digest(verfer: str) -> str:
    """Pre-rotation commitment to a public key: digest of its qb64 text."""
    return digest(verfer.encode("ascii"))
