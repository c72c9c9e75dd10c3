# kerits/crypto/keys.py
"""
Key material for identifier controllers.

Seeds are derived deterministically from a recovery phrase and a derivation
path, so current and pre-committed next keys can be regenerated on demand and
raw private keys never need to be persisted.
"""

import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Sequence

import structlog
from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from kerits.core.encoding import MatterCode, decode_qb64, encode_qb64
from kerits.core.errors import InvalidSignature, MalformedInput
from kerits.core.events import Event
from kerits.core.types import IndexedSignature
from kerits.crypto.hashing import next_key_digest

log = structlog.get_logger(__name__)

SEED_SALT = b"kerits-seed-v1"
PATH_PREFIX = "kerits"


def normalize_phrase(phrase: str) -> str:
    """NFKD-normalize and collapse whitespace so equivalent phrases match."""
    return re.sub(r"\s+", " ", unicodedata.normalize("NFKD", phrase)).strip()


def derive_seed(phrase: str, path: str) -> bytes:
    """Deterministic 32-byte Ed25519 seed for (phrase, derivation path)."""
    phrase = normalize_phrase(phrase or "")
    if not phrase:
        raise ValueError("Recovery phrase is required")
    if not path:
        raise ValueError("Derivation path is required")
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=SEED_SALT, info=path.encode("utf-8"))
    return hkdf.derive(phrase.encode("utf-8"))


def key_path(index: int) -> str:
    """Derivation path of rotation generation `index` (0 = inception keys)."""
    if index < 0:
        raise ValueError(f"Invalid key index {index}")
    return f"{PATH_PREFIX}/{index}"


class Signer:
    """Ed25519 keypair; the private half is optional for verify-only use."""

    def __init__(self, public_key: ed25519.Ed25519PublicKey,
                 private_key: Optional[ed25519.Ed25519PrivateKey] = None):
        self._public = public_key
        self._private = private_key

    @classmethod
    def generate(cls) -> "Signer":
        sk = ed25519.Ed25519PrivateKey.generate()
        return cls(sk.public_key(), sk)

    @classmethod
    def from_seed(cls, seed: bytes) -> "Signer":
        if len(seed) != 32:
            raise ValueError("Seed must be 32 bytes")
        sk = ed25519.Ed25519PrivateKey.from_private_bytes(seed)
        return cls(sk.public_key(), sk)

    @classmethod
    def from_verfer(cls, verfer: str) -> "Signer":
        """Verify-only instance from a qb64 public key."""
        code, raw = decode_qb64(verfer)
        if code not in (MatterCode.ED25519, MatterCode.ED25519N):
            raise MalformedInput(f"Not an Ed25519 verification key: {verfer}")
        return cls(ed25519.Ed25519PublicKey.from_public_bytes(raw))

    @property
    def verfer(self) -> str:
        """Public key, qb64 with the transferable Ed25519 code."""
        return encode_qb64(self._public.public_bytes_raw(), MatterCode.ED25519)

    @property
    def seed(self) -> bytes:
        if self._private is None:
            raise ValueError("Verify-only signer has no private key")
        return self._private.private_bytes_raw()

    @property
    def next_digest(self) -> str:
        """Digest to commit to this key in a prior establishment event."""
        return next_key_digest(self.verfer)

    def sign(self, data: bytes) -> str:
        if self._private is None:
            raise ValueError("Cannot sign with a verify-only signer")
        return encode_qb64(self._private.sign(data), MatterCode.ED25519_SIG)

    def verify_bytes(self, signature: str, data: bytes) -> bool:
        try:
            code, raw = decode_qb64(signature)
        except MalformedInput:
            return False
        if code != MatterCode.ED25519_SIG:
            return False
        try:
            self._public.verify(raw, data)
            return True
        except _CryptoInvalidSignature:
            return False


def keypair_from(seed: bytes) -> Signer:
    return Signer.from_seed(seed)


def verify_signature(verfer: str, signature: str, data: bytes) -> bool:
    return Signer.from_verfer(verfer).verify_bytes(signature, data)


def sign_event(event: Event, signers: Sequence[Signer]) -> tuple:
    """Sign the event's canonical body with each signer, indexed by position."""
    data = event.raw.encode("utf-8")
    return tuple(IndexedSignature(index=i, signature=s.sign(data)) for i, s in enumerate(signers))


def verify_event_signatures(event: Event, keys: Sequence[str], threshold: int,
                            signatures: Iterable[IndexedSignature]) -> int:
    """
    Verify indexed signatures over the event against `keys`.
    Raises InvalidSignature on a bad signature or when fewer than `threshold`
    distinct keys signed. Returns the number of valid signers.
    """
    data = event.raw.encode("utf-8")
    verified = set()
    for sig in signatures:
        if sig.index < 0 or sig.index >= len(keys):
            raise InvalidSignature(f"Signature index {sig.index} out of range for {len(keys)} keys")
        if not verify_signature(keys[sig.index], sig.signature, data):
            raise InvalidSignature(f"Invalid signature by key {sig.index} on event {event.said}")
        verified.add(sig.index)
    if len(verified) < threshold:
        raise InvalidSignature(
            f"Signing threshold not met for event {event.said}: {len(verified)} of {threshold}"
        )
    return len(verified)


class KeyManager:
    """
    In-memory signers per identifier, held only for the session.

        km = KeyManager()
        km.unlock(aid, phrase)
        signer = km.get_signer(aid)
        km.lock(aid)
    """

    def __init__(self):
        self._signers: Dict[str, Signer] = {}

    @staticmethod
    def keyset(phrase: str, index: int = 0) -> Signer:
        """Signer for rotation generation `index` of `phrase`."""
        return keypair_from(derive_seed(phrase, key_path(index)))

    @classmethod
    def next_commitment(cls, phrase: str, index: int = 0) -> List[str]:
        """Next-key digests to commit to while generation `index` is current."""
        return [cls.keyset(phrase, index + 1).next_digest]

    def unlock(self, aid: str, phrase: str, index: int = 0) -> Signer:
        if aid in self._signers:
            log.debug("account_already_unlocked", aid=aid)
            return self._signers[aid]
        signer = self.keyset(phrase, index)
        self._signers[aid] = signer
        log.debug("account_unlocked", aid=aid, verfer=signer.verfer)
        return signer

    def replace(self, aid: str, signer: Signer) -> None:
        """Swap in the signer of a new key generation after rotation."""
        self._signers[aid] = signer

    def lock(self, aid: str) -> None:
        removed = self._signers.pop(aid, None)
        log.debug("account_locked" if removed else "account_not_unlocked", aid=aid)

    def lock_all(self) -> None:
        count = len(self._signers)
        self._signers.clear()
        log.debug("all_accounts_locked", count=count)

    def is_unlocked(self, aid: str) -> bool:
        return aid in self._signers

    def get_signer(self, aid: str) -> Optional[Signer]:
        return self._signers.get(aid)

    def unlocked_accounts(self) -> List[str]:
        return list(self._signers)
