import pytest

from kerits.core.encoding import decode_qb64
from kerits.core.errors import InvalidSignature
from kerits.core.events import Inception
from kerits.core.types import IndexedSignature
from kerits.crypto.hashing import digest, next_key_digest
from kerits.crypto.keys import (
    KeyManager,
    Signer,
    derive_seed,
    key_path,
    keypair_from,
    sign_event,
    verify_event_signatures,
    verify_signature,
)

PHRASE = "abandon ability able about above absent absorb abstract absurd abuse access accident"


def test_derive_seed_deterministic():
    a = derive_seed(PHRASE, "kerits/0")
    b = derive_seed(PHRASE, "kerits/0")
    assert a == b
    assert len(a) == 32
    assert derive_seed(PHRASE, "kerits/1") != a
    assert derive_seed(PHRASE + " x", "kerits/0") != a


def test_derive_seed_normalizes_whitespace():
    spaced = "  " + PHRASE.replace(" ", "   ") + "\n"
    assert derive_seed(spaced, "kerits/0") == derive_seed(PHRASE, "kerits/0")


def test_derive_seed_requires_inputs():
    with pytest.raises(ValueError):
        derive_seed("   ", "kerits/0")
    with pytest.raises(ValueError):
        derive_seed(PHRASE, "")
    with pytest.raises(ValueError):
        key_path(-1)


def test_keypair_from_seed():
    signer = keypair_from(derive_seed(PHRASE, key_path(0)))
    again = keypair_from(signer.seed)
    assert signer.verfer == again.verfer
    assert signer.verfer.startswith("D")
    code, raw = decode_qb64(signer.verfer)
    assert code == "D" and len(raw) == 32


def test_sign_and_verify():
    signer = Signer.generate()
    sig = signer.sign(b"payload")
    assert sig.startswith("0B")
    assert len(sig) == 88
    assert verify_signature(signer.verfer, sig, b"payload")
    assert not verify_signature(signer.verfer, sig, b"payloaD")
    assert not verify_signature(Signer.generate().verfer, sig, b"payload")
    assert not signer.verify_bytes("0Bgarbage", b"payload")


def test_verify_only_signer_cannot_sign():
    verifier = Signer.from_verfer(Signer.generate().verfer)
    with pytest.raises(ValueError):
        verifier.sign(b"x")


def test_next_key_digest_hashes_qb64_text():
    signer = Signer.generate()
    assert next_key_digest(signer.verfer) == digest(signer.verfer.encode("ascii"))
    assert signer.next_digest == next_key_digest(signer.verfer)


def test_keyset_generations():
    current = KeyManager.keyset(PHRASE, 0)
    nxt = KeyManager.keyset(PHRASE, 1)
    assert current.verfer != nxt.verfer
    assert KeyManager.keyset(PHRASE, 0).verfer == current.verfer
    assert KeyManager.next_commitment(PHRASE, 0) == [nxt.next_digest]


def test_key_manager_unlock_lock():
    km = KeyManager()
    signer = km.unlock("Eaid", PHRASE)
    assert km.is_unlocked("Eaid")
    assert km.get_signer("Eaid") is signer
    assert km.unlock("Eaid", PHRASE) is signer
    assert km.unlocked_accounts() == ["Eaid"]

    km.replace("Eaid", KeyManager.keyset(PHRASE, 1))
    assert km.get_signer("Eaid").verfer == KeyManager.keyset(PHRASE, 1).verfer

    km.lock("Eaid")
    assert not km.is_unlocked("Eaid")
    assert km.get_signer("Eaid") is None

    km.unlock("Ea", PHRASE)
    km.unlock("Eb", PHRASE, 1)
    km.lock_all()
    assert km.unlocked_accounts() == []


def test_event_signatures_threshold():
    a, b = Signer.generate(), Signer.generate()
    icp = Inception.create([a.verfer, b.verfer], [], key_threshold=2)

    both = sign_event(icp, [a, b])
    assert verify_event_signatures(icp, icp.keys, 2, both) == 2

    with pytest.raises(InvalidSignature):
        verify_event_signatures(icp, icp.keys, 2, both[:1])


def test_event_signatures_reject_bad_signature():
    a, b = Signer.generate(), Signer.generate()
    icp = Inception.create([a.verfer], [])
    forged = sign_event(icp, [b])
    with pytest.raises(InvalidSignature):
        verify_event_signatures(icp, icp.keys, 1, forged)

    out_of_range = (IndexedSignature(index=3, signature=forged[0].signature),)
    with pytest.raises(InvalidSignature):
        verify_event_signatures(icp, icp.keys, 1, out_of_range)
