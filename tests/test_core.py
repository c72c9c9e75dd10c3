import json

import pytest
import structlog

from kerits.core import said as saids
from kerits.core.canon import canonical_json, canonical_json_str
from kerits.core.encoding import MatterCode, b64url_decode, b64url_encode, decode_qb64, encode_qb64, qb64_size
from kerits.core.errors import MalformedInput
from kerits.core.events import (
    Inception,
    Interaction,
    RegistryInception,
    RegistryInteraction,
    Rotation,
    decode_event,
)
from kerits.core.log import configure_logging
from kerits.crypto.hashing import digest
from kerits.crypto.keys import Signer


@pytest.fixture
def signers():
    return [Signer.generate() for _ in range(3)]


@pytest.fixture
def icp(signers):
    return Inception.create([signers[0].verfer], [signers[1].next_digest])


def test_base64url_roundtrip():
    original = b'{"hello":"world"}'
    encoded = b64url_encode(original)
    assert b64url_decode(encoded) == original
    assert "=" not in encoded  # no padding


def test_canonical_json_sorting():
    messy = {"z": 1, "a": "hello", "nested": {"b": 2, "a": 1}}
    assert canonical_json(messy) == b'{"a":"hello","nested":{"a":1,"b":2},"z":1}'
    assert canonical_json_str(messy) == canonical_json(messy).decode("utf-8")


def test_qb64_sizes():
    assert qb64_size(MatterCode.BLAKE3_256, 32) == 44
    assert qb64_size(MatterCode.ED25519, 32) == 44
    assert qb64_size(MatterCode.ED25519_SIG, 64) == 88


def test_qb64_roundtrip():
    raw = bytes(range(32))
    qb64 = encode_qb64(raw, MatterCode.BLAKE3_256)
    assert qb64.startswith("E")
    assert len(qb64) == 44
    assert decode_qb64(qb64) == ("E", raw)


def test_qb64_rejects_bad_input():
    with pytest.raises(MalformedInput):
        decode_qb64("")
    with pytest.raises(MalformedInput):
        decode_qb64("E" + "A" * 10)
    with pytest.raises(MalformedInput):
        decode_qb64("Z" + "A" * 43)


def test_digest_is_deterministic():
    assert digest(b"abc") == digest("abc")
    assert digest(b"abc") != digest(b"abd")
    assert len(digest(b"")) == 44


def test_versify_and_deversify():
    assert saids.versify(size=299) == "KERI10JSON00012b_"
    assert saids.versify(saids.PROTO_ACDC, 16) == "ACDC10JSON000010_"
    assert saids.deversify("KERI10JSON00012b_") == ("KERI", 1, 0, "JSON", 299)
    with pytest.raises(MalformedInput):
        saids.deversify("KERI10JSON12b_")


def test_placeholder_matches_digest_length():
    assert len(saids.placeholder()) == len(digest(b"x")) == 44


def test_said_roundtrip():
    body = saids.saidify({"d": "", "name": "alice", "n": [1, 2, 3]})
    assert len(body["d"]) == 44
    assert saids.verify(body)
    assert saids.derive(body) == body["d"]


def test_said_detects_any_mutation():
    body = saids.saidify({"d": "", "name": "alice", "role": "issuer"})
    for field, value in (("name", "alicf"), ("role", "holder")):
        tampered = dict(body)
        tampered[field] = value
        assert not saids.verify(tampered)


def test_said_independent_of_key_order():
    a = saids.saidify({"d": "", "x": 1, "y": 2})
    b = saids.saidify({"y": 2, "x": 1, "d": ""})
    assert a["d"] == b["d"]


def test_said_extra_labels():
    body = saids.saidify({"d": "", "i": "", "k": ["x"]}, labels=("i",))
    assert body["i"] == body["d"]
    assert saids.verify(body, labels=("i",))
    body["i"] = "E" + "A" * 43
    assert not saids.verify(body, labels=("i",))


def test_said_missing_label():
    with pytest.raises(MalformedInput):
        saids.derive({"x": 1})
    assert saids.verify({"x": 1}) is False


def test_inception_prefix_is_said(icp):
    assert icp.log_id == icp.said
    assert icp.sn == 0
    assert icp.verify_said()
    assert icp.key_threshold == 1
    assert icp.next_threshold == 1


def test_version_size_is_fixed_point(icp):
    size = saids.deversify(icp.version)[4]
    assert size == len(icp.raw.encode("utf-8"))


def test_event_tamper_breaks_said(icp, signers):
    body = icp.to_dict()
    body["k"] = [signers[2].verfer]
    assert not saids.verify(body, labels=("i",))


def test_rotation_and_interaction_shapes(icp, signers):
    rot = Rotation.create(icp.log_id, 1, icp.said, [signers[1].verfer], [signers[2].next_digest])
    assert rot.body["s"] == "1"
    assert rot.prior == icp.said
    assert rot.verify_said()

    ixn = Interaction.create(icp.log_id, 2, rot.said, [{"i": "Eabc", "d": "Edef"}])
    assert ixn.seals[0].i == "Eabc"
    assert ixn.verify_said()


def test_rotation_requires_positive_sn(icp, signers):
    with pytest.raises(ValueError):
        Rotation.create(icp.log_id, 0, icp.said, [signers[1].verfer], [])


def test_decode_event_routes_variants(icp):
    assert isinstance(decode_event(icp.to_dict()), Inception)
    vcp = RegistryInception.create(icp.log_id, nonce="0Aabc")
    assert isinstance(decode_event(vcp.to_dict()), RegistryInception)
    rixn = RegistryInteraction.create(vcp.log_id, 1, vcp.said)
    decoded = decode_event(rixn.to_dict())
    assert isinstance(decoded, RegistryInteraction)
    assert decoded.log_id == vcp.log_id


def test_decode_event_keeps_extension_fields(icp):
    body = Interaction.create(icp.log_id, 1, icp.said).to_dict()
    body["note"] = "hello"
    body = saids.sized(body)
    event = decode_event(body)
    assert event.extra == {"note": "hello"}
    assert event.verify_said()
    assert '"note":"hello"' in event.raw


def test_decode_event_rejects_malformed(icp):
    with pytest.raises(MalformedInput):
        decode_event({"t": "xyz"})
    with pytest.raises(MalformedInput):
        decode_event([1, 2])

    missing = icp.to_dict()
    del missing["k"]
    with pytest.raises(MalformedInput):
        decode_event(missing)

    weighted = icp.to_dict()
    weighted["kt"] = ["1/2", "1/2"]
    with pytest.raises(MalformedInput):
        decode_event(weighted)

    wrong_prefix = icp.to_dict()
    wrong_prefix["i"] = "E" + "A" * 43
    with pytest.raises(MalformedInput):
        decode_event(wrong_prefix)

    bad_sn = icp.to_dict()
    bad_sn["s"] = "zz"
    with pytest.raises(MalformedInput):
        decode_event(bad_sn)


def test_sequence_number_must_be_canonical_hex(icp):
    ixn = Interaction.create(icp.log_id, 1, icp.said).to_dict()
    for sn in ("0x1", " 1", "01", "1_0", "A", "\u0661"):
        body = saids.sized(dict(ixn, s=sn))
        with pytest.raises(MalformedInput):
            decode_event(body)

    assert decode_event(saids.sized(dict(ixn, s="1a"))).sn == 26


def test_interaction_with_foreign_ri_stays_in_kel(icp):
    body = Interaction.create(icp.log_id, 1, icp.said).to_dict()
    body["ri"] = "E" + "B" * 43
    event = decode_event(saids.sized(body))
    assert type(event) is Interaction
    assert event.log_id == icp.log_id
    assert event.extra == {"ri": "E" + "B" * 43}

    with pytest.raises(MalformedInput):
        RegistryInteraction.from_dict(saids.sized(body))


def test_registry_inception_nonce_and_parent(icp):
    a = RegistryInception.create(icp.log_id, nonce="0Afixed")
    b = RegistryInception.create(icp.log_id, nonce="0Afixed")
    c = RegistryInception.create(icp.log_id)
    assert a.said == b.said
    assert a.said != c.said
    assert a.issuer == icp.log_id
    assert a.parent is None

    child = RegistryInception.create(icp.log_id, parent=a.log_id)
    assert child.parent == a.log_id


def test_configure_logging_json(capsys):
    configure_logging(level="INFO", fmt="json")
    try:
        logger = structlog.get_logger("kerits.test")
        logger.debug("hidden_event")
        logger.info("kel_event_applied", sn=0)
        lines = capsys.readouterr().out.strip().splitlines()
    finally:
        structlog.reset_defaults()

    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "kel_event_applied"
    assert record["level"] == "info"
    assert record["sn"] == 0
