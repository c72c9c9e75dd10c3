import json

import pytest

from kerits.chain.importer import export_log, import_events, load_credential
from kerits.chain.issuer import Issuer
from kerits.chain.kel import KeyEventLog
from kerits.codec.stream import parse_stream, serialize_stream
from kerits.core import said as saids
from kerits.core.credential import Credential
from kerits.core.errors import UnknownIdentifier
from kerits.core.types import CredentialStatus, LogKind, Seal
from kerits.crypto.keys import Signer
from kerits.storage import MemoryStorage

PHRASE = "zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo wrong"
SCHEMA = "EBfdlu8R27Fbx-ehrqwImnK-8Cm79sqbAQ4MmvEAYqao"


@pytest.fixture
def five_events():
    """icp followed by four interactions."""
    k0, k1 = Signer.generate(), Signer.generate()
    kel = KeyEventLog()
    kel.incept([k0.verfer], [k1.next_digest])
    for n in range(4):
        kel.interact([Seal(i=kel.prefix, d=kel.get_last_digest(), s=f"{n:x}")])
    return kel.get_chain()


def test_import_clean_stream(five_events):
    storage = MemoryStorage()
    report = import_events(serialize_stream(five_events), storage)
    assert report.ok
    assert report.accepted == 5
    assert report.failed_index is None
    assert report.failed_position is None
    assert storage.get_event_count(five_events[0].log_id) == 5


def test_import_halts_at_corrupted_prior(five_events):
    bodies = [e.to_dict() for e in five_events]
    bodies[2]["p"] = "E" + "A" * 43
    storage = MemoryStorage()

    report = import_events(serialize_stream(bodies), storage)
    assert report.accepted == 2
    assert report.failed_index == 2
    assert report.failed_position == 3
    assert report.error_type == "SAIDMismatch"
    assert not report
    assert storage.get_event_count(five_events[0].log_id) == 2


def test_import_halts_at_resealed_prior(five_events):
    bodies = [e.to_dict() for e in five_events]
    bodies[2]["p"] = "E" + "A" * 43
    bodies[2] = saids.saidify(bodies[2])

    report = import_events(bodies)
    assert report.accepted == 2
    assert report.failed_position == 3
    assert report.error_type == "ChainDiscontinuity"


def test_import_halts_at_invalid_json(five_events):
    stream = serialize_stream(five_events[:2]) + b'-KERI10JSON000010_{"v":1,}' + serialize_stream(five_events[2:])
    report = import_events(stream)
    assert report.accepted == 2
    assert report.failed_index == 2
    assert report.error_type == "MalformedInput"


def test_reimport_is_idempotent(five_events):
    storage = MemoryStorage()
    import_events(serialize_stream(five_events[:3]), storage)

    report = import_events(serialize_stream(five_events), storage)
    assert report.ok
    assert report.duplicates == 3
    assert report.accepted == 2
    assert report.processed == 5


def test_import_truncated_tail(five_events):
    stream = serialize_stream(five_events)
    report = import_events(stream + stream[:40])
    assert report.ok
    assert report.accepted == 5


def test_import_json_array_and_list(five_events):
    array = json.dumps([e.to_dict() for e in five_events])
    assert import_events(array).accepted == 5
    assert import_events(five_events).accepted == 5


def test_export_import_issuer_logs():
    source = MemoryStorage()
    issuer = Issuer.incept(PHRASE, storage=source)
    registry = issuer.create_registry()
    registry.issue("EBdXt3gIXOf2BBWNHdSXCJnFJL5OuQPyM5K0neuniccM")

    stream = export_log(source, issuer.prefix) + export_log(source, registry.registry_id)
    target = MemoryStorage()
    report = import_events(stream, target)
    assert report.ok
    assert report.accepted == 4
    assert report.logs == [issuer.prefix, registry.registry_id]

    imported = Issuer.load(issuer.prefix, target)
    assert imported.status("EBdXt3gIXOf2BBWNHdSXCJnFJL5OuQPyM5K0neuniccM",
                           registry.registry_id) == CredentialStatus.ISSUED


def test_export_formats():
    storage = MemoryStorage()
    issuer = Issuer.incept(PHRASE, storage=storage)

    cesr = export_log(storage, issuer.prefix)
    assert isinstance(cesr, bytes)
    assert parse_stream(cesr)[0]["i"] == issuer.prefix

    array = export_log(storage, issuer.prefix, fmt="json")
    assert json.loads(array)[0]["t"] == "icp"

    with pytest.raises(ValueError):
        export_log(storage, issuer.prefix, fmt="xml")
    with pytest.raises(UnknownIdentifier):
        export_log(storage, "Enope")


@pytest.fixture
def issued_credential():
    storage = MemoryStorage()
    issuer = Issuer.incept(PHRASE, storage=storage)
    registry = issuer.create_registry()
    credential = Credential.create(
        issuer=issuer.prefix, schema=SCHEMA, data={"name": "Alice"}, registry=registry.registry_id,
    )
    issuer.issue(credential)
    return storage, issuer, registry, credential


def test_import_bundle_with_credentials(issued_credential):
    source, issuer, registry, credential = issued_credential
    stream = (export_log(source, issuer.prefix)
              + export_log(source, registry.registry_id, include_credentials=True))
    assert stream.count(b"-ACDC10JSON") == 1

    target = MemoryStorage()
    report = import_events(stream, target)
    assert report.ok
    assert report.accepted == 4
    assert report.credentials == [credential.said]
    assert load_credential(target, credential.said) == credential
    assert target.get_log_kind(credential.said) == LogKind.ACDC
    assert target.list_logs() == [issuer.prefix, registry.registry_id, credential.said]

    again = import_events(stream, target)
    assert again.ok
    assert again.duplicates == 4
    assert again.credentials == [credential.said]


def test_import_halts_at_tampered_credential(issued_credential):
    source, issuer, registry, credential = issued_credential
    forged = credential.to_dict()
    forged["a"] = dict(forged["a"], name="Mallory")
    stream = (export_log(source, issuer.prefix) + export_log(source, registry.registry_id)
              + serialize_stream([forged]))

    report = import_events(stream, MemoryStorage())
    assert report.accepted == 4
    assert report.failed_position == 5
    assert report.error_type == "SAIDMismatch"
    assert report.credentials == []


def test_export_credentials_only_on_request(issued_credential):
    source, issuer, registry, credential = issued_credential
    plain = json.loads(export_log(source, registry.registry_id, fmt="json"))
    assert [b["t"] for b in plain] == ["vcp", "iss"]

    bundled = json.loads(export_log(source, registry.registry_id, fmt="json", include_credentials=True))
    assert bundled[:2] == plain
    assert bundled[2]["d"] == credential.said

    kel = export_log(source, issuer.prefix, include_credentials=True)
    assert b"-ACDC" not in kel
