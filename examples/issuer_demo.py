# examples/issuer_demo.py
# Run with: poetry run python examples/issuer_demo.py
#
# Walks an issuer through its lifecycle: inception from a recovery phrase,
# a registry anchored in its KEL, issuing and revoking a credential, a key
# rotation, then export/import (credential bodies included) into a second
# store and a tamper check.

from kerits.chain.importer import export_log, import_events
from kerits.chain.issuer import Issuer
from kerits.core.credential import Credential
from kerits.core.log import configure_logging
from kerits.core.schema import Schema
from kerits.storage import MemoryStorage
from kerits.verify.anchor import verify_registry_anchoring
from kerits.verify.verifier import LogVerifier

PHRASE = "abandon ability able about above absent absorb abstract absurd abuse access accident"


def main():
    configure_logging(level="WARNING")
    storage = MemoryStorage()

    issuer = Issuer.incept(PHRASE, storage=storage)
    print(f"Issuer AID:      {issuer.prefix}")

    registry = issuer.create_registry()
    print(f"Registry:        {registry.registry_id}")
    print(f"Anchored in KEL: {verify_registry_anchoring(registry.inception, issuer.kel.get_chain())}")

    schema = Schema.create(
        {"name": {"type": "string"}, "course": {"type": "string"}, "grade": {"enum": ["A", "B", "C"]}},
        required=["name", "grade"],
        title="Course completion",
    )
    print(f"Schema:          {schema.said}")

    credential = Credential.create(
        issuer=issuer.prefix,
        schema=schema,
        data={"name": "Alice", "course": "KERI 101", "grade": "A"},
        registry=registry.registry_id,
    )
    issuer.issue(credential)
    print(f"Credential:      {credential.said} -> {issuer.status(credential).value}")

    issuer.rotate(PHRASE)
    print(f"Rotated to sn:   {issuer.kel.sn} (keys {issuer.kel.state.keys[0][:12]}...)")

    issuer.revoke(credential)
    print(f"After revoke:    {issuer.status(credential).value}")

    # Move both logs into a fresh store
    stream = export_log(storage, issuer.prefix) + export_log(storage, registry.registry_id, include_credentials=True)
    replica = MemoryStorage()
    report = import_events(stream, replica)
    print(f"\nImported {report.accepted} events into replica (ok={report.ok})")
    print(f"Credentials:     {len(report.credentials)}")

    verifier = LogVerifier()
    for log_id in replica.list_logs():
        print(f"  {log_id[:16]}...  {verifier.verify_from_storage(log_id, replica)}")

    # Tamper with the issuance: the stream no longer imports past it
    tampered = stream.replace(credential.said.encode(), b"E" + b"A" * 43, 1)
    report = import_events(tampered, MemoryStorage())
    print(f"\nTampered stream halted at event {report.failed_position}: {report.error_type}")


if __name__ == "__main__":
    main()
