# kerits/chain/importer.py
"""
Bulk import and export of event logs.

Import applies events strictly in order, each routed to the KEL or TEL it
belongs to, and stops at the first event that fails. Events accepted before
the failure stay applied (and persisted, when a store is given). Credential
(ACDC) bodies may ride along in the same stream; they are SAID-checked and
kept as single-record logs keyed by their SAID.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog

from kerits.chain.kel import KeyEventLog
from kerits.chain.registry import Registry
from kerits.codec.stream import iter_objects, serialize_stream, to_json_array, to_text
from kerits.core.canon import loads
from kerits.core.credential import Credential, is_credential_body
from kerits.core.errors import DuplicateEvent, KeritsError, MalformedInput, SAIDMismatch, UnknownIdentifier
from kerits.core.events import Event, Issuance, decode_event
from kerits.core.types import ApplyOutcome, LogKind
from kerits.storage import LogStore, open_storage

log = structlog.get_logger(__name__)

EXPORT_FORMATS = ("cesr", "json")


@dataclass
class ImportReport:
    accepted: int = 0
    duplicates: int = 0
    failed_index: Optional[int] = None      # 0-based index of the failing event
    error: Optional[str] = None
    error_type: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    credentials: List[str] = field(default_factory=list)   # SAIDs of credential bodies read

    @property
    def ok(self) -> bool:
        return self.failed_index is None

    @property
    def failed_position(self) -> Optional[int]:
        """1-based position of the failing event in the input."""
        return None if self.failed_index is None else self.failed_index + 1

    @property
    def processed(self) -> int:
        return self.accepted + self.duplicates + len(self.credentials)

    def __bool__(self):
        return self.ok


def _iter_bodies(data):
    """Yield raw bodies one at a time so a bad object is reported at its own index."""
    if isinstance(data, list):
        for item in data:
            yield item.to_dict() if isinstance(item, (Event, Credential)) else item
        return
    for offset, chunk in iter_objects(to_text(data)):
        try:
            yield json.loads(chunk)
        except json.JSONDecodeError as e:
            raise MalformedInput(f"Invalid JSON object at offset {offset}: {e.msg}") from e


def store_credential(storage: Optional[LogStore], credential: Credential) -> bool:
    """Keep a credential body in `storage`. False if it was already stored."""
    if storage is None:
        return True
    try:
        storage.append(credential.to_record(), expected_sn=0)
    except DuplicateEvent:
        return False
    log.debug("credential_stored", said=credential.said)
    return True


def load_credential(storage: LogStore, said: str) -> Optional[Credential]:
    record = storage.get_event(said, 0)
    if record is None or record.kind != LogKind.ACDC:
        return None
    return Credential.from_dict(loads(record.raw))


class _Router:
    """Engine per log id, loaded from the store on first use."""

    def __init__(self, storage: Optional[LogStore]):
        self.storage = storage
        self.engines: Dict[str, Union[KeyEventLog, Registry]] = {}

    def engine_for(self, event: Event) -> Union[KeyEventLog, Registry]:
        log_id = event.log_id
        engine = self.engines.get(log_id)
        if engine is not None:
            return engine
        stored = bool(self.storage) and self.storage.get_event_count(log_id) > 0
        if event.kind == LogKind.KEL:
            engine = KeyEventLog(prefix=log_id, storage=self.storage) if stored else KeyEventLog(storage=self.storage)
        else:
            engine = Registry(registry_id=log_id, storage=self.storage) if stored else Registry(storage=self.storage)
        self.engines[log_id] = engine
        return engine


def _import_credential(body: Dict[str, Any], storage: Optional[LogStore], report: ImportReport) -> None:
    credential = Credential.from_dict(body)
    if not credential.verify():
        raise SAIDMismatch(f"Credential {credential.said} fails SAID verification", actual=credential.said)
    store_credential(storage, credential)
    report.credentials.append(credential.said)


def import_events(data: Union[str, bytes, List[Union[Dict[str, Any], Event, Credential]]],
                  storage: Optional[Union[LogStore, str]] = None) -> ImportReport:
    """
    Apply a stream, JSON array or list of bodies in order.
    Never raises for bad events: the first failure ends the import and is
    described in the report.
    """
    storage = open_storage(storage)
    router = _Router(storage)
    report = ImportReport()
    try:
        for body in _iter_bodies(data):
            if is_credential_body(body):
                _import_credential(body, storage, report)
                continue
            event = decode_event(body)
            outcome = router.engine_for(event).apply(event)
            if outcome == ApplyOutcome.DUPLICATE:
                report.duplicates += 1
            else:
                report.accepted += 1
            if event.log_id not in report.logs:
                report.logs.append(event.log_id)
    except KeritsError as e:
        failed = report.processed
        report.failed_index = failed
        report.error = str(e)
        report.error_type = type(e).__name__
        log.warning("import_halted", position=failed + 1, accepted=report.accepted,
                    error_type=report.error_type, error=report.error)
        return report

    log.info("import_completed", accepted=report.accepted, duplicates=report.duplicates,
             credentials=len(report.credentials), logs=len(report.logs))
    return report


def export_log(storage: Union[LogStore, str], log_id: str, fmt: str = "cesr",
               include_credentials: bool = False) -> Union[bytes, str]:
    """
    Serialize a stored log as a CESR-style stream (bytes) or JSON array (str).
    With `include_credentials`, a registry's export is followed by the stored
    bodies of the credentials it issued, in issuance order.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format {fmt!r}, expected one of {EXPORT_FORMATS}")
    store = open_storage(storage)
    records = store.load_events(log_id)
    if not records:
        raise UnknownIdentifier(f"No log stored for {log_id}")
    bodies = [loads(r.raw) for r in records]

    if include_credentials and records[0].kind == LogKind.TEL:
        issued = []
        for body in bodies:
            if body.get("t") == Issuance.ilk and body["i"] not in issued:
                issued.append(body["i"])
        for said in issued:
            credential = load_credential(store, said)
            if credential is not None:
                bodies.append(credential.to_dict())

    return serialize_stream(bodies) if fmt == "cesr" else to_json_array(bodies)
