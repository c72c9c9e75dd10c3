# kerits/chain/registry.py
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

import structlog

from kerits.core.canon import loads
from kerits.core.errors import (
    ChainDiscontinuity,
    CredentialStateError,
    DuplicateEvent,
    ForkDetected,
    RegistryNotFound,
    SAIDMismatch,
    UnknownCredential,
    UnknownIdentifier,
)
from kerits.core.events import (
    CredentialEvent,
    Event,
    Issuance,
    RegistryInception,
    RegistryInteraction,
    Revocation,
    TEL_TYPES,
    decode_event,
)
from kerits.core.types import ApplyOutcome, CredentialStatus, LogKind, Seal, StoredEvent
from kerits.storage import LogStore, open_storage

log = structlog.get_logger(__name__)

TEL_EVENT_TYPES = tuple(TEL_TYPES.values()) + (RegistryInteraction,)


@dataclass
class Registry:
    """
    Transaction event log of one credential registry.

    A single hash chain per registry: `vcp` at sn 0, then issuances,
    revocations and registry interactions, each pointing at the previous
    event with `p`. Credential status is derived from the chain, never
    stored on its own.
    """
    registry_id: Optional[str] = None
    storage: Optional[Union[LogStore, str]] = None
    events: List[Event] = field(default_factory=list)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self):
        self.storage = open_storage(self.storage)
        preloaded, self.events = self.events, []
        if preloaded:
            for event in preloaded:
                self.apply(event, persist=False)
        elif self.storage and self.registry_id:
            records = self.storage.load_events(self.registry_id)
            if not records:
                raise RegistryNotFound(f"Registry {self.registry_id} not found")
            for record in records:
                self.apply(decode_event(loads(record.raw)), persist=False)
            log.info("tel_loaded", registry_id=self.registry_id, events=len(records))

    @classmethod
    def replay(cls, events: Iterable[Union[Event, dict]],
               storage: Optional[Union[LogStore, str]] = None) -> "Registry":
        registry = cls(storage=storage)
        for event in events:
            registry.apply(event if isinstance(event, Event) else decode_event(event))
        return registry

    # --- state -------------------------------------------------------------

    @property
    def inception(self) -> Optional[RegistryInception]:
        return self.events[0] if self.events else None

    @property
    def issuer(self) -> Optional[str]:
        return self.inception.issuer if self.events else None

    @property
    def parent(self) -> Optional[str]:
        return self.inception.parent if self.events else None

    @property
    def sn(self) -> int:
        return len(self.events) - 1

    def get_last_digest(self) -> Optional[str]:
        return self.events[-1].said if self.events else None

    def get_chain(self) -> List[Event]:
        return self.events.copy()

    def status(self, credential_said: str) -> CredentialStatus:
        """Latest status of `credential_said` in this registry's log."""
        for event in reversed(self.events):
            if isinstance(event, CredentialEvent) and event.credential_said == credential_said:
                return CredentialStatus.REVOKED if isinstance(event, Revocation) else CredentialStatus.ISSUED
        return CredentialStatus.UNKNOWN

    def credentials(self) -> Dict[str, CredentialStatus]:
        """Status of every credential this registry has recorded, in issuance order."""
        statuses: Dict[str, CredentialStatus] = {}
        for event in self.events:
            if isinstance(event, Issuance):
                statuses[event.credential_said] = CredentialStatus.ISSUED
            elif isinstance(event, Revocation):
                statuses[event.credential_said] = CredentialStatus.REVOKED
        return statuses

    def _require_active(self) -> RegistryInception:
        if not self.events:
            raise RegistryNotFound("Registry has no inception")
        return self.inception

    # --- builders ----------------------------------------------------------

    def incept(self, issuer: str, parent: Optional[str] = None,
               nonce: Optional[str] = None) -> RegistryInception:
        """
        Create the registry. A nested registry (`parent` set) must still be
        sealed into the parent's log with `anchor`.
        """
        with self._lock:
            if self.events:
                raise ChainDiscontinuity(
                    f"Registry {self.registry_id} is already incepted",
                    expected_sn=self.sn + 1, actual_sn=0,
                )
            event = RegistryInception.create(issuer, nonce=nonce, parent=parent)
            self.apply(event)
            return event

    def issue(self, credential_said: str, dt: Optional[str] = None) -> Issuance:
        with self._lock:
            self._require_active()
            event = Issuance.create(credential_said, self.registry_id, self.sn + 1,
                                    self.get_last_digest(), dt=dt)
            self.apply(event)
            return event

    def revoke(self, credential_said: str, prior_digest: Optional[str] = None,
               dt: Optional[str] = None) -> Revocation:
        """
        Revoke an issued credential. `prior_digest`, when given, must be the
        SAID of the registry's latest event.
        """
        with self._lock:
            self._require_active()
            last = self.get_last_digest()
            if prior_digest is not None and prior_digest != last:
                raise ChainDiscontinuity(
                    f"Stale prior digest for registry {self.registry_id}",
                    expected_sn=self.sn + 1, actual_sn=self.sn + 1,
                    expected_digest=last, actual_digest=prior_digest,
                )
            event = Revocation.create(credential_said, self.registry_id, self.sn + 1, last, dt=dt)
            self.apply(event)
            return event

    def anchor(self, seals: Iterable[Union[Seal, dict]]) -> RegistryInteraction:
        """Seal other events (e.g. a child registry inception) into this log."""
        with self._lock:
            self._require_active()
            event = RegistryInteraction.create(self.registry_id, self.sn + 1,
                                               self.get_last_digest(), seals)
            self.apply(event)
            return event

    # --- apply -------------------------------------------------------------

    def _check_credential(self, event: CredentialEvent) -> None:
        current = self.status(event.credential_said)
        if isinstance(event, Issuance) and current != CredentialStatus.UNKNOWN:
            raise CredentialStateError(
                f"Credential {event.credential_said} is already {current.value} in {self.registry_id}"
            )
        if isinstance(event, Revocation):
            if current == CredentialStatus.UNKNOWN:
                raise UnknownCredential(
                    f"Credential {event.credential_said} was never issued in {self.registry_id}"
                )
            if current == CredentialStatus.REVOKED:
                raise CredentialStateError(
                    f"Credential {event.credential_said} is already revoked in {self.registry_id}"
                )

    def _validate(self, event: Event) -> bool:
        """False if `event` is a duplicate of an applied one."""
        if not isinstance(event, TEL_EVENT_TYPES):
            raise UnknownIdentifier(f"'{event.ilk}' event does not belong to a registry log")
        if not event.verify_said():
            raise SAIDMismatch(
                f"SAID mismatch on '{event.ilk}' event at sn {event.sn}",
                expected=event.compute_said(), actual=event.said,
            )

        if not self.events:
            if not isinstance(event, RegistryInception):
                raise ChainDiscontinuity(
                    f"Registry log must start with 'vcp', got '{event.ilk}' at sn {event.sn}",
                    expected_sn=0, actual_sn=event.sn,
                )
            if self.registry_id and event.log_id != self.registry_id:
                raise RegistryNotFound(
                    f"Inception of {event.log_id} does not match registry {self.registry_id}"
                )
            return True

        if event.log_id != self.registry_id:
            raise RegistryNotFound(f"Event for registry {event.log_id} applied to {self.registry_id}")
        if event.sn <= self.sn:
            existing = self.events[event.sn]
            if existing.said == event.said:
                return False
            log.warning("fork_detected", registry_id=self.registry_id, sn=event.sn,
                        existing=existing.said, incoming=event.said)
            raise ForkDetected(
                f"Fork in TEL {self.registry_id} at sn {event.sn}",
                sn=event.sn, existing=existing.said, incoming=event.said,
            )
        if event.sn != self.sn + 1:
            raise ChainDiscontinuity(
                f"Out of order event for {self.registry_id}: expected sn {self.sn + 1}, got {event.sn}",
                expected_sn=self.sn + 1, actual_sn=event.sn,
            )
        if event.prior != self.get_last_digest():
            raise ChainDiscontinuity(
                f"Prior digest mismatch for {self.registry_id} at sn {event.sn}",
                expected_sn=self.sn + 1, actual_sn=event.sn,
                expected_digest=self.get_last_digest(), actual_digest=event.prior,
            )
        if isinstance(event, CredentialEvent):
            self._check_credential(event)
        return True

    def apply(self, event: Event, persist: bool = True) -> ApplyOutcome:
        """Validate `event` against the registry's log and append it."""
        with self._lock:
            if not self._validate(event):
                log.debug("duplicate_event_skipped", registry_id=self.registry_id,
                          sn=event.sn, said=event.said)
                return ApplyOutcome.DUPLICATE

            if persist and self.storage:
                record = StoredEvent(
                    log_id=event.log_id,
                    sn=event.sn,
                    said=event.said,
                    ilk=event.ilk,
                    kind=LogKind.TEL,
                    raw=event.raw,
                )
                try:
                    self.storage.append(record, expected_sn=event.sn)
                except DuplicateEvent:
                    log.debug("event_already_stored", registry_id=event.log_id, sn=event.sn)

            self.events.append(event)
            self.registry_id = event.log_id
            log.info("tel_event_applied", registry_id=self.registry_id, sn=event.sn,
                     ilk=event.ilk, said=event.said)
            return ApplyOutcome.ACCEPTED

    def close(self) -> None:
        if self.storage:
            self.storage.close()
            self.storage = None
