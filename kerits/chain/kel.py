# kerits/chain/kel.py
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Union

import structlog

from kerits.core.errors import (
    ChainDiscontinuity,
    DuplicateEvent,
    ForkDetected,
    KeyCommitmentViolation,
    SAIDMismatch,
    UnknownIdentifier,
)
from kerits.core.events import (
    EstablishmentEvent,
    Event,
    Inception,
    Interaction,
    KEL_TYPES,
    Rotation,
    decode_event,
)
from kerits.core.canon import loads
from kerits.core.types import ApplyOutcome, IndexedSignature, KeyState, LogKind, Seal, StoredEvent
from kerits.crypto.hashing import next_key_digest
from kerits.crypto.keys import Signer, sign_event, verify_event_signatures
from kerits.storage import LogStore, open_storage

log = structlog.get_logger(__name__)


@dataclass
class KeyEventLog:
    """
    Key event log of one identifier.

    Starts Uninitialized (no events) and becomes Active once an inception is
    applied. Every mutation goes through `apply`, which checks the SAID,
    sequence and prior-digest continuity and the pre-rotation commitment
    before persisting. Mutations are serialized per instance.
    """
    prefix: Optional[str] = None
    storage: Optional[Union[LogStore, str]] = None
    events: List[Event] = field(default_factory=list)
    signatures: List[tuple] = field(default_factory=list)
    _state: Optional[KeyState] = field(default=None, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self):
        self.storage = open_storage(self.storage)
        preloaded, self.events = self.events, []
        if preloaded:
            for event in preloaded:
                self.apply(event, persist=False)
        elif self.storage and self.prefix:
            records = self.storage.load_events(self.prefix)
            if not records:
                raise UnknownIdentifier(f"No KEL stored for identifier {self.prefix}")
            for record in records:
                self.apply(decode_event(loads(record.raw)), record.signatures or None, persist=False)
            log.info("kel_loaded", prefix=self.prefix, events=len(records))

    @classmethod
    def replay(cls, events: Iterable[Union[Event, dict]], storage: Optional[Union[LogStore, str]] = None) -> "KeyEventLog":
        """Rebuild a log by applying `events` in order."""
        kel = cls(storage=storage)
        for event in events:
            kel.apply(event if isinstance(event, Event) else decode_event(event))
        return kel

    # --- state -------------------------------------------------------------

    @property
    def state(self) -> Optional[KeyState]:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not None

    @property
    def sn(self) -> int:
        return self._state.sn if self._state else -1

    @property
    def length(self) -> int:
        return len(self.events)

    def get_chain(self) -> List[Event]:
        """Returns copy of the full chain (immutable view)"""
        return self.events.copy()

    def get_event(self, sn: int) -> Optional[Event]:
        return self.events[sn] if 0 <= sn < len(self.events) else None

    def get_last_digest(self) -> Optional[str]:
        return self._state.last_digest if self._state else None

    def _require_active(self) -> KeyState:
        if self._state is None:
            raise UnknownIdentifier("Key event log has no inception")
        return self._state

    # --- builders ----------------------------------------------------------

    def incept(
        self,
        keys: Sequence[str],
        next_key_digests: Sequence[str],
        key_threshold: Optional[int] = None,
        next_threshold: Optional[int] = None,
        signers: Optional[Sequence[Signer]] = None,
    ) -> Inception:
        with self._lock:
            if self._state is not None:
                raise ChainDiscontinuity(
                    f"Identifier {self._state.prefix} is already incepted",
                    expected_sn=self._state.sn + 1, actual_sn=0,
                )
            event = Inception.create(keys, next_key_digests, key_threshold, next_threshold)
            self.apply(event, sign_event(event, signers) if signers else None)
            return event

    def rotate(
        self,
        keys: Sequence[str],
        next_key_digests: Sequence[str],
        revealed_keys: Optional[Sequence[str]] = None,
        key_threshold: Optional[int] = None,
        next_threshold: Optional[int] = None,
        signers: Optional[Sequence[Signer]] = None,
    ) -> Rotation:
        """
        Rotate to `keys`, which must be the keys committed by the prior
        establishment event, and commit to `next_key_digests`.
        `revealed_keys` defaults to `keys`; a different list is rejected.
        """
        with self._lock:
            state = self._require_active()
            revealed = list(keys if revealed_keys is None else revealed_keys)
            if revealed != list(keys):
                raise KeyCommitmentViolation("Revealed next keys must be the new signing keys")
            self._check_commitment(state, revealed)
            event = Rotation.create(
                state.prefix, state.sn + 1, state.last_digest, keys, next_key_digests,
                key_threshold, next_threshold,
            )
            self.apply(event, sign_event(event, signers) if signers else None)
            return event

    def interact(self, seals: Iterable[Union[Seal, dict]] = (),
                 signers: Optional[Sequence[Signer]] = None) -> Interaction:
        with self._lock:
            state = self._require_active()
            event = Interaction.create(state.prefix, state.sn + 1, state.last_digest, seals)
            self.apply(event, sign_event(event, signers) if signers else None)
            return event

    # --- validation --------------------------------------------------------

    @staticmethod
    def _check_commitment(state: KeyState, revealed: Sequence[str]) -> None:
        if not state.transferable:
            raise KeyCommitmentViolation(f"Identifier {state.prefix} is non-transferable")
        digests = [next_key_digest(k) for k in revealed]
        if digests != list(state.next_key_digests):
            raise KeyCommitmentViolation(
                f"Revealed keys do not match the commitment of {state.prefix} "
                f"at sn {state.last_establishment_sn}"
            )

    def _check_duplicate_or_fork(self, event: Event) -> bool:
        """True if `event` is already applied; raises ForkDetected if it conflicts."""
        existing = self.events[event.sn]
        if existing.said == event.said:
            return True
        log.warning("fork_detected", prefix=self._state.prefix, sn=event.sn,
                    existing=existing.said, incoming=event.said)
        raise ForkDetected(
            f"Fork in KEL {self._state.prefix} at sn {event.sn}",
            sn=event.sn, existing=existing.said, incoming=event.said,
        )

    def _validate(self, event: Event) -> Optional[KeyState]:
        """Return the next state, or None if `event` is a duplicate."""
        if type(event) not in KEL_TYPES.values():
            raise UnknownIdentifier(f"'{event.ilk}' event does not belong to a key event log")
        if not event.verify_said():
            raise SAIDMismatch(
                f"SAID mismatch on '{event.ilk}' event at sn {event.sn}",
                expected=event.compute_said(), actual=event.said,
            )

        state = self._state
        if state is None:
            if not isinstance(event, Inception):
                raise ChainDiscontinuity(
                    f"Key event log must start with inception, got '{event.ilk}' at sn {event.sn}",
                    expected_sn=0, actual_sn=event.sn,
                )
            if self.prefix and event.log_id != self.prefix:
                raise UnknownIdentifier(f"Inception of {event.log_id} does not match log {self.prefix}")
            return KeyState(
                prefix=event.log_id,
                sn=0,
                last_digest=event.said,
                keys=tuple(event.keys),
                key_threshold=event.key_threshold,
                next_key_digests=tuple(event.next_key_digests),
                next_threshold=event.next_threshold,
                last_establishment_sn=0,
            )

        if event.log_id != state.prefix:
            raise UnknownIdentifier(f"Event for {event.log_id} applied to KEL of {state.prefix}")
        if event.sn <= state.sn:
            if self._check_duplicate_or_fork(event):
                return None
        if event.sn != state.sn + 1:
            raise ChainDiscontinuity(
                f"Out of order event for {state.prefix}: expected sn {state.sn + 1}, got {event.sn}",
                expected_sn=state.sn + 1, actual_sn=event.sn,
            )
        if event.prior != state.last_digest:
            raise ChainDiscontinuity(
                f"Prior digest mismatch for {state.prefix} at sn {event.sn}",
                expected_sn=state.sn + 1, actual_sn=event.sn,
                expected_digest=state.last_digest, actual_digest=event.prior,
            )

        if isinstance(event, Rotation):
            self._check_commitment(state, event.keys)
            return KeyState(
                prefix=state.prefix,
                sn=event.sn,
                last_digest=event.said,
                keys=tuple(event.keys),
                key_threshold=event.key_threshold,
                next_key_digests=tuple(event.next_key_digests),
                next_threshold=event.next_threshold,
                last_establishment_sn=event.sn,
            )
        return KeyState(
            prefix=state.prefix,
            sn=event.sn,
            last_digest=event.said,
            keys=state.keys,
            key_threshold=state.key_threshold,
            next_key_digests=state.next_key_digests,
            next_threshold=state.next_threshold,
            last_establishment_sn=state.last_establishment_sn,
        )

    # --- apply -------------------------------------------------------------

    def apply(
        self,
        event: Event,
        signatures: Optional[Sequence[IndexedSignature]] = None,
        persist: bool = True,
    ) -> ApplyOutcome:
        """
        Validate `event` against the current state and append it.
        Signatures, when given, must meet the threshold of the keys that
        establish the event (its own for inception/rotation, current ones
        for interaction).
        """
        with self._lock:
            new_state = self._validate(event)
            if new_state is None:
                log.debug("duplicate_event_skipped", prefix=self._state.prefix, sn=event.sn, said=event.said)
                return ApplyOutcome.DUPLICATE

            if signatures is not None:
                if isinstance(event, EstablishmentEvent):
                    keys, threshold = event.keys, event.key_threshold
                else:
                    keys, threshold = list(self._state.keys), self._state.key_threshold
                verify_event_signatures(event, keys, threshold, signatures)

            if persist and self.storage:
                record = StoredEvent(
                    log_id=new_state.prefix,
                    sn=event.sn,
                    said=event.said,
                    ilk=event.ilk,
                    kind=LogKind.KEL,
                    raw=event.raw,
                    signatures=tuple(signatures or ()),
                )
                try:
                    self.storage.append(record, expected_sn=event.sn)
                except DuplicateEvent:
                    # stored by an earlier session; adopt it
                    log.debug("event_already_stored", prefix=new_state.prefix, sn=event.sn)

            self.events.append(event)
            self.signatures.append(tuple(signatures or ()))
            self._state = new_state
            self.prefix = new_state.prefix
            log.info("kel_event_applied", prefix=new_state.prefix, sn=event.sn, ilk=event.ilk, said=event.said)
            return ApplyOutcome.ACCEPTED

    def close(self) -> None:
        """Release any storage resources (e.g. database connection)."""
        if self.storage:
            self.storage.close()
            log.debug("storage_closed", prefix=self.prefix)
            self.storage = None
