# kerits/verify/verifier.py
from typing import Any, Dict, List, Optional, Sequence, Union
from dataclasses import dataclass

from kerits.core.canon import loads
from kerits.core.errors import InvalidSignature, KeritsError
from kerits.core.events import (
    CredentialEvent,
    EstablishmentEvent,
    Event,
    Inception,
    RegistryInception,
    Revocation,
    Rotation,
    decode_event,
)
from kerits.core.credential import Credential
from kerits.core.types import IndexedSignature, LogKind
from kerits.crypto.hashing import next_key_digest
from kerits.crypto.keys import verify_event_signatures
from kerits.storage import LogStore


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "log"  # "said", "sequence", "hash_chain", "key_commitment", "signature", "log"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = None

    def __post_init__(self):
        if self.failures is None:
            self.failures = []

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def fail(self, index: int, message: str, category: str) -> None:
        self.failures.append(VerificationFailure(index, message, category))
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Log is valid ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class LogVerifier:
    """
    Offline verifier for KELs and TELs.
    Unlike the engines it never raises on bad data: every problem found is
    collected into the result. Can verify a loaded log or read from storage.
    """

    def verify(
        self,
        events: Sequence[Union[Event, Dict[str, Any]]],
        signatures: Optional[Sequence[Optional[Sequence[IndexedSignature]]]] = None,
    ) -> VerificationResult:
        """
        events: one log, in order. signatures: per-event indexed signatures;
        None (or an empty entry) skips the signature check for that event.
        """
        if not events:
            return VerificationResult(True, "Empty log is valid")

        result = VerificationResult(True)

        # 1. Decoding & self-addressing
        chain: List[Event] = []
        for i, value in enumerate(events):
            try:
                event = value if isinstance(value, Event) else decode_event(value)
            except KeritsError as e:
                result.fail(i, f"Undecodable event: {e}", "log")
                return result
            if not event.verify_said():
                result.fail(i, f"SAID mismatch: claimed {event.said}, computed {event.compute_said()}", "said")
            chain.append(event)

        # 2. Log identity & sequence
        first = chain[0]
        if not isinstance(first, (Inception, RegistryInception)):
            result.fail(0, f"Log must start with an inception, got '{first.ilk}'", "log")
        log_id = first.log_id
        for i, event in enumerate(chain):
            if event.log_id != log_id:
                result.fail(i, f"Event belongs to {event.log_id}, not {log_id}", "log")
            if event.sn != i:
                result.fail(i, f"Sequence mismatch: expected {i}, got {event.sn}", "sequence")
            if i > 0 and isinstance(event, (Inception, RegistryInception)):
                result.fail(i, f"Unexpected '{event.ilk}' after sn 0", "log")

        if not result.is_valid:
            return result

        # 3. Hash chain
        for i in range(1, len(chain)):
            if chain[i].prior != chain[i - 1].said:
                result.fail(i, "p does not match the previous event's SAID", "hash_chain")

        # 4. Log-specific rules
        if isinstance(first, Inception):
            self._verify_key_state(chain, signatures, result)
        else:
            self._verify_credentials(chain, result)

        result.message = "Valid log" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

    @staticmethod
    def _verify_key_state(chain: List[Event], signatures, result: VerificationResult) -> None:
        keys: List[str] = []
        threshold = 1
        committed: List[str] = []
        for i, event in enumerate(chain):
            if isinstance(event, Rotation):
                revealed = [next_key_digest(k) for k in event.keys]
                if revealed != committed:
                    result.fail(i, "Rotation keys do not match the prior next-key commitment", "key_commitment")
            if isinstance(event, EstablishmentEvent):
                keys, threshold = event.keys, event.key_threshold
                committed = event.next_key_digests

            sigs = signatures[i] if signatures and i < len(signatures) else None
            if sigs:
                try:
                    verify_event_signatures(event, keys, threshold, sigs)
                except InvalidSignature as e:
                    result.fail(i, str(e), "signature")

    @staticmethod
    def _verify_credentials(chain: List[Event], result: VerificationResult) -> None:
        issued: Dict[str, bool] = {}     # credential said → revoked?
        for i, event in enumerate(chain):
            if not isinstance(event, CredentialEvent):
                continue
            said = event.credential_said
            if isinstance(event, Revocation):
                if said not in issued:
                    result.fail(i, f"Revocation of never-issued credential {said}", "log")
                elif issued[said]:
                    result.fail(i, f"Credential {said} revoked twice", "log")
                issued[said] = True
            else:
                if said in issued:
                    result.fail(i, f"Credential {said} issued twice", "log")
                issued[said] = False

    def verify_credential(self, body: Dict[str, Any]) -> VerificationResult:
        """Check a credential body: its shape and its credential, attribute and edge SAIDs."""
        result = VerificationResult(True, "Credential is valid")
        try:
            credential = Credential.from_dict(body)
        except KeritsError as e:
            result.fail(0, f"Undecodable credential: {e}", "log")
            return result
        if not credential.verify():
            result.fail(0, f"SAID mismatch on credential {credential.said}", "said")
        return result

    def verify_from_storage(self, log_id: str, storage: LogStore) -> VerificationResult:
        """
        Load a log from persistent storage and verify it, including any
        stored signatures.
        """
        try:
            records = storage.load_events(log_id)
        except Exception as e:
            return VerificationResult(
                False,
                f"Failed to load log '{log_id}' from storage: {str(e)}",
                [VerificationFailure(-1, str(e), "log")]
            )
        if not records:
            return VerificationResult(
                False,
                f"Log '{log_id}' not found",
                [VerificationFailure(-1, f"No events stored for '{log_id}'", "log")]
            )

        if records[0].kind == LogKind.ACDC:
            return self.verify_credential(loads(records[0].raw))

        return self.verify(
            [loads(r.raw) for r in records],
            [r.signatures for r in records],
        )
