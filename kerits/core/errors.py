# kerits/core/errors.py
"""
Error taxonomy for the identifier and registry engines.

Every failure that aborts an append carries enough context (expected vs.
actual sequence number or digest) for the caller to decide whether to
re-sync, alert, or distrust the peer. Nothing here is retried internally.
"""

from typing import List, Optional


class KeritsError(Exception):
    """Base exception for all kerits errors."""


class MalformedInput(KeritsError):
    """Unparseable stream, JSON body, version string or qb64 value."""


class SAIDMismatch(KeritsError):
    """Recomputed digest differs from the claimed one."""

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ChainDiscontinuity(KeritsError):
    """Event does not extend the log: wrong sequence number or prior digest."""

    def __init__(
        self,
        message: str,
        expected_sn: Optional[int] = None,
        actual_sn: Optional[int] = None,
        expected_digest: Optional[str] = None,
        actual_digest: Optional[str] = None,
    ):
        super().__init__(message)
        self.expected_sn = expected_sn
        self.actual_sn = actual_sn
        self.expected_digest = expected_digest
        self.actual_digest = actual_digest


class ForkDetected(KeritsError):
    """Two different events claim the same sequence number of one log."""

    def __init__(self, message: str, sn: int, existing: str, incoming: str):
        super().__init__(message)
        self.sn = sn
        self.existing = existing
        self.incoming = incoming


class KeyCommitmentViolation(KeritsError):
    """Revealed keys do not hash to the prior next-key commitment."""


class InvalidSignature(KeritsError):
    """Attached signatures fail to verify or do not meet the signing threshold."""


class UnknownIdentifier(KeritsError):
    """Reference to an identifier (KEL) not present locally."""


class RegistryNotFound(KeritsError):
    """Reference to a registry (TEL) not present locally."""


class UnknownCredential(KeritsError):
    """Credential digest has no issuance in the registry."""


class CredentialStateError(KeritsError):
    """Credential transition not allowed from its current status (re-issue, double revoke)."""


class SchemaViolation(KeritsError):
    """Credential attributes do not satisfy the credential's schema."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or ())



class DuplicateEvent(KeritsError):
    """
    The exact event is already stored. Not a failure: engines absorb it and
    report the append as a no-op.
    """

    def __init__(self, message: str, log_id: str = "", sn: int = -1, said: str = ""):
        super().__init__(message)
        self.log_id = log_id
        self.sn = sn
        self.said = said


class StorageError(KeritsError):
    """Persistent store operation failed."""
