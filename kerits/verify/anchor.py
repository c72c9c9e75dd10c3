# kerits/verify/anchor.py
"""
Cross-log anchoring checks.

A seal `{i, d}` in a host event (KEL interaction, or parent TEL event) claims
the event with SAID `d` of log `i`. The claim holds only if `d` equals the
SAID recomputed from the anchored body, so a verifier holding both logs can
prove the relationship without trusting either event's `d` field.
"""

from typing import Any, Dict, Iterable, Optional, Sequence, Union

import structlog

from kerits.core.errors import RegistryNotFound
from kerits.core.events import Event, RegistryInception, decode_event
from kerits.core.types import Seal

log = structlog.get_logger(__name__)

EventLike = Union[Event, Dict[str, Any]]


def _event(value: EventLike) -> Event:
    return value if isinstance(value, Event) else decode_event(value)


def _seal(value: Union[Seal, Dict[str, Any]]) -> Seal:
    return value if isinstance(value, Seal) else Seal.from_dict(value)


def _matches(candidate: Seal, seal: Seal) -> bool:
    if candidate.i != seal.i or candidate.d != seal.d:
        return False
    return candidate.s is None or seal.s is None or candidate.s == seal.s


def verify_anchor(host_event: EventLike, seal: Union[Seal, Dict[str, Any]],
                  anchored_event: EventLike) -> bool:
    host = _event(host_event)
    anchored = _event(anchored_event)
    seal = _seal(seal)

    if not host.verify_said():
        log.debug("anchor_host_tampered", host=host.said)
        return False
    if seal.i != anchored.log_id:
        return False
    if seal.d != anchored.compute_said():
        log.debug("anchor_digest_mismatch", seal=seal.d, anchored=anchored.said)
        return False
    return any(_matches(candidate, seal) for candidate in host.seals)


def find_anchor(host_events: Iterable[EventLike], anchored_event: EventLike) -> Optional[Event]:
    """First host event carrying a valid seal for `anchored_event`."""
    anchored = _event(anchored_event)
    for value in host_events:
        host = _event(value)
        for seal in host.seals:
            if seal.i == anchored.log_id and verify_anchor(host, seal, anchored):
                return host
    return None


def verify_registry_anchoring(
    vcp: EventLike,
    issuer_kel: Sequence[EventLike],
    parent_events: Optional[Sequence[EventLike]] = None,
) -> bool:
    """
    Every registry inception must be sealed in its issuer's KEL. A nested
    registry must additionally be sealed in its parent's TEL.
    """
    inception = _event(vcp)
    if not isinstance(inception, RegistryInception):
        raise ValueError(f"Expected a registry inception, got '{inception.ilk}'")

    kel = [_event(e) for e in issuer_kel]
    if not kel or kel[0].log_id != inception.issuer:
        log.debug("registry_issuer_mismatch", registry_id=inception.log_id, issuer=inception.issuer)
        return False
    if find_anchor(kel, inception) is None:
        return False

    if inception.parent is None:
        return True
    if not parent_events:
        raise RegistryNotFound(f"Parent registry {inception.parent} of {inception.log_id} not provided")
    parent = [_event(e) for e in parent_events]
    if parent[0].log_id != inception.parent:
        return False
    return find_anchor(parent, inception) is not None
