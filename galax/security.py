"""
GALAX Security Layer

1. Nonce Management - per-participant sequential counters for replay prevention
2. Audit Logging - tamper-evident forensic trail of authorization outcomes

Security Model:
    - Fail-secure: a nonce only moves forward, by exactly one, on consumption
    - Audit everything: every authorization decision is chained into the log
"""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from galax.hardening import InvariantChecker, UINT256_MAX


# =============================================================================
# NONCE REGISTRY
# =============================================================================

class NonceRegistry:
    """
    Sequential nonce counters keyed by participant address.

    Unlike a seen-set registry, each participant has exactly one acceptable
    nonce at any time: the current counter value. Checking is read-only;
    consumption advances the counter by one. The registry is owned by the
    participant directory and guarded by the world transition lock, so it
    holds no lock of its own and deep-copies cleanly for rollback snapshots.
    """

    def __init__(self) -> None:
        self._nonces: Dict[str, int] = {}

    def current(self, address: str) -> int:
        """Get the nonce the next authorization for ``address`` must carry."""
        return self._nonces.get(address, 0)

    def is_current(self, address: str, nonce: int) -> bool:
        return nonce == self.current(address)

    def consume(self, address: str, nonce: int) -> int:
        """Advance the counter past ``nonce``. Returns the new current nonce."""
        current = self.current(address)
        if nonce != current:
            # Callers verify before consuming; a mismatch here is a bug.
            raise ValueError(f"nonce {nonce} is not current ({current}) for {address}")
        new_value = current + 1
        InvariantChecker.check_bounded("nonce", new_value, UINT256_MAX)
        self._nonces[address] = new_value
        return new_value

    def size(self) -> int:
        return len(self._nonces)


# =============================================================================
# AUDIT LOGGER
# =============================================================================

class AuditEventType(Enum):
    """Types of audit events."""
    AUTHZ_GRANTED = "authz_granted"
    AUTHZ_DENIED = "authz_denied"
    REPLAY_ATTEMPT = "replay_attempt"
    SIGNATURE_INVALID = "signature_invalid"
    NONCE_CONSUMED = "nonce_consumed"
    CAPABILITY_DENIED = "capability_denied"


@dataclass
class AuditEvent:
    """An audit log entry."""
    event_id: str
    event_type: AuditEventType
    timestamp: str
    actor: str
    resource_type: str
    resource_id: str
    action: str
    outcome: str  # success, failure
    details: Dict[str, Any]

    # Tamper evidence
    previous_event_digest: Optional[str] = None
    event_digest: str = ""

    def __post_init__(self):
        if not self.event_digest:
            self.event_digest = self._compute_digest()

    def _compute_digest(self) -> str:
        content = {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "action": self.action,
            "outcome": self.outcome,
            "details": self.details,
            "previous_event_digest": self.previous_event_digest,
        }
        canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "action": self.action,
            "outcome": self.outcome,
            "details": self.details,
            "previous_event_digest": self.previous_event_digest,
            "event_digest": self.event_digest,
        }


class AuditLogger:
    """
    Tamper-evident audit logger.

    Each event includes a hash chain linking to the previous event,
    making it possible to detect log tampering. The audit trail is
    observability, not ledger state: entries for rejected calls stay
    even though the rejected transition itself is rolled back.
    """

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log(
        self,
        event_type: AuditEventType,
        actor: str,
        resource_type: str,
        resource_id: str,
        action: str,
        outcome: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        with self._lock:
            previous_digest = self._events[-1].event_digest if self._events else None
            event = AuditEvent(
                event_id=f"audit-{len(self._events) + 1:012d}",
                event_type=event_type,
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=actor,
                resource_type=resource_type,
                resource_id=resource_id,
                action=action,
                outcome=outcome,
                details={k: str(v) for k, v in (details or {}).items()},
                previous_event_digest=previous_digest,
            )
            self._events.append(event)
            return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify the audit log chain integrity.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            for i, event in enumerate(self._events):
                if event._compute_digest() != event.event_digest:
                    return (False, i)
                if i > 0 and event.previous_event_digest != self._events[i - 1].event_digest:
                    return (False, i)
            return (True, None)

    def get_events(
        self,
        actor: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        resource_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        with self._lock:
            events = list(self._events)

        if actor:
            events = [e for e in events if e.actor == actor]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if resource_id:
            events = [e for e in events if e.resource_id == resource_id]

        return events[-limit:]

    def export(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.to_dict() for e in self._events]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
