"""
GITOPS RBAC - Audit Hash Chain

Entry structure, hashing and chain verification. Everything here is pure:
verification recomputes hashes from entry fields and never consults the
writer's state.
"""

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional


GENESIS_HASH = "0" * 64


class AuditEventType(str, Enum):
    """Categories of audited events."""

    AUTHZ_DECISION = "authz.decision"
    POLICY_INSTALLED = "policy.installed"
    POLICY_REJECTED = "policy.rejected"


class AuditDecision(str, Enum):
    """Outcome recorded on an entry."""

    ALLOW = "allow"
    DENY = "deny"


def format_timestamp(ts: datetime) -> str:
    """Canonical UTC timestamp text; sorts lexicographically."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(text: str) -> datetime:
    return datetime.fromisoformat(text)


def compute_entry_hash(fields: Dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON of every field except ``entry_hash``."""
    content = {k: v for k, v in fields.items() if k != "entry_hash"}
    return hashlib.sha256(
        json.dumps(content, sort_keys=True, separators=(",", ":")).encode()
    ).hexdigest()


@dataclass(frozen=True)
class AuditEntry:
    """One persisted, append-only audit record."""

    sequence_number: int
    timestamp: datetime
    event_type: AuditEventType
    actor_subject: str
    resource: str
    verb: str
    decision: AuditDecision
    reason: str
    policy_generation: int
    prior_entry_hash: str
    entry_hash: str

    @classmethod
    def create(
        cls,
        sequence_number: int,
        timestamp: datetime,
        event_type: AuditEventType,
        actor_subject: str,
        resource: str,
        verb: str,
        decision: AuditDecision,
        reason: str,
        policy_generation: int,
        prior_entry_hash: str,
    ) -> "AuditEntry":
        """Build an entry and seal it with its hash."""
        unsealed = cls(
            sequence_number=sequence_number,
            timestamp=timestamp,
            event_type=event_type,
            actor_subject=actor_subject,
            resource=resource,
            verb=verb,
            decision=decision,
            reason=reason,
            policy_generation=policy_generation,
            prior_entry_hash=prior_entry_hash,
            entry_hash="",
        )
        return replace(unsealed, entry_hash=unsealed.compute_hash())

    @property
    def action(self) -> str:
        return f"{self.verb} {self.resource}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "timestamp": format_timestamp(self.timestamp),
            "event_type": self.event_type.value,
            "actor_subject": self.actor_subject,
            "resource": self.resource,
            "verb": self.verb,
            "decision": self.decision.value,
            "reason": self.reason,
            "policy_generation": self.policy_generation,
            "prior_entry_hash": self.prior_entry_hash,
            "entry_hash": self.entry_hash,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def compute_hash(self) -> str:
        return compute_entry_hash(self.to_dict())

    def verify_integrity(self) -> bool:
        return self.entry_hash == self.compute_hash()


@dataclass(frozen=True)
class ChainVerification:
    """Result of recomputing a range of the chain."""

    valid: bool
    checked: int
    broken_at: Optional[int] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "checked": self.checked,
            "broken_at": self.broken_at,
            "message": self.message,
        }


def verify_entries(
    entries: Iterable[AuditEntry],
    anchor_hash: str = GENESIS_HASH,
    start: Optional[int] = None,
) -> ChainVerification:
    """
    Verify a contiguous run of entries.

    Args:
        entries: Entries ordered by sequence number
        anchor_hash: entry_hash of the entry preceding the run
        start: Sequence number the run must begin with (defaults to the first entry's)

    Returns:
        ChainVerification naming the first broken sequence number, if any
    """
    expected = start
    prior = anchor_hash
    checked = 0

    for entry in entries:
        if expected is None:
            expected = entry.sequence_number

        if entry.sequence_number != expected:
            return ChainVerification(
                False, checked, expected,
                f"sequence gap: expected {expected}, found {entry.sequence_number}",
            )
        if entry.prior_entry_hash != prior:
            return ChainVerification(
                False, checked, entry.sequence_number,
                f"entry {entry.sequence_number} does not link to its predecessor",
            )
        if not entry.verify_integrity():
            return ChainVerification(
                False, checked, entry.sequence_number,
                f"entry {entry.sequence_number} hash mismatch",
            )

        prior = entry.entry_hash
        expected += 1
        checked += 1

    return ChainVerification(True, checked)
