"""
SQLAlchemy ORM Models

Tables backing the audit trail. Rows in ``audit_entries`` are inserted once
and never updated or deleted by the application.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from gitops_rbac.audit.chain import (
    AuditDecision,
    AuditEntry,
    AuditEventType,
    format_timestamp,
    parse_timestamp,
)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class AuditEntryRecord(Base):
    """Persisted audit entry."""

    __tablename__ = "audit_entries"

    sequence_number: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=False
    )
    # Canonical ISO-8601 UTC text so the hashed value round-trips exactly.
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    actor_subject: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(512), nullable=False)
    verb: Mapped[str] = mapped_column(String(32), nullable=False)
    decision: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    policy_generation: Mapped[int] = mapped_column(Integer, nullable=False)
    prior_entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryRecord":
        return cls(
            sequence_number=entry.sequence_number,
            timestamp=format_timestamp(entry.timestamp),
            event_type=entry.event_type.value,
            actor_subject=entry.actor_subject,
            resource=entry.resource,
            verb=entry.verb,
            decision=entry.decision.value,
            reason=entry.reason,
            policy_generation=entry.policy_generation,
            prior_entry_hash=entry.prior_entry_hash,
            entry_hash=entry.entry_hash,
        )

    def to_entry(self) -> AuditEntry:
        return AuditEntry(
            sequence_number=self.sequence_number,
            timestamp=parse_timestamp(self.timestamp),
            event_type=AuditEventType(self.event_type),
            actor_subject=self.actor_subject,
            resource=self.resource,
            verb=self.verb,
            decision=AuditDecision(self.decision),
            reason=self.reason,
            policy_generation=self.policy_generation,
            prior_entry_hash=self.prior_entry_hash,
            entry_hash=self.entry_hash,
        )

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.sequence_number} {self.decision} {self.verb} {self.resource}>"


class AuditArchiveRecord(Base):
    """A range of entries exported past the retention window."""

    __tablename__ = "audit_archives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    archived_at: Mapped[str] = mapped_column(String(40), nullable=False)
    bundle_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    bundle_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditArchive {self.first_sequence}-{self.last_sequence}>"
