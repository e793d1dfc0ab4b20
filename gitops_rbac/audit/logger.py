"""
GITOPS RBAC - Audit Logger

Append-only, hash-chained audit trail of authorization decisions and policy
changes.

``append`` is the only writer. Sequence number and chain link are assigned
under a single lock, the row is committed, and only then does the head
advance and the entry get returned. A failed commit raises
AuditPersistenceError and leaves the head where it was, so sequence numbers
stay gapless.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from gitops_rbac.audit.chain import (
    GENESIS_HASH,
    AuditDecision,
    AuditEntry,
    AuditEventType,
    ChainVerification,
    format_timestamp,
    verify_entries,
)
from gitops_rbac.audit.models import AuditArchiveRecord, AuditEntryRecord
from gitops_rbac.core.event_bus import Event, EventBus, EventPriority, EventType
from gitops_rbac.core.exceptions import AuditError, AuditPersistenceError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditArchive:
    """Summary of one archive bundle."""

    first_sequence: int
    last_sequence: int
    archived_at: datetime
    bundle_path: str
    bundle_hash: str


class AuditLogger:
    """
    Central audit trail service.

    All audit entries flow through this class.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        event_bus: Optional[EventBus] = None,
        retention_days: int = 90,
        archive_dir: Optional[Union[str, Path]] = None,
    ):
        self._session_maker = session_maker
        self._event_bus = event_bus
        self.retention = timedelta(days=retention_days)
        self.archive_dir = Path(archive_dir) if archive_dir else None

        self._lock = asyncio.Lock()
        self._loaded = False
        self._last_sequence = 0
        self._last_hash = GENESIS_HASH
        self._last_timestamp: Optional[datetime] = None

    # --------------------------------------------------------
    # Head
    # --------------------------------------------------------

    async def open(self) -> None:
        """Recover the chain head from the database."""
        async with self._lock:
            await self._load_head()

    async def _load_head(self) -> None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(AuditEntryRecord)
                .order_by(AuditEntryRecord.sequence_number.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()

        if record is None:
            self._last_sequence, self._last_hash, self._last_timestamp = 0, GENESIS_HASH, None
        else:
            entry = record.to_entry()
            self._last_sequence = entry.sequence_number
            self._last_hash = entry.entry_hash
            self._last_timestamp = entry.timestamp
        self._loaded = True
        logger.info(f"Audit head at sequence {self._last_sequence}")

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    @property
    def last_hash(self) -> str:
        return self._last_hash

    # --------------------------------------------------------
    # Append
    # --------------------------------------------------------

    async def append(
        self,
        event_type: AuditEventType,
        actor_subject: str,
        resource: str,
        verb: str,
        decision: AuditDecision,
        reason: str,
        policy_generation: int,
    ) -> AuditEntry:
        """
        Durably append one entry.

        Returns:
            The committed entry

        Raises:
            AuditPersistenceError: If the entry could not be committed
        """
        async with self._lock:
            if not self._loaded:
                await self._load_head()

            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now < self._last_timestamp:
                now = self._last_timestamp

            entry = AuditEntry.create(
                sequence_number=self._last_sequence + 1,
                timestamp=now,
                event_type=event_type,
                actor_subject=actor_subject,
                resource=resource,
                verb=verb,
                decision=decision,
                reason=reason,
                policy_generation=policy_generation,
                prior_entry_hash=self._last_hash,
            )

            try:
                async with self._session_maker() as session:
                    session.add(AuditEntryRecord.from_entry(entry))
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(
                    f"Audit entry {entry.sequence_number} could not be persisted: {e}"
                )
                raise AuditPersistenceError(
                    f"Audit entry {entry.sequence_number} could not be persisted",
                    sequence_number=entry.sequence_number,
                ) from e

            self._last_sequence = entry.sequence_number
            self._last_hash = entry.entry_hash
            self._last_timestamp = entry.timestamp

        logger.info("AUDIT", extra={"audit_entry": entry.to_dict()})

        if self._event_bus is not None:
            await self._event_bus.publish(Event(
                event_type=EventType.AUDIT_ENTRY_APPENDED,
                data=entry.to_dict(),
                source="audit_logger",
                priority=EventPriority.NORMAL,
            ))

        return entry

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    async def range(self, start: int = 1, end: Optional[int] = None) -> List[AuditEntry]:
        """Entries with ``start <= sequence_number <= end``, in order."""
        query = select(AuditEntryRecord).where(AuditEntryRecord.sequence_number >= start)
        if end is not None:
            query = query.where(AuditEntryRecord.sequence_number <= end)
        query = query.order_by(AuditEntryRecord.sequence_number)

        async with self._session_maker() as session:
            result = await session.execute(query)
            return [r.to_entry() for r in result.scalars().all()]

    async def between(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[AuditEntry]:
        """Entries whose timestamp falls in ``[start_time, end_time)``."""
        query = select(AuditEntryRecord)
        if start_time is not None:
            query = query.where(AuditEntryRecord.timestamp >= format_timestamp(start_time))
        if end_time is not None:
            query = query.where(AuditEntryRecord.timestamp < format_timestamp(end_time))
        query = query.order_by(AuditEntryRecord.sequence_number).limit(limit)

        async with self._session_maker() as session:
            result = await session.execute(query)
            return [r.to_entry() for r in result.scalars().all()]

    async def latest(self, limit: int = 50) -> List[AuditEntry]:
        """Most recent entries, newest first."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(AuditEntryRecord)
                .order_by(AuditEntryRecord.sequence_number.desc())
                .limit(limit)
            )
            return [r.to_entry() for r in result.scalars().all()]

    async def count(self) -> int:
        async with self._session_maker() as session:
            result = await session.execute(select(func.count()).select_from(AuditEntryRecord))
            return int(result.scalar_one())

    # --------------------------------------------------------
    # Verification
    # --------------------------------------------------------

    async def verify_chain(self, start: int = 1, end: Optional[int] = None) -> ChainVerification:
        """
        Recompute hashes over ``[start, end]`` and check every link.

        The entry just before ``start`` anchors the first link.
        """
        if not self._loaded:
            await self.open()

        start = max(start, 1)
        anchor = GENESIS_HASH
        if start > 1:
            previous = await self.range(start - 1, start - 1)
            if not previous:
                return ChainVerification(
                    False, 0, start - 1, f"anchor entry {start - 1} is missing"
                )
            anchor = previous[0].entry_hash

        entries = await self.range(start, end)
        result = verify_entries(entries, anchor_hash=anchor, start=start)

        # Rows missing up to the known head are a break even when the
        # surviving entries link correctly.
        last = self._last_sequence if end is None else min(end, self._last_sequence)
        if result.valid and last >= start:
            expected = last - start + 1
            if result.checked < expected:
                result = ChainVerification(
                    False, result.checked, start + result.checked,
                    f"expected {expected} entries up to {last}, found {result.checked}",
                )

        if not result.valid:
            logger.warning(f"Audit chain broken at {result.broken_at}: {result.message}")
        return result

    # --------------------------------------------------------
    # Export & Retention
    # --------------------------------------------------------

    async def export(self, start: int = 1, end: Optional[int] = None) -> Dict[str, Any]:
        """Export a range as a bundle with an integrity hash."""
        entries = await self.range(start, end)
        bundle: Dict[str, Any] = {
            "export_timestamp": format_timestamp(datetime.now(timezone.utc)),
            "first_sequence": entries[0].sequence_number if entries else None,
            "last_sequence": entries[-1].sequence_number if entries else None,
            "entry_count": len(entries),
            "entries": [e.to_dict() for e in entries],
        }
        content = json.dumps(bundle, sort_keys=True)
        bundle["integrity_hash"] = hashlib.sha256(content.encode()).hexdigest()
        return bundle

    async def _last_archived_sequence(self) -> int:
        async with self._session_maker() as session:
            result = await session.execute(select(func.max(AuditArchiveRecord.last_sequence)))
            return result.scalar_one_or_none() or 0

    async def archive_expired(self, now: Optional[datetime] = None) -> Optional[AuditArchive]:
        """
        Export entries older than the retention window to an archive bundle.

        Entries are not removed; the archived range is recorded in
        ``audit_archives`` so the next run continues after it.
        """
        if self.archive_dir is None:
            raise AuditError("No archive directory configured", code="ARCHIVE_DIR")

        now = now or datetime.now(timezone.utc)
        cutoff = format_timestamp(now - self.retention)
        after = await self._last_archived_sequence()

        async with self._session_maker() as session:
            result = await session.execute(
                select(func.max(AuditEntryRecord.sequence_number))
                .where(AuditEntryRecord.sequence_number > after)
                .where(AuditEntryRecord.timestamp < cutoff)
            )
            last = result.scalar_one_or_none()

        if not last:
            return None

        bundle = await self.export(after + 1, last)
        path = self.archive_dir / f"audit-{after + 1:012d}-{last:012d}.json"
        await asyncio.to_thread(self._write_bundle, path, bundle)

        archive = AuditArchive(
            first_sequence=after + 1,
            last_sequence=last,
            archived_at=now,
            bundle_path=str(path),
            bundle_hash=bundle["integrity_hash"],
        )
        try:
            async with self._session_maker() as session:
                session.add(AuditArchiveRecord(
                    first_sequence=archive.first_sequence,
                    last_sequence=archive.last_sequence,
                    archived_at=format_timestamp(now),
                    bundle_path=archive.bundle_path,
                    bundle_hash=archive.bundle_hash,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditPersistenceError(f"Archive record for {path.name} not saved") from e

        logger.info(f"Archived audit entries {archive.first_sequence}-{archive.last_sequence} to {path}")

        if self._event_bus is not None:
            await self._event_bus.publish(Event(
                event_type=EventType.AUDIT_ARCHIVED,
                data={
                    "first_sequence": archive.first_sequence,
                    "last_sequence": archive.last_sequence,
                    "bundle_path": archive.bundle_path,
                    "bundle_hash": archive.bundle_hash,
                },
                source="audit_logger",
                priority=EventPriority.LOW,
            ))
        return archive

    @staticmethod
    def _write_bundle(path: Path, bundle: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(bundle, f, indent=2, sort_keys=True)
