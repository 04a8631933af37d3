"""
Audit Sink backed by SQLAlchemy.

- persist():          idempotent write keyed by claim id (at-least-once callers)
- get():              the stored record plus its override history
- record_override():  append a reviewer decision; stored fields are never rewritten
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from claims.audit import AuditEntry, AuditRecord
from claims.errors import PersistenceFailure
from claims.models import DecisionStatus
from db.database import make_session_factory
from db.models import AuditEntryRow, AuditRecordRow

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on read
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SqlAuditSink:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    @classmethod
    def from_url(cls, url: str) -> "SqlAuditSink":
        return cls(make_session_factory(url))

    def persist(self, record: AuditRecord) -> str:
        """Store ``record``; a second submission for the same claim id is a no-op."""
        try:
            with self._sessions() as session:
                if session.get(AuditRecordRow, record.claim_id) is not None:
                    logger.info("audit_sink: %s already stored, skipping", record.claim_id)
                    return record.claim_id
                session.add(
                    AuditRecordRow(
                        claim_id=record.claim_id,
                        policy_number=record.claim.policy_number,
                        category=record.claim.category,
                        amount=record.claim.amount,
                        status=record.decision.status.value,
                        record=record.model_dump(mode="json", exclude={"entries"}),
                        created_at=record.created_at,
                    )
                )
                session.commit()
        except IntegrityError:
            # concurrent duplicate submission won the race
            logger.info("audit_sink: %s stored concurrently, skipping", record.claim_id)
            return record.claim_id
        except SQLAlchemyError as e:
            logger.warning("audit_sink: write failed for %s: %s", record.claim_id, e)
            raise PersistenceFailure(f"could not persist audit record {record.claim_id}: {e}") from e

        logger.info(
            "audit_sink: stored %s (status=%s)", record.claim_id, record.decision.status.value
        )
        return record.claim_id

    def get(self, claim_id: str) -> Optional[AuditRecord]:
        with self._sessions() as session:
            row = session.get(AuditRecordRow, claim_id)
            if row is None:
                return None
            entries = session.scalars(
                select(AuditEntryRow)
                .where(AuditEntryRow.claim_id == claim_id)
                .order_by(AuditEntryRow.id)
            ).all()
            record = AuditRecord.model_validate(row.record)
            return record.model_copy(
                update={
                    "entries": tuple(
                        AuditEntry(
                            reviewer_id=e.reviewer_id,
                            note=e.note or "",
                            previous_status=DecisionStatus(e.previous_status),
                            new_status=DecisionStatus(e.new_status),
                            reviewed_at=_aware(e.reviewed_at),
                        )
                        for e in entries
                    )
                }
            )

    def record_override(
        self,
        claim_id: str,
        reviewer_id: str,
        note: str,
        new_status: DecisionStatus,
    ) -> AuditRecord:
        """Append a human override and return the record with its full history."""
        if not reviewer_id or not reviewer_id.strip():
            raise ValueError("a human override requires a reviewer id")
        record = self.get(claim_id)
        if record is None:
            raise KeyError(f"no audit record for claim {claim_id!r}")

        updated = record.with_override(reviewer_id.strip(), note, DecisionStatus(new_status))
        entry = updated.entries[-1]
        try:
            with self._sessions() as session:
                session.add(
                    AuditEntryRow(
                        claim_id=claim_id,
                        reviewer_id=entry.reviewer_id,
                        previous_status=entry.previous_status.value,
                        new_status=entry.new_status.value,
                        note=entry.note,
                        reviewed_at=entry.reviewed_at,
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not record override for {claim_id}: {e}") from e

        logger.info(
            "audit_sink: override on %s by %s: %s -> %s",
            claim_id,
            entry.reviewer_id,
            entry.previous_status.value,
            entry.new_status.value,
        )
        return updated
