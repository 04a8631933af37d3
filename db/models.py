"""SQLAlchemy ORM models: AuditRecordRow and AuditEntryRow."""

from __future__ import annotations
from typing import Optional

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from db.database import Base


class AuditRecordRow(Base):
    """One row per validation run; ``record`` holds the full AuditRecord JSON."""

    __tablename__ = "audit_records"

    claim_id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    policy_number: Mapped[str] = mapped_column(String(128), index=True)
    category: Mapped[str] = mapped_column(String(64))
    amount: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(32))  # final pipeline status, never overwritten
    record: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    stored_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class AuditEntryRow(Base):
    """Append-only human override history."""

    __tablename__ = "audit_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    claim_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("audit_records.claim_id"), index=True
    )
    event: Mapped[str] = mapped_column(String(64), default="human_override")
    reviewer_id: Mapped[str] = mapped_column(String(128))
    previous_status: Mapped[str] = mapped_column(String(32))
    new_status: Mapped[str] = mapped_column(String(32))
    note: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
