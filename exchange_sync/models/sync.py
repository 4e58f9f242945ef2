"""
SQLAlchemy models backing the PracticePanther sync engine.

`SyncRun` is the durable log of every orchestration invocation; `OAuthToken`
stores the bearer credential the remote client refreshes out-of-band.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class SyncKind(str, enum.Enum):
    """Scope of a sync run."""

    FULL = "full"
    CONTACTS = "contacts"
    MATTERS = "matters"
    TASKS = "tasks"


class SyncRunStatus(str, enum.Enum):
    """Lifecycle states for a sync run. ``RUNNING`` is the only non-terminal state."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class SyncRun(BaseModel):
    """Metadata describing a single sync execution."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[SyncKind] = mapped_column(
        Enum(SyncKind, name="sync_kind_enum"),
        nullable=False,
        index=True,
    )
    status: Mapped[SyncRunStatus] = mapped_column(
        Enum(SyncRunStatus, name="sync_run_status_enum"),
        nullable=False,
        default=SyncRunStatus.RUNNING,
        index=True,
    )
    account: Mapped[str] = mapped_column(
        db.String(255),
        nullable=False,
        default="default",
        comment="Remote account/credential key used for single-flight locking.",
    )
    started_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        db.DateTime(timezone=True),
        nullable=True,
        comment="Last progress report from the orchestrator; staleness is measured from here.",
    )
    records_processed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_created: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Per-kind processed/created/updated/errors plus failure context.",
    )
    triggered_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    triggered_by_user = relationship("User", foreign_keys=[triggered_by_user_id])

    __table_args__ = (
        Index("idx_sync_runs_kind_status", "kind", "status"),
        Index("idx_sync_runs_account_status", "account", "status"),
    )

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (_aware(self.completed_at) - _aware(self.started_at)).total_seconds()

    def __repr__(self) -> str:
        return f"<SyncRun {self.id} {self.kind} {self.status}>"


class OAuthToken(BaseModel):
    """Bearer credential for a remote provider; the newest active row wins."""

    __tablename__ = "oauth_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)
    provider: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(db.Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    token_type: Mapped[str] = mapped_column(db.String(32), nullable=False, default="Bearer")
    scope: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True, index=True)
    last_used_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round-trip
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
