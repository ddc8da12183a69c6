"""
Moderation - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for the violation ledger and the
moderation audit log.

Includes:
- ViolationRecord: one row per (subject, scope)
- ViolationEventRecord: append-only history of a ledger row
- ModerationActionLogRecord: immutable audit entries

============================================================
CONCURRENCY
============================================================
ViolationRecord carries a version counter used as SQLAlchemy's
version_id_col. An UPDATE against a stale version matches no
row and raises StaleDataError, so two instances can never both
escalate from the same prior count.

============================================================
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from core.clock import utcnow
from storage.models.base import Base, TimestampMixin, new_id


class ViolationRecord(Base, TimestampMixin):
    """
    Violation ledger row for one subject in one scope.

    Created lazily on the first violation; never auto-deleted.
    Once is_banned is set the row only changes through unban.
    """

    __tablename__ = "moderation_violations"

    id = Column(String(36), primary_key=True, default=new_id)

    subject_id = Column(String(128), nullable=False)
    """Normalised user id."""

    scope_id = Column(String(128), nullable=False)
    """Normalised channel or guild id."""

    # Counters
    warning_count = Column(Integer, nullable=False, default=0)
    """Total violations recorded (every violation counts)."""

    timeout_count = Column(Integer, nullable=False, default=0)
    """Violations that resolved to a timeout."""

    # Ban state
    is_banned = Column(Boolean, nullable=False, default=False)
    banned_at = Column(DateTime, nullable=True)
    ban_reason = Column(Text, nullable=True)

    # Last timeout
    last_timeout_at = Column(DateTime, nullable=True)
    last_timeout_duration = Column(Integer, nullable=True)
    """Seconds."""

    version = Column(Integer, nullable=False)
    """Optimistic concurrency counter."""

    events = relationship(
        "ViolationEventRecord",
        back_populates="violation",
        order_by="ViolationEventRecord.occurred_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("subject_id", "scope_id", name="uq_violation_subject_scope"),
        Index("idx_violation_scope", "scope_id"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ViolationRecord {self.subject_id}@{self.scope_id} "
            f"count={self.warning_count} banned={self.is_banned}>"
        )


class ViolationEventRecord(Base):
    """One entry in a ledger row's history. Append-only."""

    __tablename__ = "moderation_violation_events"

    id = Column(String(36), primary_key=True, default=new_id)

    violation_id = Column(
        String(36),
        ForeignKey("moderation_violations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    occurred_at = Column(DateTime, nullable=False, default=utcnow)

    offending_terms = Column(JSON, nullable=False, default=list)
    message_excerpt = Column(Text, nullable=False, default="")
    """Truncated raw message."""

    action = Column(String(16), nullable=False)
    """warning, timeout or ban."""

    duration_seconds = Column(Integer, nullable=True)

    success = Column(Boolean, nullable=False, default=False)
    """Whether the enforcement call succeeded."""

    violation = relationship("ViolationRecord", back_populates="events")


class ModerationActionLogRecord(Base):
    """
    Immutable moderation audit entry.

    Written for every action when log_all_actions is set,
    regardless of whether enforcement succeeded. Never updated.
    """

    __tablename__ = "moderation_action_logs"

    id = Column(String(36), primary_key=True, default=new_id)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    scope_id = Column(String(128), nullable=False)
    subject_id = Column(String(128), nullable=False)

    violation_type = Column(String(32), nullable=False)
    """offensive_content, ai_inappropriate or other."""

    offending_terms = Column(JSON, nullable=False, default=list)
    message_content = Column(Text, nullable=False, default="")

    action = Column(String(16), nullable=False)
    """warning, timeout, ban, kick or unban."""

    duration_seconds = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)

    total_violations = Column(Integer, nullable=False, default=0)
    """Violation count at the time of the action."""

    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_action_log_scope_time", "scope_id", "created_at"),
        Index("idx_action_log_subject", "subject_id", "scope_id"),
    )
