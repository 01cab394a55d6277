"""SQLAlchemy model recording deadline reminders that already fired."""

from sqlalchemy import Boolean, Column, DateTime, Integer, UniqueConstraint
from sqlalchemy.sql import expression

from app.infrastructure.database import Base


class DeadlineReminderModel(Base):
    """One row per (task, due date, offset) reminder that was handled."""

    __tablename__ = "deadline_reminder"
    __table_args__ = (
        UniqueConstraint(
            "task_id", "due_at", "offset_minutes", name="uq_deadline_reminder_offset"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, nullable=False, index=True)
    due_at = Column(DateTime(), nullable=False)
    offset_minutes = Column(Integer, nullable=False)
    notification_id = Column(Integer, nullable=True)
    superseded = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=expression.false(),
    )
    fired_at = Column(DateTime(), nullable=False)


__all__ = ["DeadlineReminderModel"]
