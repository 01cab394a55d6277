"""SQLAlchemy model for the tasks whose deadlines are watched."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import expression

from app.infrastructure.database import Base


class TaskModel(Base):
    """Task owned by the task management side of the system."""

    __tablename__ = "task"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    assignee_id = Column(Integer, nullable=True, index=True)
    due_at = Column(DateTime(), nullable=True, index=True)
    completed = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=expression.false(),
    )


__all__ = ["TaskModel"]
