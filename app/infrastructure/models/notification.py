"""SQLAlchemy model for persisted notifications."""

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from app.infrastructure.database import Base


class NotificationModel(Base):
    """Database representation for user notifications."""

    __tablename__ = "notification"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    notification_type = Column(String(40), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(20), nullable=False)
    requested_channels = Column(JSON, nullable=False, default=list)
    channels = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(), nullable=False)
    updated_at = Column(DateTime(), nullable=True)
    read_at = Column(DateTime(), nullable=True)
    deleted_at = Column(DateTime(), nullable=True)

    attempts = relationship(
        "ChannelAttemptModel",
        back_populates="notification",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


__all__ = ["NotificationModel"]
