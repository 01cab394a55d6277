"""SQLAlchemy model for per-channel delivery attempts."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.infrastructure.database import Base


class ChannelAttemptModel(Base):
    """Delivery progress of one notification on one channel."""

    __tablename__ = "channel_attempt"
    __table_args__ = (
        UniqueConstraint("notification_id", "channel", name="uq_channel_attempt_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    notification_id = Column(
        Integer,
        ForeignKey("notification.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel = Column(String(20), nullable=False)
    state = Column(String(30), nullable=False)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(), nullable=True)
    last_error = Column(Text, nullable=True)
    detail = Column(String(120), nullable=True)
    updated_at = Column(DateTime(), nullable=True)

    notification = relationship("NotificationModel", back_populates="attempts")


__all__ = ["ChannelAttemptModel"]
