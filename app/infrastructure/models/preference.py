"""SQLAlchemy model for channel preferences."""

from sqlalchemy import Column, DateTime, Integer, JSON, String, UniqueConstraint

from app.infrastructure.database import Base


class NotificationPreferenceModel(Base):
    """Enabled channels of a user for one notification type."""

    __tablename__ = "notification_preference"
    __table_args__ = (
        UniqueConstraint("user_id", "notification_type", name="uq_preference_user_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    notification_type = Column(String(40), nullable=False)
    channels = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(), nullable=True)


__all__ = ["NotificationPreferenceModel"]
