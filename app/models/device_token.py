"""
DeviceToken model.

Push tokens registered by client apps.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, utcnow


class DeviceToken(Base):
    """
    DeviceToken entity.

    Created when a client registers for push. The delivery queue only
    reads active tokens and deactivates the ones the gateway rejects.

    Attributes:
        id: Primary key
        user_id: Owning user identifier
        token: Gateway push token
        platform: ios / android / web
        is_active: Token may receive pushes
        created_at: Registration timestamp
        last_used_at: Last successful delivery
        deactivated_at: When the token was reported invalid
    """

    __tablename__ = "user_devices"
    __table_args__ = (
        Index(
            "idx_user_devices_user_active",
            "user_id",
            "is_active",
        ),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )
    platform: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"DeviceToken(id={self.id}, user_id={self.user_id!r}, "
            f"active={self.is_active})"
        )
