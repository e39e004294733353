"""
Notification preference model.

Per-user push preferences: master switch, do-not-disturb, per-type
switches and quiet hours.
"""

from datetime import time

from sqlalchemy import Boolean, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class NotificationPreference(TimestampMixin, Base):
    """
    NotificationPreference entity.

    Written by the client app; the delivery queue only reads it. Users
    without a row receive everything.

    Attributes:
        id: Primary key
        user_id: Owning user identifier
        master_toggle: Push notifications enabled at all
        do_not_disturb: Temporarily silence everything
        reminders_enabled: Task and lecture reminders
        srs_reminders_enabled: Spaced-repetition prompts
        summary_enabled: Daily summaries
        quiet_hours_enabled: Defer non-urgent pushes inside the window
        quiet_hours_start: Local start of the quiet window
        quiet_hours_end: Local end of the quiet window (may be next day)
        timezone: IANA timezone of the quiet window
    """

    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )

    master_toggle: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    do_not_disturb: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Per-type switches
    reminders_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    srs_reminders_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    summary_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    # Quiet hours
    quiet_hours_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    quiet_hours_start: Mapped[time | None] = mapped_column(
        Time, nullable=True
    )
    quiet_hours_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default="UTC"
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<NotificationPreference(user_id={self.user_id!r}, "
            f"master={self.master_toggle}, dnd={self.do_not_disturb}, "
            f"quiet_hours={self.quiet_hours_enabled})>"
        )
