"""
Preference directory.

Loads user notification preferences and decides, per queue item, whether
a push may go out now, must wait for the end of quiet hours, or must not
be sent at all.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta, tzinfo
from enum import StrEnum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.enums import NotificationType
from app.models.notification_preference import NotificationPreference
from app.repositories.notification_preference_repository import (
    NotificationPreferenceRepository,
)
from app.services.exceptions import QueueStoreUnavailableError

# Priority 1 items ignore quiet hours (never the opt-outs)
URGENT_PRIORITY = 1

# Queue type -> per-type switch; None means only the global switches apply
TYPE_SWITCHES: dict[str, Optional[str]] = {
    NotificationType.REMINDER: "reminders_enabled",
    NotificationType.SRS: "srs_reminders_enabled",
    NotificationType.SUMMARY: "summary_enabled",
    NotificationType.SYSTEM: None,
}


class GateAction(StrEnum):
    """What to do with an item before sending."""

    SEND = "send"
    DEFER = "defer"
    SUPPRESS = "suppress"


@dataclass(frozen=True)
class GateDecision:
    """Result of the preference check for one item."""

    action: GateAction
    until: Optional[datetime] = None
    reason: Optional[str] = None


SEND = GateDecision(GateAction.SEND)


@dataclass(frozen=True)
class UserPreferences:
    """Detached snapshot of one user's preferences."""

    master_toggle: bool = True
    do_not_disturb: bool = False
    reminders_enabled: bool = True
    srs_reminders_enabled: bool = True
    summary_enabled: bool = True
    quiet_hours_enabled: bool = False
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
    timezone: str = "UTC"

    @classmethod
    def from_model(cls, row: NotificationPreference) -> "UserPreferences":
        """Copy a preference row so it outlives its session."""
        return cls(
            master_toggle=row.master_toggle,
            do_not_disturb=row.do_not_disturb,
            reminders_enabled=row.reminders_enabled,
            srs_reminders_enabled=row.srs_reminders_enabled,
            summary_enabled=row.summary_enabled,
            quiet_hours_enabled=row.quiet_hours_enabled,
            quiet_hours_start=row.quiet_hours_start,
            quiet_hours_end=row.quiet_hours_end,
            timezone=row.timezone or "UTC",
        )


def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using UTC")
        return UTC


def quiet_window_end(
    prefs: UserPreferences, now: datetime
) -> Optional[datetime]:
    """
    Get the end of the quiet window containing now.

    Windows may cross midnight (22:00-07:00). The window is evaluated in
    the user's timezone; the result is an aware UTC datetime.

    Args:
        prefs: User preferences
        now: Aware current time

    Returns:
        End of the current quiet window, or None outside quiet hours
    """
    start, end = prefs.quiet_hours_start, prefs.quiet_hours_end
    if not prefs.quiet_hours_enabled or start is None or end is None:
        return None
    if start == end:
        return None

    zone = _zone(prefs.timezone)
    local = now.astimezone(zone)
    current = local.time().replace(tzinfo=None)

    if start < end:
        if not start <= current < end:
            return None
        end_date = local.date()
    elif current >= start:
        end_date = local.date() + timedelta(days=1)
    elif current < end:
        end_date = local.date()
    else:
        return None

    return datetime.combine(end_date, end, tzinfo=zone).astimezone(UTC)


def evaluate(
    prefs: Optional[UserPreferences],
    notification_type: str,
    priority: int,
    now: datetime,
) -> GateDecision:
    """
    Check one item against its recipient's preferences.

    Args:
        prefs: Recipient preferences (None = defaults, send everything)
        notification_type: Queue item type
        priority: Queue item priority
        now: Aware current time

    Returns:
        GateDecision
    """
    if prefs is None:
        return SEND

    if not prefs.master_toggle:
        return GateDecision(
            GateAction.SUPPRESS, reason="push notifications disabled"
        )
    if prefs.do_not_disturb:
        return GateDecision(GateAction.SUPPRESS, reason="do not disturb")

    switch = TYPE_SWITCHES.get(notification_type)
    if switch is not None and not getattr(prefs, switch):
        return GateDecision(
            GateAction.SUPPRESS,
            reason=f"{notification_type} notifications disabled",
        )

    if priority > URGENT_PRIORITY:
        until = quiet_window_end(prefs, now)
        if until is not None:
            return GateDecision(
                GateAction.DEFER, until=until, reason="quiet hours"
            )

    return SEND


class PreferenceDirectory(ABC):
    """Preference lookup contract."""

    @abstractmethod
    async def get_preferences(
        self, user_ids: Iterable[str]
    ) -> dict[str, UserPreferences]:
        """Get preferences; users without any are absent."""


class DatabasePreferenceDirectory(PreferenceDirectory):
    """Preference directory backed by the notification_preferences table."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def get_preferences(
        self, user_ids: Iterable[str]
    ) -> dict[str, UserPreferences]:
        """
        Get preferences for users in one query.

        Raises:
            QueueStoreUnavailableError: Database unreachable
        """
        try:
            async with self.session_factory() as session:
                rows = await NotificationPreferenceRepository(
                    session
                ).get_for_users(user_ids)
        except SQLAlchemyError as e:
            raise QueueStoreUnavailableError(
                f"Preference lookup failed: {e}"
            ) from e

        return {
            user_id: UserPreferences.from_model(row)
            for user_id, row in rows.items()
        }
