"""Account-creation calendar events and an iCalendar file store."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from .errors import ExternalServiceError
from .messages import MESSAGE_CONFIGS, MessageKind, TemplateRenderer, get_body, get_config
from .ports import CalendarStore
from .records import UserRecord

__all__ = [
    "EVENT_DURATION",
    "EVENT_COLOR",
    "REMINDER_MINUTES",
    "event_title",
    "save_to_calendar",
    "IcsCalendar",
]

logger = logging.getLogger(__name__)

EVENT_DURATION = timedelta(minutes=10)
EVENT_COLOR = "gray"
REMINDER_MINUTES = 15


def event_title(user: UserRecord) -> str:
    return f"Lab Access: Create Account | User: {user.name}"


def save_to_calendar(
    user: UserRecord,
    calendar: CalendarStore,
    renderer: TemplateRenderer,
    configs=MESSAGE_CONFIGS,
) -> str:
    """Book the account-creation reminder at the user's activation time.

    The description reuses the new-user text message body.

    Returns:
        The calendar's identifier for the created event.
    """
    start = user.activation
    description = get_body(get_config(MessageKind.LAB_ACCESS_TEXT, configs), user, renderer)
    event_id = calendar.create_event(
        event_title(user),
        start,
        start + EVENT_DURATION,
        description=description,
        color=EVENT_COLOR,
        popup_minutes=REMINDER_MINUTES,
    )
    logger.info(f"[OK] Booked account creation for {user.name} at {start:%Y-%m-%d %H:%M}")
    return event_id


# ---------------------------------------------------------------------------
# iCalendar store
# ---------------------------------------------------------------------------


def _escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


class IcsCalendar:
    """Appends events to an RFC 5545 calendar file.

    Start and end times are written as floating local times.
    """

    HEADER = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Lab Access Onboarding//EN"]
    FOOTER = "END:VCALENDAR"

    def __init__(self, path: str):
        self.path = Path(path)

    def event_lines(
        self,
        uid: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = "",
        color: str = "",
        popup_minutes: Optional[int] = None,
    ) -> List[str]:
        lines = [
            "BEGIN:VEVENT",
            f"UID:{uid}",
            f"DTSTAMP:{datetime.now(timezone.utc):%Y%m%dT%H%M%SZ}",
            f"DTSTART:{start:%Y%m%dT%H%M%S}",
            f"DTEND:{end:%Y%m%dT%H%M%S}",
            f"SUMMARY:{_escape(title)}",
            f"DESCRIPTION:{_escape(description)}",
        ]
        if color:
            lines.append(f"COLOR:{color}")
        if popup_minutes is not None:
            lines.extend(
                [
                    "BEGIN:VALARM",
                    "ACTION:DISPLAY",
                    f"DESCRIPTION:{_escape(title)}",
                    f"TRIGGER:-PT{popup_minutes}M",
                    "END:VALARM",
                ]
            )
        lines.append("END:VEVENT")
        return lines

    def create_event(self, title, start, end, *, description="", color="", popup_minutes=None) -> str:
        uid = f"{uuid.uuid4()}@lab-access"
        try:
            if self.path.exists():
                with open(self.path, "r", encoding="utf-8", newline="") as f:
                    existing = f.read().split("\r\n")
                body = [line for line in existing if line and line != self.FOOTER]
            else:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                body = list(self.HEADER)
            body.extend(self.event_lines(uid, title, start, end, description, color, popup_minutes))
            body.append(self.FOOTER)
            with open(self.path, "w", encoding="utf-8", newline="") as f:
                f.write("\r\n".join(body) + "\r\n")
        except OSError as exc:
            logger.error(f"Unable to update calendar '{self.path}': {exc}")
            raise ExternalServiceError("calendar", f"Unable to create event '{title}': {exc}") from exc
        return uid
