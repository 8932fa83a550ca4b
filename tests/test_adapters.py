"""Tests for the mail, calendar and file storage adapters."""

import smtplib
from datetime import datetime
from email import message_from_bytes, policy
from unittest import mock

import pytest

from conftest import USER_ROW, RecordingCalendar
from lab_access.errors import ExternalServiceError
from lab_access.events import EVENT_COLOR, REMINDER_MINUTES, IcsCalendar, event_title, save_to_calendar
from lab_access.mail import OutboxMailer, SmtpMailer, build_message
from lab_access.ports import Attachment
from lab_access.records import USER_LAYOUT, SheetRow, extract_user_record
from lab_access.storage import FolderFileStore

# ---------------------------------------------------------------------------
# Mail Tests
# ---------------------------------------------------------------------------


def test_build_message_has_html_and_attachment():
    message = build_message(
        "a@x.test",
        "Hello",
        "",
        sender="lab@x.test",
        html_body="<p>Hi</p>",
        name="Lab Access",
        attachments=[Attachment("badge.pdf", b"%PDF-1.4")],
    )

    assert message["From"] == "Lab Access <lab@x.test>"
    assert message["To"] == "a@x.test"
    html = message.get_body(preferencelist=("html",))
    assert "<p>Hi</p>" in html.get_content()
    [attachment] = list(message.iter_attachments())
    assert attachment.get_filename() == "badge.pdf"
    assert attachment.get_content_type() == "application/pdf"
    assert attachment.get_content() == b"%PDF-1.4"


def test_outbox_mailer_writes_eml_files(tmp_path):
    mailer = OutboxMailer(str(tmp_path / "outbox"))
    for _ in range(2):
        mailer.send_email("A@X.test", "Hi", "", sender="lab@x.test", html_body="<p>Hi</p>", name="Lab")

    assert len(mailer.sent) == 2
    assert len(set(mailer.sent)) == 2
    assert mailer.sent[0].name.endswith("_001_a_x_test.eml")
    parsed = message_from_bytes(mailer.sent[1].read_bytes(), policy=policy.default)
    assert parsed["Subject"] == "Hi"


def test_smtp_mailer_logs_in_when_user_set():
    with mock.patch("lab_access.mail.smtplib.SMTP") as smtp_class:
        smtp = smtp_class.return_value.__enter__.return_value
        SmtpMailer("mail.test", 2525, "user", "secret", timeout=3).send_email(
            "a@x.test", "Hi", "", sender="lab@x.test", html_body="<p>Hi</p>", name="Lab"
        )

    smtp_class.assert_called_once_with("mail.test", 2525, timeout=3)
    smtp.starttls.assert_called_once_with()
    smtp.login.assert_called_once_with("user", "secret")
    smtp.send_message.assert_called_once()


def test_smtp_mailer_wraps_failures():
    with mock.patch("lab_access.mail.smtplib.SMTP") as smtp_class:
        smtp = smtp_class.return_value.__enter__.return_value
        smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        with pytest.raises(ExternalServiceError, match=r"^\[mail\]"):
            SmtpMailer("mail.test").send_email(
                "a@x.test", "Hi", "", sender="lab@x.test", html_body="", name="Lab"
            )
    smtp.starttls.assert_not_called()


# ---------------------------------------------------------------------------
# Calendar Tests
# ---------------------------------------------------------------------------


@pytest.fixture
def user():
    return extract_user_record(SheetRow.from_values(USER_ROW, 2, USER_LAYOUT.marker)).record


def test_save_to_calendar_books_activation(user, renderer):
    calendar = RecordingCalendar()

    event_id = save_to_calendar(user, calendar, renderer)

    [event] = calendar.events
    assert event_id == "event-1"
    assert event["title"] == "Lab Access: Create Account | User: John Doe"
    assert event["start"] == datetime(2024, 3, 4, 13, 0)
    assert (event["end"] - event["start"]).total_seconds() == 600
    assert event["color"] == EVENT_COLOR
    assert event["popup_minutes"] == REMINDER_MINUTES
    assert "john_doe" in event["description"]


def test_ics_calendar_appends_events(tmp_path, user):
    path = tmp_path / "cal" / "calendar.ics"
    calendar = IcsCalendar(str(path))
    start = datetime(2024, 3, 4, 13, 0)

    first = calendar.create_event(event_title(user), start, start, description="a, b; c\nd", popup_minutes=15)
    second = calendar.create_event("Other", start, start, color="gray")

    with open(path, newline="", encoding="utf-8") as f:
        text = f.read()
    lines = text.split("\r\n")
    assert lines[0] == "BEGIN:VCALENDAR"
    assert text.endswith("END:VCALENDAR\r\n")
    assert text.count("END:VCALENDAR") == 1
    assert text.count("BEGIN:VEVENT") == 2
    assert f"UID:{first}" in lines and f"UID:{second}" in lines
    assert "DTSTART:20240304T130000" in lines
    assert "DESCRIPTION:a\\, b\\; c\\nd" in lines
    assert "TRIGGER:-PT15M" in lines
    assert "COLOR:gray" in lines


# ---------------------------------------------------------------------------
# Storage Tests
# ---------------------------------------------------------------------------


def test_folder_file_store_wraps_os_errors(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory")

    with pytest.raises(ExternalServiceError, match=r"^\[storage\]"):
        FolderFileStore(str(blocker)).create_file("x.pdf", b"%PDF", "application/pdf")
