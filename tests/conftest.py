"""Shared fixtures: in-memory stand-ins for the hosted services."""

import io
from typing import Any, Dict, List

import pytest
from PIL import Image

from lab_access.messages import TemplateRenderer
from lab_access.pipeline import Services
from lab_access.ports import StoredFile
from lab_access.records import BASKET_LAYOUT, USER_LAYOUT

USER_HEADER = [
    "Timestamp",
    "First Name",
    "Last Name",
    "Password",
    "Phone",
    "Email",
    "Professor",
    "EID",
    "Record",
]

BASKET_HEADER = [
    "Timestamp",
    "EID",
    "Phone",
    "Email",
    "First Name",
    "Last Name",
    "Status",
    "Basket",
    "Hash",
]

USER_ROW = [
    "2024-03-01T10:00:00",
    "john",
    "doe",
    "pw1",
    "1234567890",
    "JOHN@X.COM",
    "dr smith",
    "jd1234",
    "",
]

ASSIGN_ROW = [
    "2024-03-05 09:30:00",
    "AB123",
    "512-555-0100",
    "Alice@Example.EDU",
    "alice",
    "baker",
    "assign",
    "B7",
    "",
]

RETURN_ROW = [
    "2024-03-06 16:00:00",
    "AB123",
    "512-555-0100",
    "alice@example.edu",
    "Alice",
    "Baker",
    "Return",
    "B7",
    "",
]


def make_png(size: int = 29) -> bytes:
    buffer = io.BytesIO()
    Image.new("1", (size, size), 1).save(buffer, format="PNG")
    return buffer.getvalue()


class MemorySheet:
    """SheetStore kept in lists; records every mutating call in ``calls``."""

    def __init__(self, name: str, header: List[str], rows: List[List[Any]] = None):
        self.name = name
        self.header = list(header)
        self.rows = [list(row) for row in rows or []]
        self.links: Dict[tuple, str] = {}
        self.formats: List[Any] = []
        self.calls: List[str] = []

    def last_row_number(self) -> int:
        return len(self.rows) + 1

    def read_row(self, row_number: int) -> List[Any]:
        return list(self.rows[row_number - 2])

    def write_row(self, row_number: int, values) -> None:
        self.calls.append("write_row")
        self.rows[row_number - 2][: len(values)] = list(values)

    def set_link(self, row_number: int, column: int, text: str, url: str) -> None:
        self.calls.append("set_link")
        self.rows[row_number - 2][column] = text
        self.links[(row_number, column)] = url

    def sort_rows(self, column: int, key=None) -> None:
        self.calls.append("sort_rows")
        self.rows.sort(key=lambda row: (key or (lambda v: v))(row[column]))

    def apply_format(self, sheet_format) -> None:
        self.calls.append("apply_format")
        self.formats.append(sheet_format)


class RecordingResponses:
    def __init__(self, pending: int = 1):
        self.pending = pending
        self.cleared = 0

    def delete_all_responses(self) -> int:
        removed, self.pending = self.pending, 0
        self.cleared += 1
        return removed


class RecordingMailer:
    def __init__(self, fail_on_subject: str = None):
        self.sent: List[Dict[str, Any]] = []
        self.fail_on_subject = fail_on_subject

    def send_email(self, to, subject, body, *, sender, html_body, name, attachments=()):
        if self.fail_on_subject and self.fail_on_subject in subject:
            from lab_access.errors import ExternalServiceError

            raise ExternalServiceError("mail", f"refused '{subject}'")
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "body": body,
                "sender": sender,
                "html_body": html_body,
                "name": name,
                "attachments": list(attachments),
            }
        )


class RecordingCalendar:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def create_event(self, title, start, end, *, description="", color="", popup_minutes=None):
        self.events.append(
            {
                "title": title,
                "start": start,
                "end": end,
                "description": description,
                "color": color,
                "popup_minutes": popup_minutes,
            }
        )
        return f"event-{len(self.events)}"


class MemoryFileStore:
    def __init__(self):
        self.files: List[StoredFile] = []

    def create_file(self, name, content, mime_type, description=""):
        stored = StoredFile(name=name, content=content, mime_type=mime_type, description=description)
        self.files.append(stored)
        return stored


class FakeQRService:
    def __init__(self):
        self.requests: List[tuple] = []
        self.png = make_png()

    def fetch_qr_image(self, data, size):
        self.requests.append((data, size))
        return self.png


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def renderer():
    return TemplateRenderer()


def _services(sheet):
    return Services(
        sheet=sheet,
        responses=RecordingResponses(),
        mailer=RecordingMailer(),
        calendar=RecordingCalendar(),
        files=MemoryFileStore(),
        qr=FakeQRService(),
    )


@pytest.fixture
def user_sheet():
    assert len(USER_HEADER) == USER_LAYOUT.width
    return MemorySheet("New User Registration", USER_HEADER, [USER_ROW])


@pytest.fixture
def basket_sheet():
    assert len(BASKET_HEADER) == BASKET_LAYOUT.width
    return MemorySheet("Basket Assignment", BASKET_HEADER, [ASSIGN_ROW])


@pytest.fixture
def user_services(user_sheet):
    return _services(user_sheet)


@pytest.fixture
def basket_services(basket_sheet):
    return _services(basket_sheet)


def write_sheet(path, header, rows, delimiter=","):
    """Write a delimited sheet file for adapter and CLI tests."""
    import csv

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, delimiter=delimiter, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)
    return path
