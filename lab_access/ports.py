"""Interfaces for the hosted services the pipeline talks to.

Adapters live in ``sheets``, ``mail``, ``events``, ``storage`` and ``badges``.
Tests substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Sequence

__all__ = [
    "Attachment",
    "StoredFile",
    "SheetStore",
    "FormResponses",
    "Mailer",
    "CalendarStore",
    "FileStore",
    "QRImageService",
]


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class StoredFile:
    """A file persisted by a ``FileStore``."""

    name: str
    content: bytes
    mime_type: str
    description: str = ""
    location: Optional[str] = None

    def as_attachment(self) -> Attachment:
        return Attachment(filename=self.name, content=self.content, mime_type=self.mime_type)


class SheetStore(Protocol):
    """A single worksheet addressed by 1-based row numbers (row 1 is the header)."""

    name: str

    def last_row_number(self) -> int: ...

    def read_row(self, row_number: int) -> List[Any]: ...

    def write_row(self, row_number: int, values: Sequence[Any]) -> None: ...

    def set_link(self, row_number: int, column: int, text: str, url: str) -> None: ...

    def sort_rows(self, column: int, key: Optional[Callable[[Any], Any]] = None) -> None: ...

    def apply_format(self, sheet_format: Any) -> None: ...


class FormResponses(Protocol):
    def delete_all_responses(self) -> int: ...


class Mailer(Protocol):
    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        *,
        sender: str,
        html_body: str,
        name: str,
        attachments: Sequence[Attachment] = (),
    ) -> None: ...


class CalendarStore(Protocol):
    def create_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        *,
        description: str = "",
        color: str = "",
        popup_minutes: Optional[int] = None,
    ) -> str: ...


class FileStore(Protocol):
    def create_file(
        self, name: str, content: bytes, mime_type: str, description: str = ""
    ) -> StoredFile: ...


class QRImageService(Protocol):
    def fetch_qr_image(self, data: str, size: int) -> bytes: ...
