"""Typed submission records and the row extractor.

A raw sheet row is checked against its processed marker, then mapped
positionally into a ``UserRecord`` or ``BasketRecord``. The extractor also
returns the normalized values to write back over the raw row. Writing them is
left to the pipeline.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .errors import AlreadyProcessedError, FormatError
from .formatters import (
    format_badge_date,
    format_phone_number,
    next_business_day,
    parse_timestamp,
    strip_non_alpha,
    title_case,
)

__all__ = [
    "RowLayout",
    "USER_LAYOUT",
    "BASKET_LAYOUT",
    "RowStatus",
    "SheetRow",
    "BasketStatus",
    "UserRecord",
    "BasketRecord",
    "BadgeData",
    "Extraction",
    "canonical_json",
    "compute_badge_hash",
    "extract_user_record",
    "extract_basket_record",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Row Layouts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RowLayout:
    """Zero-based column positions for one form's response sheet."""

    columns: Tuple[str, ...]
    marker: int
    identifier: int
    timestamp: int = 0

    @property
    def width(self) -> int:
        return len(self.columns)

    def index(self, name: str) -> int:
        return self.columns.index(name)


USER_LAYOUT = RowLayout(
    columns=(
        "timestamp",
        "first_name",
        "last_name",
        "password",
        "phone",
        "email",
        "professor",
        "eid",
        "record",
    ),
    marker=8,
    identifier=7,
)

BASKET_LAYOUT = RowLayout(
    columns=(
        "timestamp",
        "eid",
        "phone",
        "email",
        "first_name",
        "last_name",
        "status",
        "basket",
        "hash",
    ),
    marker=8,
    identifier=1,
)


class RowStatus(enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"


@dataclass
class SheetRow:
    """Raw cell values of one sheet row plus its processed status."""

    values: List[Any]
    row_number: int
    status: RowStatus = RowStatus.PENDING

    @classmethod
    def from_values(
        cls, values: Sequence[Any], row_number: int, marker_index: int
    ) -> SheetRow:
        """Build a row, deriving its status from the marker cell.

        Args:
            values: Cell values in column order.
            row_number: 1-based sheet row number (the header is row 1).
            marker_index: Zero-based index of the processed-marker column.

        Returns:
            A ``SheetRow`` tagged ``PROCESSED`` when the marker is non-empty.
            Whitespace counts as content.
        """
        cells = list(values)
        if len(cells) <= marker_index:
            cells.extend([""] * (marker_index + 1 - len(cells)))
        marker = cells[marker_index]
        populated = marker is not None and str(marker) != ""
        status = RowStatus.PROCESSED if populated else RowStatus.PENDING
        return cls(values=cells, row_number=row_number, status=status)

    def cell(self, index: int) -> str:
        value = self.values[index] if index < len(self.values) else ""
        return "" if value is None else str(value).strip()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class BasketStatus(enum.Enum):
    ASSIGN = "Assign"
    RETURN = "Return"

    @classmethod
    def parse(cls, value: Any) -> BasketStatus:
        text = str(value).strip().title()
        for status in cls:
            if status.value == text:
                return status
        raise FormatError(f"Unknown basket status '{value}' (expected Assign or Return)", value)


@dataclass(frozen=True)
class UserRecord:
    """One lab-access account request."""

    timestamp: datetime
    first_name: str
    last_name: str
    password: str
    phone: str
    email: str
    professor: str
    eid: str
    name: str
    username: str
    activation: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "password": self.password,
            "phone": self.phone,
            "email": self.email,
            "professor": self.professor,
            "eid": self.eid,
            "name": self.name,
            "username": self.username,
            "activation": self.activation.isoformat(timespec="seconds"),
        }

    def to_json(self) -> str:
        """Serialize the record as stored in the processed-marker column."""
        return canonical_json(self.to_dict())


@dataclass(frozen=True)
class BasketRecord:
    """One cleanroom basket assignment or return."""

    timestamp: datetime
    eid: str
    phone: str
    email: str
    first_name: str
    last_name: str
    status: BasketStatus
    basket: str

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_assignment(self) -> bool:
        return self.status is BasketStatus.ASSIGN


@dataclass(frozen=True)
class BadgeData:
    """Fields encoded into a basket badge's QR payload."""

    eid: str
    name: str
    phone: str
    email: str
    basket: str
    assigned: str

    @classmethod
    def from_basket(cls, basket: BasketRecord) -> BadgeData:
        return cls(
            eid=basket.eid,
            name=basket.name,
            phone=basket.phone,
            email=basket.email,
            basket=str(basket.basket),
            assigned=format_badge_date(basket.timestamp),
        )

    def fields(self) -> Dict[str, str]:
        """Return the hashed fields in canonical order."""
        return {
            "eid": self.eid,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "basket": self.basket,
            "assigned": self.assigned,
        }

    @property
    def hash(self) -> str:
        return compute_badge_hash(self)

    def payload(self) -> Dict[str, str]:
        """Return the QR payload: the hashed fields plus the hash itself."""
        data = self.fields()
        data["hash"] = self.hash
        return data

    def to_json(self) -> str:
        return canonical_json(self.payload())


def canonical_json(data: Dict[str, Any]) -> str:
    """Serialize ``data`` compactly, keeping insertion order."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def compute_badge_hash(badge: BadgeData) -> str:
    """Return the uppercase hex SHA-256 of the badge fields (hash excluded)."""
    digest = hashlib.sha256(canonical_json(badge.fields()).encode("utf-8"))
    return digest.hexdigest().upper()


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Extraction:
    """Result of extracting one row.

    ``write_back`` holds the normalized cell values, marker included, in
    column order. They are written on top of the raw row.
    """

    record: Union[UserRecord, BasketRecord]
    write_back: Tuple[Any, ...]
    row_number: int
    badge: Optional[BadgeData] = field(default=None)


def _ensure_pending(row: SheetRow) -> None:
    if row.status is RowStatus.PROCESSED:
        logger.error(f"Row {row.row_number} is already processed; refusing to reprocess")
        raise AlreadyProcessedError(row.values, row.row_number)


def extract_user_record(row: SheetRow, layout: RowLayout = USER_LAYOUT) -> Extraction:
    """Normalize a New User Registration row.

    Args:
        row: Raw row read from the registration sheet.
        layout: Column layout of the registration sheet.

    Returns:
        An ``Extraction`` whose marker value is the record's JSON.

    Raises:
        AlreadyProcessedError: If the row's marker is populated.
        FormatError: If the phone number or timestamp is malformed.
    """
    _ensure_pending(row)

    raw_first = row.cell(layout.index("first_name"))
    raw_last = row.cell(layout.index("last_name"))
    timestamp = parse_timestamp(row.values[layout.timestamp])

    user = UserRecord(
        timestamp=timestamp,
        first_name=title_case(raw_first),
        last_name=title_case(raw_last),
        password=row.values[layout.index("password")],
        phone=format_phone_number(row.cell(layout.index("phone"))),
        email=row.cell(layout.index("email")).lower(),
        professor=title_case(row.cell(layout.index("professor"))),
        eid=row.cell(layout.identifier).lower(),
        name=title_case(f"{raw_first} {raw_last}"),
        username=f"{strip_non_alpha(raw_first).lower()}_{strip_non_alpha(raw_last).lower()}",
        activation=next_business_day(timestamp),
    )

    write_back = (
        row.values[layout.timestamp],
        user.first_name,
        user.last_name,
        user.password,
        user.phone,
        user.email,
        user.professor,
        user.eid,
        user.to_json(),
    )
    logger.debug(f"Extracted user {user.eid} from row {row.row_number}")
    return Extraction(record=user, write_back=write_back, row_number=row.row_number)


def extract_basket_record(row: SheetRow, layout: RowLayout = BASKET_LAYOUT) -> Extraction:
    """Normalize a Basket Assignment row and derive its badge data.

    The badge hash becomes the marker value for both assignments and returns.

    Raises:
        AlreadyProcessedError: If the row's marker is populated.
        FormatError: If the phone, timestamp or status is malformed.
    """
    _ensure_pending(row)

    basket = BasketRecord(
        timestamp=parse_timestamp(row.values[layout.timestamp]),
        eid=row.cell(layout.identifier).lower(),
        phone=format_phone_number(row.cell(layout.index("phone"))),
        email=row.cell(layout.index("email")).lower(),
        first_name=title_case(row.cell(layout.index("first_name"))),
        last_name=title_case(row.cell(layout.index("last_name"))),
        status=BasketStatus.parse(row.cell(layout.index("status"))),
        basket=row.cell(layout.index("basket")),
    )
    badge = BadgeData.from_basket(basket)

    write_back = (
        row.values[layout.timestamp],
        basket.eid,
        basket.phone,
        basket.email,
        basket.first_name,
        basket.last_name,
        basket.status.value,
        basket.basket,
        badge.hash,
    )
    logger.debug(f"Extracted basket {basket.basket} ({basket.status.value}) from row {row.row_number}")
    return Extraction(record=basket, write_back=write_back, row_number=row.row_number, badge=badge)
