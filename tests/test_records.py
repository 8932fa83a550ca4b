"""Tests for the records module."""

import hashlib
import json
from datetime import datetime

import pytest

from conftest import ASSIGN_ROW, RETURN_ROW, USER_ROW
from lab_access.errors import AlreadyProcessedError, FormatError
from lab_access.records import (
    BASKET_LAYOUT,
    USER_LAYOUT,
    BadgeData,
    BasketStatus,
    RowStatus,
    SheetRow,
    canonical_json,
    compute_badge_hash,
    extract_basket_record,
    extract_user_record,
)


def user_row(values=None, row_number=2):
    return SheetRow.from_values(values or USER_ROW, row_number, USER_LAYOUT.marker)


def basket_row(values=None, row_number=2):
    return SheetRow.from_values(values or ASSIGN_ROW, row_number, BASKET_LAYOUT.marker)


# ---------------------------------------------------------------------------
# Row Status Tests
# ---------------------------------------------------------------------------


def test_sheet_row_status_follows_marker():
    assert user_row().status is RowStatus.PENDING
    assert user_row(USER_ROW[:8] + ['{"eid":"x"}']).status is RowStatus.PROCESSED
    assert user_row(USER_ROW[:8] + [None]).status is RowStatus.PENDING


@pytest.mark.parametrize("marker", [" ", "   ", "\t"])
def test_sheet_row_whitespace_marker_counts_as_processed(marker):
    assert user_row(USER_ROW[:8] + [marker]).status is RowStatus.PROCESSED
    with pytest.raises(AlreadyProcessedError):
        extract_user_record(user_row(USER_ROW[:8] + [marker]))


def test_sheet_row_pads_short_rows():
    row = SheetRow.from_values(USER_ROW[:5], 3, USER_LAYOUT.marker)
    assert len(row.values) == USER_LAYOUT.width
    assert row.status is RowStatus.PENDING
    assert row.cell(7) == ""


# ---------------------------------------------------------------------------
# User Extraction Tests
# ---------------------------------------------------------------------------


def test_extract_user_record_normalizes_fields():
    """A Friday submission activates the following Monday at 13:00."""
    extraction = extract_user_record(user_row())
    user = extraction.record

    assert user.first_name == "John"
    assert user.last_name == "Doe"
    assert user.email == "john@x.com"
    assert user.phone == "(123) 456-7890"
    assert user.professor == "Dr Smith"
    assert user.eid == "jd1234"
    assert user.name == "John Doe"
    assert user.username == "john_doe"
    assert user.password == "pw1"
    assert user.activation == datetime(2024, 3, 4, 13, 0, 0)
    assert extraction.row_number == 2
    assert extraction.badge is None


def test_extract_user_record_write_back_stores_json_record():
    extraction = extract_user_record(user_row())

    assert len(extraction.write_back) == USER_LAYOUT.width
    assert extraction.write_back[0] == USER_ROW[0]
    assert extraction.write_back[1:8] == ("John", "Doe", "pw1", "(123) 456-7890", "john@x.com", "Dr Smith", "jd1234")

    stored = json.loads(extraction.write_back[USER_LAYOUT.marker])
    assert stored["username"] == "john_doe"
    assert stored["activation"] == "2024-03-04T13:00:00"
    assert stored["timestamp"] == "2024-03-01T10:00:00"


def test_extract_user_record_username_drops_punctuation():
    values = list(USER_ROW)
    values[1] = "Mary Ann"
    values[2] = "O'Neil"
    user = extract_user_record(user_row(values)).record
    assert user.username == "maryann_oneil"
    assert user.name == "Mary Ann O'neil"


def test_extract_user_record_strips_name_padding():
    values = list(USER_ROW)
    values[1] = "  john "
    values[2] = " doe"
    user = extract_user_record(user_row(values)).record
    assert user.first_name == "John"
    assert user.name == "John Doe"
    assert user.username == "john_doe"


def test_extract_user_record_rejects_processed_row():
    values = USER_ROW[:8] + ['{"eid":"jd1234"}']
    with pytest.raises(AlreadyProcessedError) as excinfo:
        extract_user_record(user_row(values, row_number=5))

    error = excinfo.value
    assert error.row_number == 5
    info = error.to_dict()
    assert info["reason"].startswith("This row has already been done")
    assert info["rowInfo"].startswith("Row Info: 2024-03-01T10:00:00,john,doe")
    assert info["rowNumber"] == "Row Number: 5"
    assert json.loads(str(error)) == info


def test_extract_user_record_bad_phone():
    values = list(USER_ROW)
    values[4] = "555-0100"
    with pytest.raises(FormatError):
        extract_user_record(user_row(values))


# ---------------------------------------------------------------------------
# Basket Extraction Tests
# ---------------------------------------------------------------------------


def test_extract_basket_record_assignment():
    extraction = extract_basket_record(basket_row())
    basket = extraction.record

    assert basket.status is BasketStatus.ASSIGN
    assert basket.is_assignment
    assert basket.eid == "ab123"
    assert basket.email == "alice@example.edu"
    assert basket.name == "Alice Baker"
    assert basket.basket == "B7"
    assert extraction.badge.assigned == "2024-03-05"
    assert extraction.write_back[6] == "Assign"
    assert extraction.write_back[BASKET_LAYOUT.marker] == extraction.badge.hash


def test_extract_basket_record_return_still_hashed():
    extraction = extract_basket_record(basket_row(RETURN_ROW))
    assert extraction.record.status is BasketStatus.RETURN
    assert not extraction.record.is_assignment
    assert extraction.write_back[BASKET_LAYOUT.marker] == extraction.badge.hash


def test_extract_basket_record_unknown_status():
    values = list(ASSIGN_ROW)
    values[6] = "Borrow"
    with pytest.raises(FormatError):
        extract_basket_record(basket_row(values))


def test_extract_basket_record_rejects_processed_row():
    values = ASSIGN_ROW[:8] + ["ABCDEF"]
    with pytest.raises(AlreadyProcessedError):
        extract_basket_record(basket_row(values))


@pytest.mark.parametrize("raw", ["assign", "ASSIGN", " Assign "])
def test_basket_status_parse(raw):
    assert BasketStatus.parse(raw) is BasketStatus.ASSIGN


# ---------------------------------------------------------------------------
# Badge Hash Tests
# ---------------------------------------------------------------------------


def badge():
    return BadgeData(
        eid="ab123",
        name="Alice Baker",
        phone="(512) 555-0100",
        email="alice@example.edu",
        basket="B7",
        assigned="2024-03-05",
    )


def test_badge_hash_matches_independent_digest():
    expected = hashlib.sha256(
        b'{"eid":"ab123","name":"Alice Baker","phone":"(512) 555-0100",'
        b'"email":"alice@example.edu","basket":"B7","assigned":"2024-03-05"}'
    ).hexdigest().upper()
    assert compute_badge_hash(badge()) == expected
    assert badge().hash == expected


def test_badge_hash_is_deterministic():
    assert badge().hash == badge().hash


@pytest.mark.parametrize("field", ["eid", "name", "phone", "email", "basket", "assigned"])
def test_badge_hash_changes_with_each_field(field):
    first = badge()
    other = BadgeData(**{**first.fields(), field: first.fields()[field] + "x"})
    assert other.hash != first.hash


def test_badge_payload_carries_hash_last():
    payload = badge().payload()
    assert list(payload) == ["eid", "name", "phone", "email", "basket", "assigned", "hash"]
    assert payload["hash"] == badge().hash
    assert json.loads(badge().to_json()) == payload


def test_canonical_json_is_compact_and_keeps_unicode():
    assert canonical_json({"name": "José", "n": 1}) == '{"name":"José","n":1}'
