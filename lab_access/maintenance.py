"""Bulk operations over an existing response sheet."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import DEFAULT_CONFIG, AppConfig
from .errors import ExternalServiceError, FormatError
from .formatters import format_timestamp, parse_timestamp
from .ports import SheetStore
from .records import BASKET_LAYOUT, USER_LAYOUT, BadgeData, RowLayout

__all__ = [
    "export_user_records",
    "relink_identifiers",
    "BadgeVerification",
    "verify_badge",
]

logger = logging.getLogger(__name__)


def _data_rows(sheet: SheetStore):
    for row_number in range(2, sheet.last_row_number() + 1):
        yield row_number, sheet.read_row(row_number)


def export_user_records(
    sheet: SheetStore, output_path: str, layout: RowLayout = USER_LAYOUT
) -> List[Dict[str, Any]]:
    """Write every stored user record to a JSON database file.

    Activation times are normalized to ``YYYY-MM-DD HH:MM:SS``. Rows that
    have not been processed are skipped.

    Args:
        sheet: The New User Registration sheet.
        output_path: Destination JSON file.
        layout: Column layout of the sheet.

    Returns:
        The exported records.

    Raises:
        FormatError: If a marker cell does not hold a JSON record.
    """
    records: List[Dict[str, Any]] = []
    for row_number, values in _data_rows(sheet):
        marker = str(values[layout.marker]).strip() if len(values) > layout.marker else ""
        if not marker:
            logger.debug(f"Row {row_number} has no stored record; skipping")
            continue
        try:
            record = json.loads(marker)
        except json.JSONDecodeError as exc:
            raise FormatError(f"Row {row_number} marker is not a JSON record: {exc}", marker) from exc
        if record.get("activation"):
            record["activation"] = format_timestamp(parse_timestamp(record["activation"]))
        records.append(record)

    try:
        Path(output_path).write_text(json.dumps(records), encoding="utf-8")
    except OSError as exc:
        raise ExternalServiceError("storage", f"Unable to write '{output_path}': {exc}") from exc
    logger.info(f"[OK] Exported {len(records)} user records to {output_path}")
    return records


def relink_identifiers(
    sheet: SheetStore, layout: RowLayout, config: AppConfig = DEFAULT_CONFIG
) -> int:
    """Re-apply the directory link to every identifier cell in the sheet."""
    count = 0
    for row_number, values in _data_rows(sheet):
        eid = str(values[layout.identifier]).strip()
        if not eid:
            continue
        sheet.set_link(row_number, layout.identifier, eid, config.eid_lookup_url.format(eid=eid))
        count += 1
    logger.info(f"[OK] Linked {count} identifiers in '{sheet.name}'")
    return count


@dataclass(frozen=True)
class BadgeVerification:
    valid: bool
    reason: str
    row_number: Optional[int] = None


def verify_badge(
    payload: Union[str, Dict[str, Any]], sheet: SheetStore, layout: RowLayout = BASKET_LAYOUT
) -> BadgeVerification:
    """Check a scanned badge payload against its hash and the basket sheet.

    A badge is valid when its hash matches the hash recomputed from its
    fields and that hash is recorded in the sheet's marker column.

    Args:
        payload: The QR payload, as JSON text or an already decoded dict.
        sheet: The Basket Assignment sheet.
        layout: Column layout of the sheet.

    Returns:
        The verification outcome, with the matching row number when found.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            return BadgeVerification(False, f"Payload is not JSON: {exc}")

    try:
        badge = BadgeData(
            eid=payload["eid"],
            name=payload["name"],
            phone=payload["phone"],
            email=payload["email"],
            basket=str(payload["basket"]),
            assigned=payload["assigned"],
        )
        claimed = payload["hash"]
    except (KeyError, TypeError) as exc:
        return BadgeVerification(False, f"Payload is missing field {exc}")

    if badge.hash != str(claimed).upper():
        return BadgeVerification(False, "Hash does not match badge fields")

    for row_number, values in _data_rows(sheet):
        if len(values) > layout.marker and str(values[layout.marker]).strip().upper() == badge.hash:
            return BadgeVerification(True, "Badge matches sheet record", row_number)
    return BadgeVerification(False, "Hash not recorded in sheet")
