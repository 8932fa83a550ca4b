"""Submission pipeline: extract a new row, dispatch side effects, mark it done.

Each stage runs synchronously in order. An exception aborts every later
stage, and earlier side effects are not undone. A failure before write-back
leaves the row unmarked, so reprocessing it re-sends notifications.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .badges import generate_badge
from .config import DEFAULT_CONFIG, AppConfig
from .errors import LabAccessError
from .events import save_to_calendar
from .messages import (
    MessageConfig,
    MessageKind,
    TemplateRenderer,
    message_configs,
    send_basket_assignment_email,
    send_confirmation_email,
    send_text,
)
from .ports import CalendarStore, FileStore, FormResponses, Mailer, QRImageService, SheetStore, StoredFile
from .records import (
    BASKET_LAYOUT,
    USER_LAYOUT,
    BasketRecord,
    Extraction,
    RowLayout,
    SheetRow,
    UserRecord,
    extract_basket_record,
    extract_user_record,
)
from .sheets import BASKET_SHEET_FORMAT, USER_SHEET_FORMAT, SheetFormat, timestamp_sort_key

__all__ = [
    "SubmissionKind",
    "SubmissionState",
    "Submission",
    "Services",
    "SubmissionPipeline",
    "kind_for_sheet",
]

logger = logging.getLogger(__name__)


class SubmissionKind(enum.Enum):
    """Form submissions, keyed by the name of the sheet that receives them."""

    USER_REGISTRATION = "New User Registration"
    BASKET_ASSIGNMENT = "Basket Assignment"

    @property
    def layout(self) -> RowLayout:
        return USER_LAYOUT if self is SubmissionKind.USER_REGISTRATION else BASKET_LAYOUT

    @property
    def sheet_format(self) -> SheetFormat:
        return USER_SHEET_FORMAT if self is SubmissionKind.USER_REGISTRATION else BASKET_SHEET_FORMAT


class SubmissionState(enum.Enum):
    NEW = "new"
    EXTRACTED = "extracted"
    SIDE_EFFECTS_COMPLETE = "side_effects_complete"
    WRITTEN_BACK = "written_back"
    FORMATTED = "formatted"
    ACKNOWLEDGED = "acknowledged"


def _sheet_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


def kind_for_sheet(sheet_name: str) -> Optional[SubmissionKind]:
    """Match a sheet or file name to its submission kind.

    ``"New User Registration"``, ``"new_user_registration"`` and
    ``"NEW-USER-REGISTRATION"`` all match the registration sheet.
    """
    wanted = _sheet_key(sheet_name)
    for kind in SubmissionKind:
        if _sheet_key(kind.value) == wanted:
            return kind
    return None


@dataclass
class Submission:
    """One row moving through the pipeline."""

    kind: SubmissionKind
    row_number: int
    state: SubmissionState = SubmissionState.NEW
    extraction: Optional[Extraction] = None
    badge_file: Optional[StoredFile] = None
    history: List[SubmissionState] = field(default_factory=list)

    def advance(self, state: SubmissionState) -> None:
        self.history.append(self.state)
        logger.debug(f"Row {self.row_number}: {self.state.value} -> {state.value}")
        self.state = state

    @property
    def record(self):
        return self.extraction.record if self.extraction else None


@dataclass
class Services:
    """Collaborators the pipeline acts on."""

    sheet: SheetStore
    responses: FormResponses
    mailer: Mailer
    calendar: CalendarStore
    files: FileStore
    qr: QRImageService
    renderer: TemplateRenderer = field(default_factory=TemplateRenderer)


class SubmissionPipeline:
    """Processes the newest row of a response sheet.

    ``current`` is the submission of the latest call, kept when that call
    fails part way so the caller can report the row it was working on.
    """

    def __init__(self, services: Services, config: AppConfig = DEFAULT_CONFIG, dry_run: bool = False):
        self.services = services
        self.config = config
        self.dry_run = dry_run
        self.configs: Mapping[MessageKind, MessageConfig] = message_configs(config)
        self.current: Optional[Submission] = None

    # -- helpers ------------------------------------------------------------

    def _last_row(self, layout: RowLayout) -> SheetRow:
        sheet = self.services.sheet
        row_number = sheet.last_row_number()
        if row_number < 2:
            raise LabAccessError(f"Sheet '{sheet.name}' has no submissions")
        return SheetRow.from_values(sheet.read_row(row_number), row_number, layout.marker)

    def _link_identifier(self, row_number: int, layout: RowLayout, eid: str) -> None:
        url = self.config.eid_lookup_url.format(eid=eid)
        self.services.sheet.set_link(row_number, layout.identifier, eid, url)

    def _sort_by_timestamp(self, layout: RowLayout) -> None:
        self.services.sheet.sort_rows(layout.timestamp, key=timestamp_sort_key)

    def _finish(self, submission: Submission, kind: SubmissionKind) -> None:
        extraction = submission.extraction
        sheet = self.services.sheet

        self._link_identifier(extraction.row_number, kind.layout, extraction.record.eid)
        sheet.write_row(extraction.row_number, extraction.write_back)
        submission.advance(SubmissionState.WRITTEN_BACK)

        sheet.apply_format(kind.sheet_format)
        if kind is SubmissionKind.BASKET_ASSIGNMENT:
            self._sort_by_timestamp(kind.layout)
        submission.advance(SubmissionState.FORMATTED)

        removed = self.services.responses.delete_all_responses()
        submission.advance(SubmissionState.ACKNOWLEDGED)
        logger.info(f"[OK] Cleared {removed} form response(s) for '{sheet.name}'")

    def _log_plan(self, submission: Submission) -> None:
        record = submission.record
        logger.info(f"[DRY RUN] Row {submission.row_number} extracted as {type(record).__name__}")
        for index, value in enumerate(submission.extraction.write_back):
            logger.info(f"[DRY RUN]   {submission.kind.layout.columns[index]}: {value}")

    # -- flows --------------------------------------------------------------

    def process_user_registration(self) -> Submission:
        """Run the New User Registration flow on the newest row."""
        kind = SubmissionKind.USER_REGISTRATION
        self.current = None
        services = self.services

        if not self.dry_run:
            self._sort_by_timestamp(kind.layout)
        row = self._last_row(kind.layout)
        submission = self.current = Submission(kind=kind, row_number=row.row_number)
        submission.extraction = extract_user_record(row, kind.layout)
        submission.advance(SubmissionState.EXTRACTED)
        user: UserRecord = submission.record

        if self.dry_run:
            self._log_plan(submission)
            return submission

        save_to_calendar(user, services.calendar, services.renderer, self.configs)
        send_text(user, services.mailer, services.renderer, self.configs)
        send_confirmation_email(user, services.mailer, services.renderer, self.configs)
        submission.advance(SubmissionState.SIDE_EFFECTS_COMPLETE)

        self._finish(submission, kind)
        logger.info(f"[OK] Registered {user.name} ({user.username}), active {user.activation:%Y-%m-%d %H:%M}")
        return submission

    def process_basket_assignment(self) -> Submission:
        """Run the Basket Assignment flow on the newest row.

        Only assignments get a badge; the email carries it as an attachment.
        """
        kind = SubmissionKind.BASKET_ASSIGNMENT
        self.current = None
        services = self.services

        row = self._last_row(kind.layout)
        submission = self.current = Submission(kind=kind, row_number=row.row_number)
        submission.extraction = extract_basket_record(row, kind.layout)
        submission.advance(SubmissionState.EXTRACTED)
        basket: BasketRecord = submission.record

        if self.dry_run:
            self._log_plan(submission)
            return submission

        attachment = None
        if basket.is_assignment:
            submission.badge_file = generate_badge(
                submission.extraction.badge, services.qr, services.files, size=self.config.qr_size
            )
            attachment = submission.badge_file.as_attachment()
        send_basket_assignment_email(basket, services.mailer, services.renderer, attachment, self.configs)
        submission.advance(SubmissionState.SIDE_EFFECTS_COMPLETE)

        self._finish(submission, kind)
        return submission

    def preview(self, kind: SubmissionKind, values: List, position: int = 1) -> Submission:
        """Extract a not-yet-appended submission without touching any service.

        ``position`` counts from the end of the sheet, so the first of several
        pending rows previews at the next free row.
        """
        self.current = None
        row_number = self.services.sheet.last_row_number() + position
        row = SheetRow.from_values(values, row_number, kind.layout.marker)
        submission = self.current = Submission(kind=kind, row_number=row_number)
        extract = extract_user_record if kind is SubmissionKind.USER_REGISTRATION else extract_basket_record
        submission.extraction = extract(row, kind.layout)
        submission.advance(SubmissionState.EXTRACTED)
        self._log_plan(submission)
        return submission

    def process(self, kind: SubmissionKind) -> Submission:
        if kind is SubmissionKind.USER_REGISTRATION:
            return self.process_user_registration()
        return self.process_basket_assignment()
