"""Lab Access Onboarding.

Command-line trigger handler for the New User Registration and Basket
Assignment response sheets. New submissions can be read from a file, the
clipboard or stdin. Each is appended and processed in turn as the newest row.
"""

from __future__ import annotations

import argparse
import csv
import io
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .badges import QRServerClient
from .config import AppConfig
from .errors import AlreadyProcessedError, LabAccessError
from .events import IcsCalendar
from .mail import OutboxMailer, SmtpMailer
from .maintenance import export_user_records, relink_identifiers, verify_badge
from .pipeline import Services, Submission, SubmissionKind, SubmissionPipeline, kind_for_sheet
from .sheets import DelimitedSheet, ResponseFile, detect_delimiter
from .storage import FolderFileStore

__all__ = [
    "Failure",
    "read_from_file",
    "read_from_clipboard",
    "read_from_stdin",
    "parse_submission_rows",
    "responses_path_for",
    "build_services",
    "generate_summary",
    "write_failure_report",
    "parse_arguments",
    "main",
]

logger = logging.getLogger(__name__)

KIND_CHOICES = {
    "user": SubmissionKind.USER_REGISTRATION,
    "basket": SubmissionKind.BASKET_ASSIGNMENT,
}


@dataclass
class Failure:
    """A submission the pipeline rejected."""

    message: str
    row: Optional[int] = None
    line: Optional[str] = None


# ---------------------------------------------------------------------------
# Input Functions
# ---------------------------------------------------------------------------


def read_from_file(filename: str) -> Optional[List[str]]:
    """Read data from a file.

    Args:
        filename: Path to the file to read.

    Returns:
        List of lines from the file, or None if reading failed.
    """
    path = Path(filename).expanduser()
    if not path.exists():
        logger.error(f"Error: File '{filename}' not found. Current working directory: {Path.cwd()}")
        return None
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            return [line.rstrip("\n") for line in f.readlines()]
    except OSError as e:
        logger.error(f"Error reading file '{path}': {e}")
        return None


def read_from_clipboard() -> Optional[List[str]]:
    """Try to read from clipboard (requires pyperclip).

    Returns:
        List of lines from clipboard, or None if pyperclip is not available.
    """
    try:
        import pyperclip

        data = pyperclip.paste()
        return data.split("\n")
    except ImportError:
        return None


def read_from_stdin() -> List[str]:
    """Read from stdin (paste directly).

    Returns:
        List of lines entered by the user.
    """
    print("Paste the submission row(s) copied from the form responses (tab-separated).")
    print("Press Ctrl+D (Unix/Mac) or Ctrl+Z + Enter (Windows) when done:\n")

    lines: List[str] = []
    try:
        while True:
            line = input()
            lines.append(line)
    except EOFError:
        pass

    return lines


def parse_submission_rows(lines: List[str], header: List[str]) -> List[List[str]]:
    """Split pasted or exported lines into rows, dropping a repeated header."""
    lines = [line.rstrip("\r") for line in lines if line.strip()]
    if not lines:
        return []
    reader = csv.reader(lines, delimiter=detect_delimiter(lines))
    rows = [[cell.strip() for cell in fields] for fields in reader]
    normalized_header = [col.strip().lower() for col in header]
    if rows and [cell.lower() for cell in rows[0]] == normalized_header:
        rows = rows[1:]
    return rows


def responses_path_for(sheet_path: str) -> str:
    """Default response store beside the sheet: ``<stem>_responses<suffix>``."""
    path = Path(sheet_path)
    return str(path.with_name(f"{path.stem}_responses{path.suffix}"))


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_services(
    sheet: DelimitedSheet, responses_path: str, config: AppConfig, use_smtp: bool = False
) -> Services:
    if use_smtp:
        mailer = SmtpMailer(
            config.smtp_host,
            config.smtp_port,
            config.smtp_user,
            config.smtp_password,
            timeout=config.request_timeout,
        )
    else:
        mailer = OutboxMailer(config.outbox_folder)
    return Services(
        sheet=sheet,
        responses=ResponseFile(responses_path),
        mailer=mailer,
        calendar=IcsCalendar(config.calendar_file),
        files=FolderFileStore(config.badge_folder),
        qr=QRServerClient(config.qr_service_url, timeout=config.request_timeout),
    )


# ---------------------------------------------------------------------------
# Output Functions
# ---------------------------------------------------------------------------


def generate_summary(
    submissions: List[Submission],
    failures: List[Failure],
    output_dir: str,
    dry_run: bool = False,
) -> str:
    """Generate summary report.

    Args:
        submissions: Submissions that completed (or were previewed), in order.
        failures: Rejected submissions.
        output_dir: Output directory path.
        dry_run: If True, do not write files.

    Returns:
        The summary text.
    """
    summary_lines: List[str] = []
    summary_lines.append("\n" + "=" * 70)
    summary_lines.append("SUBMISSION PROCESSING SUMMARY")
    summary_lines.append("=" * 70)

    if submissions:
        summary_lines.append(f"\nSubmissions Processed: {len(submissions)}")
    for submission in submissions:
        record = submission.record
        summary_lines.append(f"\nSheet: {submission.kind.value}")
        summary_lines.append(f"Row: {submission.row_number}")
        summary_lines.append(f"Final State: {submission.state.value}")
        stages = [state.value for state in submission.history] + [submission.state.value]
        summary_lines.append(f"Stages: {' -> '.join(stages)}")
        if record is not None:
            summary_lines.append(f"EID: {record.eid}")
            summary_lines.append(f"Name: {record.name}")
        if submission.badge_file is not None:
            summary_lines.append(f"Badge: {submission.badge_file.location or submission.badge_file.name}")

    summary_lines.append(f"\nOutput Directory: {os.path.abspath(output_dir)}")

    if failures:
        summary_lines.append("\n" + "-" * 70)
        summary_lines.append(f"FAILURES ({len(failures)} found)")
        summary_lines.append("-" * 70)
        for failure in failures:
            row_info = f"Row {failure.row}: " if failure.row else ""
            summary_lines.append(f"  * {row_info}{failure.message}")
    else:
        summary_lines.append("\n" + "-" * 70)
        summary_lines.append("[OK] No errors detected")
        summary_lines.append("-" * 70)

    summary_lines.append("\n" + "=" * 70)

    summary_text = "\n".join(summary_lines)
    logger.info(summary_text)

    if not dry_run:
        summary_file = os.path.join(output_dir, "SUMMARY.txt")
        try:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
            with open(summary_file, "w", encoding="utf-8") as f:
                f.write(summary_text)
            logger.info(f"\nSummary saved to: {summary_file}")
        except OSError as exc:
            logger.error(f"Failed to write summary: {exc}")

    return summary_text


def write_failure_report(
    failures: List[Failure],
    output_dir: str,
    dry_run: bool = False,
) -> Optional[str]:
    """Append rejected submissions to ``failures.csv``.

    Args:
        failures: Rejected submissions.
        output_dir: Directory holding the failure report.
        dry_run: If True, do not write files.

    Returns:
        Path to the failures file, or None if no failures or the write failed.
    """
    if not failures:
        return None

    failures_path = os.path.join(output_dir, "failures.csv")

    if dry_run:
        return failures_path

    try:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        is_new = not os.path.exists(failures_path) or os.path.getsize(failures_path) == 0
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        if is_new:
            writer.writerow(["Row", "Message", "Line"])
        for failure in failures:
            writer.writerow([failure.row or "", failure.message, failure.line or ""])

        contents = buffer.getvalue().rstrip("\n")
        with open(failures_path, "a", newline="", encoding="utf-8") as f:
            f.write(contents if is_new else "\n" + contents)
        return failures_path
    except OSError as exc:
        logger.error(f"Unable to write failure report: {exc}")
        return None


def _failure_for(
    exc: LabAccessError,
    sheet: Optional[DelimitedSheet],
    submission: Optional[Submission] = None,
    values: Optional[List[str]] = None,
) -> Failure:
    """Describe a rejected submission by the row it occupied when it failed.

    Sorting can move rows, so the submission's own row number is preferred
    over the sheet's last row. ``values`` is the raw input row, used when the
    submission never reached the sheet.
    """
    row: Optional[int] = None
    if isinstance(exc, AlreadyProcessedError):
        values = exc.row_values
        row = exc.row_number
    elif submission is not None:
        row = submission.row_number
        if sheet is not None and 2 <= row <= sheet.last_row_number():
            values = sheet.read_row(row)
    elif sheet is not None and sheet.last_row_number() >= 2:
        row = sheet.last_row_number()
        values = sheet.read_row(row)
    line = "\t".join(str(v) for v in values) if values is not None else None
    return Failure(message=str(exc), row=row, line=line)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Command line arguments. Defaults to sys.argv[1:].

    Returns:
        Parsed arguments namespace.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output.",
    )
    common.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress non-essential output.",
    )

    parser = argparse.ArgumentParser(description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser(
        "process", parents=[common], help="Process the newest submission in a response sheet."
    )
    process.add_argument("sheet", help="Path to the response sheet (CSV or tab-delimited).")
    process.add_argument(
        "--kind",
        choices=sorted(KIND_CHOICES),
        help="Submission type. Inferred from the sheet file name when omitted.",
    )
    source = process.add_mutually_exclusive_group()
    source.add_argument(
        "--input-file",
        help="Append the submission row(s) in this file before processing.",
    )
    source.add_argument(
        "--clipboard",
        action="store_true",
        help="Append submission row(s) from the clipboard (requires pyperclip).",
    )
    source.add_argument(
        "--stdin",
        action="store_true",
        help="Append submission row(s) pasted into the terminal.",
    )
    process.add_argument(
        "--responses",
        help="Form response store to clear once done. Defaults to <sheet>_responses beside the sheet.",
    )
    process.add_argument(
        "--output-dir",
        help="Directory for the summary, failure report, outbox, badges and calendar.",
    )
    process.add_argument("--badge-dir", help="Directory where badge PDFs are stored.")
    process.add_argument("--calendar", help="iCalendar file that receives account-creation events.")
    process.add_argument("--outbox", help="Directory where outgoing mail is written.")
    process.add_argument(
        "--smtp",
        action="store_true",
        help="Deliver mail over SMTP (LAB_ACCESS_SMTP_* settings) instead of writing to the outbox.",
    )
    process.add_argument(
        "--dry-run",
        action="store_true",
        help="Extract and show the normalized submission without any side effects.",
    )

    export = commands.add_parser(
        "export", parents=[common], help="Export stored user records to a JSON file."
    )
    export.add_argument("sheet", help="Path to the New User Registration sheet.")
    export.add_argument("output", help="Destination JSON file.")

    relink = commands.add_parser(
        "relink", parents=[common], help="Re-link every EID cell to the directory lookup."
    )
    relink.add_argument("sheet", help="Path to the response sheet.")
    relink.add_argument("--kind", choices=sorted(KIND_CHOICES))

    verify = commands.add_parser(
        "verify", parents=[common], help="Verify a scanned badge payload against the basket sheet."
    )
    verify.add_argument("sheet", help="Path to the Basket Assignment sheet.")
    verify.add_argument("payload", help="The badge QR payload (JSON).")

    return parser.parse_args(argv)


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging based on verbosity settings.

    Args:
        verbose: Enable debug-level logging.
        quiet: Suppress info-level logging.
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _resolve_kind(choice: Optional[str], sheet_path: str) -> Optional[SubmissionKind]:
    if choice:
        return KIND_CHOICES[choice]
    kind = kind_for_sheet(Path(sheet_path).stem)
    if kind is None:
        logger.error(
            f"Cannot infer the submission type from '{sheet_path}'; pass --kind user or --kind basket"
        )
    return kind


def _read_submission_lines(args: argparse.Namespace) -> Optional[List[str]]:
    if args.input_file:
        return read_from_file(args.input_file)
    if args.clipboard:
        lines = read_from_clipboard()
        if lines is None:
            logger.error("Clipboard support is unavailable (pyperclip not installed).")
        return lines
    if args.stdin:
        return read_from_stdin()
    return []


def _run_process(args: argparse.Namespace) -> int:
    kind = _resolve_kind(args.kind, args.sheet)
    if kind is None:
        return 1

    config = AppConfig.from_env().with_overrides(
        output_dir=args.output_dir,
        badge_dir=args.badge_dir,
        calendar_path=args.calendar,
        outbox_dir=args.outbox,
    )
    output_dir = config.output_dir

    if args.dry_run:
        logger.info("[DRY RUN] No files will be written and no messages sent.")

    lines = _read_submission_lines(args)
    if lines is None:
        return 1

    sheet: Optional[DelimitedSheet] = None
    pipeline: Optional[SubmissionPipeline] = None
    row: Optional[List[str]] = None
    submissions: List[Submission] = []
    failures: List[Failure] = []
    try:
        sheet = DelimitedSheet(args.sheet, name=kind.value)
        rows = parse_submission_rows(lines, sheet.header)
        if lines and not rows:
            logger.error("No submission rows found in the provided data")
            return 1

        responses_path = args.responses or responses_path_for(args.sheet)
        services = build_services(sheet, responses_path, config, use_smtp=args.smtp)
        pipeline = SubmissionPipeline(services, config, dry_run=args.dry_run)

        if not rows:
            logger.info(f"\nProcessing '{sheet.name}' row {sheet.last_row_number()}...")
            submissions.append(pipeline.process(kind))

        # One submission at a time: each row must be the newest when processed.
        for index, row in enumerate(rows, start=1):
            logger.info(f"\nSubmission {index} of {len(rows)} for '{sheet.name}'...")
            if args.dry_run:
                submissions.append(pipeline.preview(kind, row, position=index))
                continue
            ResponseFile(responses_path).record(sheet.header, [row])
            sheet.append_rows([row])
            logger.info(f"[OK] Appended submission as row {sheet.last_row_number()}")
            submissions.append(pipeline.process(kind))
    except LabAccessError as exc:
        logger.error(f"\nSubmission failed: {exc}")
        current = pipeline.current if pipeline is not None else None
        failures.append(_failure_for(exc, sheet, current, row))
        if row is not None and len(submissions) + 1 < len(rows):
            logger.warning(f"[WARN] Stopped before {len(rows) - len(submissions) - 1} later submission(s)")

    failures_path = write_failure_report(failures, output_dir, dry_run=args.dry_run)
    if failures_path:
        logger.info(f"[OK] Wrote rejected row to {failures_path}")

    generate_summary(submissions, failures, output_dir, dry_run=args.dry_run)
    return 1 if failures else 0


def _run_export(args: argparse.Namespace) -> int:
    try:
        sheet = DelimitedSheet(args.sheet, name=SubmissionKind.USER_REGISTRATION.value)
        export_user_records(sheet, args.output)
    except LabAccessError as exc:
        logger.error(f"Export failed: {exc}")
        return 1
    return 0


def _run_relink(args: argparse.Namespace) -> int:
    kind = _resolve_kind(args.kind, args.sheet)
    if kind is None:
        return 1
    try:
        sheet = DelimitedSheet(args.sheet, name=kind.value)
        relink_identifiers(sheet, kind.layout, AppConfig.from_env())
    except LabAccessError as exc:
        logger.error(f"Relink failed: {exc}")
        return 1
    return 0


def _run_verify(args: argparse.Namespace) -> int:
    try:
        sheet = DelimitedSheet(args.sheet, name=SubmissionKind.BASKET_ASSIGNMENT.value)
    except LabAccessError as exc:
        logger.error(f"Verification failed: {exc}")
        return 1
    result = verify_badge(args.payload, sheet)
    if result.valid:
        logger.info(f"[OK] {result.reason} (row {result.row_number})")
        return 0
    logger.warning(f"[WARN] Badge rejected: {result.reason}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments. Defaults to sys.argv[1:].

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_arguments(argv)
    _setup_logging(verbose=args.verbose, quiet=args.quiet)

    logger.info("=" * 70)
    logger.info("Lab Access Onboarding")
    logger.info("=" * 70)

    handlers = {
        "process": _run_process,
        "export": _run_export,
        "relink": _run_relink,
        "verify": _run_verify,
    }
    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
