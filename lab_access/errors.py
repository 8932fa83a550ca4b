"""Exceptions raised by the onboarding pipeline."""

from __future__ import annotations

import json
from typing import Any, List, Optional, Sequence


class LabAccessError(Exception):
    """Base exception for every failure the pipeline reports."""


class AlreadyProcessedError(LabAccessError):
    """Raised when a row's processed marker is already populated.

    The pipeline should never select such a row, so this signals an operator
    or logic fault rather than bad input.
    """

    reason = "This row has already been done. Code should not have selected that row."

    def __init__(self, row_values: Sequence[Any], row_number: Optional[int] = None):
        self.row_values: List[Any] = list(row_values)
        self.row_number = row_number
        super().__init__(json.dumps(self.to_dict()))

    def to_dict(self) -> dict:
        info = {
            "reason": self.reason,
            "rowInfo": f"Row Info: {','.join(str(v) for v in self.row_values)}",
        }
        if self.row_number is not None:
            info["rowNumber"] = f"Row Number: {self.row_number}"
        return info


class FormatError(LabAccessError, ValueError):
    """Raised when a phone number, timestamp or status cannot be parsed."""

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class ExternalServiceError(LabAccessError):
    """Raised when mail, calendar, storage, form or QR calls fail."""

    def __init__(self, service: str, message: str):
        super().__init__(f"[{service}] {message}")
        self.service = service
        self.message = message
