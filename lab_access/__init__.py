"""Lab access onboarding and cleanroom basket assignment pipeline."""

from .config import AppConfig
from .errors import AlreadyProcessedError, ExternalServiceError, FormatError, LabAccessError
from .pipeline import Services, Submission, SubmissionKind, SubmissionPipeline, SubmissionState
from .records import BadgeData, BasketRecord, UserRecord

__version__ = "1.0.0"

__all__ = [
    "AppConfig",
    "AlreadyProcessedError",
    "ExternalServiceError",
    "FormatError",
    "LabAccessError",
    "Services",
    "Submission",
    "SubmissionKind",
    "SubmissionPipeline",
    "SubmissionState",
    "BadgeData",
    "BasketRecord",
    "UserRecord",
]
