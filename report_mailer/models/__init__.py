"""Domain models for the report mailer.

This package contains the domain model classes used throughout the application:
normalized report rows, sub-bottler groups, draft lifecycle state, batch results
and structured error records.
"""

from .config_models import BatchConfig, DispatchConfig, GenerationConfig, MailerConfig
from .draft import DraftState, DraftStatus, EmailDraft
from .report_row import ReportRow, SubBottlerGroup

__all__ = [
    # Configuration models
    "BatchConfig",
    "DispatchConfig",
    "GenerationConfig",
    "MailerConfig",
    # Report models
    "ReportRow",
    "SubBottlerGroup",
    # Draft models
    "DraftState",
    "DraftStatus",
    "EmailDraft",
]
