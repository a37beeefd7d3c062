"""Custom exceptions for the TrayTracker migration engine."""

from __future__ import annotations

from typing import Any, List, Optional


class TrayTrackerError(Exception):
    """Base exception for TrayTracker."""

    pass


class ConfigurationError(TrayTrackerError):
    """Raised when configuration is missing or invalid."""

    pass


class ValidationError(TrayTrackerError):
    """Raised when a migration rule is invalid or refers to unknown fields."""

    pass


class PerDocumentError(TrayTrackerError):
    """Raised when a single document's patch cannot be applied."""

    def __init__(self, document_id: Any, message: str) -> None:
        super().__init__(message)
        self.document_id = document_id
        self.message = message


class BatchCommitError(TrayTrackerError):
    """Raised when a whole batch of writes fails to commit."""

    pass


class FatalStoreError(TrayTrackerError):
    """Raised when the document store cannot be reached at all.

    Carries the partial report of the interrupted run, if one was in progress,
    and the reports of rules that finished before it when running a rule set.
    """

    def __init__(self, message: str, report: Optional[Any] = None) -> None:
        super().__init__(message)
        self.report = report
        self.completed: List[Any] = []
