"""Accumulate-only record of one migration run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tray_tracker.classify import Classification


def _document_key(document_id: Any) -> str:
    return str(document_id)


@dataclass
class DocumentResult:
    """Outcome of handling one document."""

    document_id: Any
    ok: bool
    message: str = ""

    @classmethod
    def success(cls, document_id: Any) -> "DocumentResult":
        return cls(document_id, True)

    @classmethod
    def failure(cls, document_id: Any, message: str) -> "DocumentResult":
        return cls(document_id, False, message)


@dataclass
class MigrationReport:
    mode: str
    rule: str
    dry_run: bool = False
    processed: int = 0
    migrated: int = 0
    skipped: int = 0
    commits: int = 0
    counts: Dict[str, int] = field(default_factory=lambda: {c.value: 0 for c in Classification})
    errors: List[Dict[str, str]] = field(default_factory=list)
    review: List[str] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    fatal: bool = False
    fatal_error: Optional[str] = None
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None

    def record_seen(self, classification: Classification) -> None:
        self.processed += 1
        self.counts[classification.value] += 1

    def record_skip(self, document_id: Any, classification: Classification) -> None:
        self.skipped += 1
        if classification is Classification.HAS_BOTH:
            self.record_review(document_id)

    def record_review(self, document_id: Any) -> None:
        self.review.append(_document_key(document_id))

    def record_result(self, result: DocumentResult) -> None:
        if result.ok:
            self.migrated += 1
        else:
            self.errors.append({"id": _document_key(result.document_id), "message": result.message})

    def record_commit(self) -> None:
        self.commits += 1

    def record_validation_error(self, message: str) -> None:
        if message not in self.validation_errors:
            self.validation_errors.append(message)

    def record_fatal(self, message: str) -> None:
        self.fatal = True
        self.fatal_error = message

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc).isoformat()

    @property
    def has_errors(self) -> bool:
        return bool(self.errors) or self.fatal

    def summarize(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "processed": self.processed,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }
        if self.fatal:
            summary["fatal"] = True
            summary["fatal_error"] = self.fatal_error
        return summary

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "mode": self.mode,
            "rule": self.rule,
            "dry_run": self.dry_run,
            **self.summarize(),
            "commits": self.commits,
            "counts": dict(self.counts),
            "review": list(self.review),
            "validation_errors": list(self.validation_errors),
            "fatal": self.fatal,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
        if self.fatal_error:
            payload["fatal_error"] = self.fatal_error
        return payload
