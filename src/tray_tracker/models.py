from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from beanie import Document
from pydantic import Field

from tray_tracker.report import MigrationReport


class MigrationRun(Document):
    database: str
    collection: str
    rule: str
    mode: str
    dry_run: bool
    processed: int
    migrated: int
    skipped: int
    commits: int
    counts: Dict[str, int]
    errors: list[Dict[str, Any]]
    review: list[str]
    validation_errors: list[str]
    fatal: bool = False
    fatal_error: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "migration_runs"

    @classmethod
    def from_report(cls, database: str, collection: str, report: MigrationReport) -> "MigrationRun":
        return cls(
            database=database,
            collection=collection,
            rule=report.rule,
            mode=report.mode,
            dry_run=report.dry_run,
            processed=report.processed,
            migrated=report.migrated,
            skipped=report.skipped,
            commits=report.commits,
            counts=dict(report.counts),
            errors=list(report.errors),
            review=list(report.review),
            validation_errors=list(report.validation_errors),
            fatal=report.fatal,
            fatal_error=report.fatal_error,
            started_at=report.started_at,
            finished_at=report.finished_at,
        )
