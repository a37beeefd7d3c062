from __future__ import annotations

from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tray_tracker.classify import Classification, classify, classify_relocation
from tray_tracker.config import MAX_BATCH_SIZE
from tray_tracker.exceptions import FatalStoreError, ValidationError
from tray_tracker.executor import PLANNERS, BatchExecutor, MigrationMode
from tray_tracker.logsink import LogSink, logging_sink
from tray_tracker.planner import plan_relocation, plan_relocation_rollback
from tray_tracker.report import MigrationReport
from tray_tracker.rules import RelocationRule, Rule
from tray_tracker.store import DocumentStore

WRITE_MODES = {MigrationMode.MIGRATE, MigrationMode.ROLLBACK, MigrationMode.CLEANUP}

# Classification a document should have after a successful write in each mode
_EXPECTED_AFTER = {
    MigrationMode.MIGRATE: Classification.ALREADY_MIGRATED,
    MigrationMode.ROLLBACK: Classification.NEEDS_MIGRATION,
    MigrationMode.CLEANUP: Classification.ALREADY_MIGRATED,
}


def check_mode(rule: Rule, mode: MigrationMode) -> None:
    """Reject mode/rule combinations that have no meaning before anything is read."""
    if isinstance(rule, RelocationRule) and MigrationMode(mode) is MigrationMode.CLEANUP:
        raise ValidationError(f"{rule.label}: cleanup does not apply to relocation rules")


async def _load_copies(store: DocumentStore, rule: RelocationRule) -> Dict[Any, Mapping]:
    return {document.id: document.fields async for document in store.list_all(rule.target_collection)}


async def run_migration(
    store: DocumentStore,
    rule: Rule,
    mode: MigrationMode = MigrationMode.MIGRATE,
    batch_size: int = MAX_BATCH_SIZE,
    dry_run: bool = False,
    rate_limit_ms: int = 0,
    verify: bool = False,
    log_sink: LogSink = logging_sink,
) -> MigrationReport:
    """Scan ``rule.collection`` once and apply ``mode`` to every document.

    Always returns a report; only ``FatalStoreError`` is raised, carrying the
    partial report on its ``report`` attribute. Relocation rules read the
    target collection first to know which documents were already copied.
    """
    mode = MigrationMode(mode)
    check_mode(rule, mode)
    dry_run = dry_run or mode is MigrationMode.STATUS

    classifier, planners = classify, PLANNERS
    if isinstance(rule, RelocationRule):
        try:
            copies = await _load_copies(store, rule)
        except FatalStoreError as exc:
            report = MigrationReport(mode=mode.value, rule=rule.label, dry_run=dry_run)
            report.record_fatal(str(exc))
            report.finish()
            exc.report = report
            raise
        classifier = partial(classify_relocation, copies=copies)
        planners = {
            MigrationMode.MIGRATE: plan_relocation,
            MigrationMode.ROLLBACK: partial(plan_relocation_rollback, copies=copies),
        }

    executor = BatchExecutor(
        store,
        batch_size=batch_size,
        dry_run=dry_run,
        rate_limit_ms=rate_limit_ms,
        log_sink=log_sink,
    )
    report = await executor.run(
        store.list_all(rule.collection, rule.condition),
        rule,
        mode,
        classifier=classifier,
        planners=planners,
    )

    if verify and mode in WRITE_MODES and not report.dry_run:
        try:
            await _verify_written(store, rule, mode, executor.written_ids, report, log_sink)
        except FatalStoreError as exc:
            report.record_fatal(str(exc))
            exc.report = report
            raise
    return report


async def migration_status(store: DocumentStore, rule: Rule, log_sink: LogSink = logging_sink) -> Dict[str, Any]:
    """Read-only census of how documents classify under ``rule``."""
    report = await run_migration(store, rule, MigrationMode.STATUS, log_sink=log_sink)
    return {
        "rule": report.rule,
        "total": report.processed,
        **report.counts,
        "review": list(report.review),
    }


async def run_migration_set(
    store: DocumentStore,
    rules: Sequence[Rule],
    mode: MigrationMode = MigrationMode.MIGRATE,
    **kwargs: Any,
) -> List[MigrationReport]:
    """Run several rules in order; rollback walks them in reverse."""
    mode = MigrationMode(mode)
    for rule in rules:
        check_mode(rule, mode)
    ordered = list(reversed(rules)) if mode is MigrationMode.ROLLBACK else list(rules)
    reports: List[MigrationReport] = []
    for rule in ordered:
        try:
            reports.append(await run_migration(store, rule, mode, **kwargs))
        except FatalStoreError as exc:
            exc.completed = reports
            raise
    return reports


async def _reclassify(store: DocumentStore, rule: Rule, document_id: Any) -> Optional[Classification]:
    document = await store.get(rule.collection, document_id)
    if document is None:
        return None
    if isinstance(rule, RelocationRule):
        copy = await store.get(rule.target_collection, document_id)
        copies = {document_id: copy.fields} if copy is not None else {}
        return classify_relocation(document, rule, copies)
    return classify(document, rule)


async def _verify_written(
    store: DocumentStore,
    rule: Rule,
    mode: MigrationMode,
    written_ids: List[Any],
    report: MigrationReport,
    log_sink: LogSink,
) -> None:
    expected = _EXPECTED_AFTER[mode]
    mismatched = 0
    for document_id in written_ids:
        actual = await _reclassify(store, rule, document_id)
        if actual is expected:
            continue
        if actual is None:
            message = "verification failed: document no longer exists"
        else:
            message = f"verification failed: expected {expected.value}, found {actual.value}"
        mismatched += 1
        report.errors.append({"id": str(document_id), "message": message})

    level = "warning" if mismatched else "info"
    log_sink(level, f"Verified {len(written_ids)} writes, {mismatched} mismatched", None, rule.label)
