"""Batch executor: classify, plan and commit one collection scan."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, AsyncIterable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from tray_tracker.classify import Classification, classify
from tray_tracker.config import MAX_BATCH_SIZE
from tray_tracker.exceptions import BatchCommitError, FatalStoreError, PerDocumentError
from tray_tracker.logsink import LogSink, logging_sink
from tray_tracker.planner import plan, plan_cleanup, plan_rollback
from tray_tracker.report import DocumentResult, MigrationReport
from tray_tracker.rules import Rule
from tray_tracker.store import Document, DocumentStore, Patch


class MigrationMode(str, Enum):
    MIGRATE = "migrate"
    ROLLBACK = "rollback"
    CLEANUP = "cleanup"
    STATUS = "status"


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMMITTING = "committing"
    DONE = "done"


_TRANSITIONS = {
    RunState.IDLE: {RunState.SCANNING},
    RunState.SCANNING: {RunState.COMMITTING, RunState.DONE},
    RunState.COMMITTING: {RunState.SCANNING, RunState.DONE},
    RunState.DONE: set(),
}

Classifier = Callable[[Document, Rule], Classification]
Planner = Callable[[Document, Rule, Classification], Optional[Patch]]

PLANNERS: Dict[MigrationMode, Planner] = {
    MigrationMode.MIGRATE: plan,
    MigrationMode.ROLLBACK: plan_rollback,
    MigrationMode.CLEANUP: plan_cleanup,
}


async def _iterate(documents: Union[AsyncIterable[Document], Iterable[Document]]):
    if hasattr(documents, "__aiter__"):
        async for document in documents:
            yield document
    else:
        for document in documents:
            yield document


class BatchExecutor:
    """Runs a single pass over a document stream.

    One executor serves one run: it walks ``IDLE -> SCANNING -> (COMMITTING
    <-> SCANNING) -> DONE`` and refuses to start again afterwards.
    """

    def __init__(
        self,
        store: DocumentStore,
        batch_size: int = MAX_BATCH_SIZE,
        dry_run: bool = False,
        rate_limit_ms: int = 0,
        log_sink: LogSink = logging_sink,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self.dry_run = dry_run
        self.rate_limit_ms = rate_limit_ms
        self.log_sink = log_sink
        self.state = RunState.IDLE
        self.written_ids: List[Any] = []
        self._context = ""

    def _transition(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid run state transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _emit(self, level: str, message: str, data: Any = None) -> None:
        self.log_sink(level, message, data, self._context)

    async def run(
        self,
        documents: Union[AsyncIterable[Document], Iterable[Document]],
        rule: Rule,
        mode: MigrationMode = MigrationMode.MIGRATE,
        classifier: Classifier = classify,
        planners: Mapping[MigrationMode, Planner] = PLANNERS,
    ) -> MigrationReport:
        mode = MigrationMode(mode)
        if self.state is not RunState.IDLE:
            raise RuntimeError("BatchExecutor instances run once; create a new one per run")

        self._context = rule.label
        report = MigrationReport(
            mode=mode.value,
            rule=rule.label,
            dry_run=self.dry_run or mode is MigrationMode.STATUS,
        )
        planner = planners.get(mode)
        self._transition(RunState.SCANNING)
        self._emit("info", f"Starting {mode.value}", {"collection": rule.collection, "dry_run": report.dry_run})

        pending: List[Patch] = []
        try:
            async for document in _iterate(documents):
                patch = self._handle_document(document, rule, classifier, planner, report)
                if patch is None:
                    continue
                pending.append(patch)
                if len(pending) >= self.batch_size:
                    await self._flush(pending, rule, report)
                    pending = []

            if pending:
                await self._flush(pending, rule, report)
                pending = []
        except FatalStoreError as exc:
            report.record_fatal(str(exc))
            report.finish()
            self._transition(RunState.DONE)
            self._emit("error", "Run aborted: store unreachable", report.summarize())
            exc.report = report
            raise

        self._check_rule_matches(rule, report)
        report.finish()
        self._transition(RunState.DONE)
        self._emit("info", f"Finished {mode.value}", report.summarize())
        return report

    def _handle_document(
        self,
        document: Document,
        rule: Rule,
        classifier: Classifier,
        planner: Optional[Planner],
        report: MigrationReport,
    ) -> Optional[Patch]:
        classification = classifier(document, rule)
        report.record_seen(classification)

        if planner is None:
            if classification is Classification.HAS_BOTH:
                report.record_review(document.id)
            return None

        try:
            patch = planner(document, rule, classification)
        except PerDocumentError as exc:
            report.record_result(DocumentResult.failure(document.id, exc.message))
            self._emit("error", f"Could not plan document {document.id}: {exc.message}")
            return None
        except (KeyError, TypeError, ValueError) as exc:
            report.record_result(DocumentResult.failure(document.id, f"{type(exc).__name__}: {exc}"))
            self._emit("error", f"Could not plan document {document.id}: {exc}")
            return None

        if patch is None:
            report.record_skip(document.id, classification)
            if classification is Classification.HAS_BOTH:
                self._emit(
                    "warning",
                    f"Document {document.id} has both {rule.source_name} and {rule.target_name}; needs review",
                )
        return patch

    async def _flush(self, pending: List[Patch], rule: Rule, report: MigrationReport) -> None:
        self._transition(RunState.COMMITTING)

        if self.dry_run:
            for patch in pending:
                report.record_result(DocumentResult.success(patch.document_id))
            self._transition(RunState.SCANNING)
            return

        batch = self.store.batch_write(rule.write_collection)
        for patch in pending:
            batch.set(patch.document_id, patch)

        try:
            await batch.commit()
        except BatchCommitError as exc:
            report.record_commit()
            self._emit("warning", f"Batch of {len(pending)} failed, retrying one by one: {exc}")
            await self._commit_individually(pending, rule, report)
        else:
            report.record_commit()
            for patch in pending:
                report.record_result(DocumentResult.success(patch.document_id))
                self.written_ids.append(patch.document_id)
            self._emit("debug", f"Committed batch of {len(pending)} writes")

        if self.rate_limit_ms > 0:
            await asyncio.sleep(self.rate_limit_ms / 1000)
        self._transition(RunState.SCANNING)

    async def _commit_individually(
        self, pending: List[Patch], rule: Rule, report: MigrationReport
    ) -> None:
        for patch in pending:
            batch = self.store.batch_write(rule.write_collection)
            batch.set(patch.document_id, patch)
            try:
                await batch.commit()
            except BatchCommitError as exc:
                error = PerDocumentError(patch.document_id, str(exc))
                report.record_result(DocumentResult.failure(error.document_id, error.message))
                self._emit("error", f"Write failed for document {patch.document_id}: {exc}")
            else:
                report.record_result(DocumentResult.success(patch.document_id))
                self.written_ids.append(patch.document_id)
            finally:
                report.record_commit()

    def _check_rule_matches(self, rule: Rule, report: MigrationReport) -> None:
        if report.processed == 0:
            message = f"Collection '{rule.collection}' returned no documents"
        elif report.counts[Classification.HAS_NEITHER.value] == report.processed:
            message = (
                f"No document in '{rule.collection}' has '{rule.source_name}' "
                f"or '{rule.target_name}'"
            )
        else:
            return
        report.record_validation_error(message)
        self._emit("warning", message)
