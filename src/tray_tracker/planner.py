"""Turn a classified document into the patch that migrates or reverts it."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from tray_tracker.classify import Classification, is_present
from tray_tracker.rules import MigrationRule, RelocationRule
from tray_tracker.store import Document, Patch


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def plan(
    document: Document,
    rule: MigrationRule,
    classification: Classification,
    now: Optional[str] = None,
) -> Optional[Patch]:
    """Build the forward patch. Only ``NEEDS_MIGRATION`` produces one."""
    if classification is not Classification.NEEDS_MIGRATION:
        return None

    fields = document.fields
    value = document.id if rule.reads_id else fields[rule.source_field]
    set_fields = {
        rule.target_field: value,
        rule.migrated_at_field: now or _utcnow_iso(),
        rule.migration_version_field: rule.version,
    }
    if rule.target_field in fields:
        # A null (or falsy, under legacy checks) target is put back on rollback
        set_fields[rule.prior_target_field] = fields[rule.target_field]

    unset_fields = ()
    if rule.delete_source:
        unset_fields = (rule.source_field,)
    elif not rule.reads_id:
        set_fields[rule.source_field] = None
    return Patch(document.id, set_fields, unset_fields)


def plan_rollback(
    document: Document,
    rule: MigrationRule,
    classification: Classification,
) -> Optional[Patch]:
    """Build the reverse patch.

    Only documents this exact rule version migrated are reverted, so a later
    rule that wrote the same target field is left alone.
    """
    if classification is not Classification.ALREADY_MIGRATED:
        return None
    fields = document.fields
    if fields.get(rule.migration_version_field) != rule.version:
        return None

    set_fields = {}
    unset_fields = [rule.migrated_at_field, rule.migration_version_field]
    if not rule.reads_id:
        set_fields[rule.source_field] = fields[rule.target_field]
    if rule.prior_target_field in fields:
        set_fields[rule.target_field] = fields[rule.prior_target_field]
        unset_fields.append(rule.prior_target_field)
    else:
        unset_fields.append(rule.target_field)
    return Patch(document.id, set_fields, tuple(unset_fields))


def plan_cleanup(
    document: Document,
    rule: MigrationRule,
    classification: Classification,
) -> Optional[Patch]:
    """Drop a leftover source field when it duplicates the target value.

    Documents whose two values disagree stay untouched for manual review.
    """
    if classification is not Classification.HAS_BOTH:
        return None
    fields = document.fields
    if not is_present(fields, rule.target_field):
        return None
    if fields[rule.source_field] != fields[rule.target_field]:
        return None
    return Patch(document.id, {}, (rule.source_field,))


def plan_relocation(
    document: Document,
    rule: RelocationRule,
    classification: Classification,
    now: Optional[str] = None,
) -> Optional[Patch]:
    """Copy the whole document into the target collection under the same id."""
    if classification is not Classification.NEEDS_MIGRATION:
        return None
    replacement = dict(document.fields)
    replacement[rule.migrated_at_field] = now or _utcnow_iso()
    replacement[rule.migration_version_field] = rule.version
    return Patch(document.id, replacement=replacement)


def plan_relocation_rollback(
    document: Document,
    rule: RelocationRule,
    classification: Classification,
    copies: Mapping[Any, Mapping],
) -> Optional[Patch]:
    """Delete the copy this rule version made. The source document is untouched."""
    if classification is not Classification.ALREADY_MIGRATED:
        return None
    if copies[document.id].get(rule.migration_version_field) != rule.version:
        return None
    return Patch(document.id, delete=True)
