"""Field presence classification of documents against a migration rule."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict

from tray_tracker.rules import MigrationRule, RelocationRule
from tray_tracker.store import Document


class Classification(str, Enum):
    NEEDS_MIGRATION = "needs_migration"
    ALREADY_MIGRATED = "already_migrated"
    HAS_NEITHER = "has_neither"
    HAS_BOTH = "has_both"


def is_present(fields: Any, field: str, legacy_truthiness: bool = False) -> bool:
    """A field is present when the key exists and its value is not None.

    Empty strings, zero and False still count as present unless
    ``legacy_truthiness`` asks for the old ``if data.name`` behaviour.
    """
    if not isinstance(fields, Mapping) or field not in fields:
        return False
    value = fields[field]
    if legacy_truthiness:
        return bool(value)
    return value is not None


def classify(document: Document, rule: MigrationRule) -> Classification:
    fields = getattr(document, "fields", None)
    if not isinstance(fields, Mapping):
        return Classification.HAS_NEITHER
    has_target = is_present(fields, rule.target_field, rule.legacy_truthiness)

    if rule.reads_id:
        # Every stored document has an id, so only the target decides
        if has_target:
            return Classification.ALREADY_MIGRATED
        if getattr(document, "id", None) is None:
            return Classification.HAS_NEITHER
        return Classification.NEEDS_MIGRATION

    has_source = is_present(fields, rule.source_field, rule.legacy_truthiness)
    if has_source and has_target:
        return Classification.HAS_BOTH
    if has_target:
        return Classification.ALREADY_MIGRATED
    if has_source:
        return Classification.NEEDS_MIGRATION
    return Classification.HAS_NEITHER


def strip_relocation_audit(fields: Mapping, rule: RelocationRule) -> Dict[str, Any]:
    audit = {rule.migrated_at_field, rule.migration_version_field}
    return {name: value for name, value in fields.items() if name not in audit}


def classify_relocation(
    document: Document,
    rule: RelocationRule,
    copies: Mapping[Any, Mapping],
) -> Classification:
    """Classify a source document against the copies already in the target collection.

    A copy with the same content (audit fields aside) means the document was
    relocated. A copy that differs is left for manual review.
    """
    fields = getattr(document, "fields", None)
    if not isinstance(fields, Mapping):
        return Classification.HAS_NEITHER
    copy = copies.get(document.id)
    if copy is None:
        return Classification.NEEDS_MIGRATION
    if strip_relocation_audit(copy, rule) == dict(fields):
        return Classification.ALREADY_MIGRATED
    return Classification.HAS_BOTH
