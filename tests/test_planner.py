"""Tests for migration, rollback and cleanup planning."""

from __future__ import annotations

import pytest

from tray_tracker.classify import Classification, classify
from tray_tracker.exceptions import PerDocumentError
from tray_tracker.planner import (
    plan,
    plan_cleanup,
    plan_relocation,
    plan_relocation_rollback,
    plan_rollback,
)
from tray_tracker.rules import MigrationRule, RelocationRule
from tray_tracker.store import Document, Patch

NOW = "2024-01-01T00:00:00+00:00"


class TestPlan:
    """Tests for the forward planner."""

    def test_needs_migration_builds_patch(self, tray_rule):
        """The target takes the source value, which is nulled, plus audit fields."""
        doc = Document(1, {"name": "A"})
        patch = plan(doc, tray_rule, Classification.NEEDS_MIGRATION, now=NOW)

        assert patch.document_id == 1
        assert dict(patch.set_fields) == {
            "tray_name": "A",
            "name": None,
            "migrated_at": NOW,
            "migration_version": "v1",
        }
        assert patch.unset_fields == ()

    def test_delete_source_unsets_instead_of_null(self):
        """delete_source removes the source field."""
        rule = MigrationRule(collection="trays", source_field="name", target_field="tray_name", delete_source=True)
        patch = plan(Document(1, {"name": "A"}), rule, Classification.NEEDS_MIGRATION)

        assert "name" not in patch.set_fields
        assert patch.unset_fields == ("name",)

    def test_migrated_at_defaults_to_now(self, tray_rule):
        """Without an explicit time the current UTC time is stamped."""
        patch = plan(Document(1, {"name": "A"}), tray_rule, Classification.NEEDS_MIGRATION)
        assert patch.set_fields["migrated_at"].endswith("+00:00")

    @pytest.mark.parametrize(
        "classification",
        [Classification.ALREADY_MIGRATED, Classification.HAS_BOTH, Classification.HAS_NEITHER],
    )
    def test_other_classifications_skip(self, tray_rule, classification):
        """Only needs_migration produces a patch."""
        doc = Document(1, {"name": "A", "tray_name": "A"})
        assert plan(doc, tray_rule, classification) is None

    def test_audit_prefix(self):
        """Audit fields carry the rule's prefix."""
        rule = MigrationRule(
            collection="trays",
            source_field="createdAt",
            target_field="created_at",
            version="timestamps_v1",
            audit_prefix="created_at_",
        )
        patch = plan(Document(1, {"createdAt": "t"}), rule, Classification.NEEDS_MIGRATION)
        assert patch.set_fields["created_at_migration_version"] == "timestamps_v1"
        assert "created_at_migrated_at" in patch.set_fields

    def test_null_target_is_remembered(self, tray_rule):
        """An existing null target is saved for rollback."""
        doc = Document(1, {"name": "A", "tray_name": None})
        patch = plan(doc, tray_rule, classify(doc, tray_rule), now=NOW)

        assert patch.set_fields["tray_name"] == "A"
        assert patch.set_fields["migration_prior_target"] is None

    def test_absent_target_not_remembered(self, tray_rule):
        """No prior-target field is written when the target key was missing."""
        patch = plan(Document(1, {"name": "A"}), tray_rule, Classification.NEEDS_MIGRATION)
        assert "migration_prior_target" not in patch.set_fields

    def test_id_source_copies_id(self):
        """An id-sourced rule copies the document id and leaves fields alone."""
        rule = MigrationRule(collection="trays", source_field="$id", target_field="tray_id")
        patch = plan(Document("t1", {"name": "A"}), rule, Classification.NEEDS_MIGRATION, now=NOW)

        assert dict(patch.set_fields) == {"tray_id": "t1", "migrated_at": NOW, "migration_version": "v1"}
        assert patch.unset_fields == ()

    def test_patch_is_immutable(self, tray_rule):
        """Planned patches cannot be mutated."""
        patch = plan(Document(1, {"name": "A"}), tray_rule, Classification.NEEDS_MIGRATION)
        with pytest.raises(TypeError):
            patch.set_fields["tray_name"] = "B"


class TestPlanRollback:
    """Tests for the rollback planner."""

    def test_reverts_own_version(self, tray_rule):
        """The source comes back and target plus audit fields go."""
        doc = Document(1, {"tray_name": "A", "name": None, "migrated_at": "t", "migration_version": "v1"})
        patch = plan_rollback(doc, tray_rule, classify(doc, tray_rule))

        assert dict(patch.set_fields) == {"name": "A"}
        assert set(patch.unset_fields) == {"tray_name", "migrated_at", "migration_version"}

    def test_restores_prior_target(self, tray_rule):
        """A remembered target value is put back instead of unsetting the target."""
        doc = Document(
            1,
            {
                "tray_name": "A",
                "name": None,
                "migrated_at": "t",
                "migration_version": "v1",
                "migration_prior_target": None,
            },
        )
        patch = plan_rollback(doc, tray_rule, classify(doc, tray_rule))

        assert dict(patch.set_fields) == {"name": "A", "tray_name": None}
        assert set(patch.unset_fields) == {"migrated_at", "migration_version", "migration_prior_target"}

    def test_id_source_unsets_target(self):
        """Rolling back an id backfill only removes what was written."""
        rule = MigrationRule(collection="trays", source_field="$id", target_field="tray_id")
        doc = Document("t1", {"tray_id": "t1", "migrated_at": "t", "migration_version": "v1"})
        patch = plan_rollback(doc, rule, classify(doc, rule))

        assert dict(patch.set_fields) == {}
        assert set(patch.unset_fields) == {"tray_id", "migrated_at", "migration_version"}

    def test_ignores_other_version(self, tray_rule):
        """Documents migrated by another version are left alone."""
        doc = Document(1, {"tray_name": "A", "migration_version": "v2"})
        assert plan_rollback(doc, tray_rule, classify(doc, tray_rule)) is None

    def test_ignores_documents_never_migrated(self, tray_rule):
        """Documents without a version stamp are left alone."""
        doc = Document(1, {"tray_name": "A"})
        assert plan_rollback(doc, tray_rule, classify(doc, tray_rule)) is None

    def test_ignores_ambiguous_documents(self, tray_rule):
        """has_both documents are never rolled back."""
        doc = Document(1, {"name": "A", "tray_name": "A", "migration_version": "v1"})
        assert plan_rollback(doc, tray_rule, classify(doc, tray_rule)) is None


class TestPlanCleanup:
    """Tests for the duplicate source cleanup planner."""

    def test_equal_values_drop_source(self, tray_rule):
        """An equal duplicate source is unset."""
        doc = Document(1, {"name": "A", "tray_name": "A"})
        patch = plan_cleanup(doc, tray_rule, classify(doc, tray_rule))

        assert dict(patch.set_fields) == {}
        assert patch.unset_fields == ("name",)

    def test_conflicting_values_left_for_review(self, tray_rule):
        """Differing values are not touched."""
        doc = Document(1, {"name": "A", "tray_name": "B"})
        assert plan_cleanup(doc, tray_rule, classify(doc, tray_rule)) is None

    def test_non_ambiguous_documents_skip(self, tray_rule):
        """Only has_both documents are cleaned."""
        doc = Document(1, {"name": "A"})
        assert plan_cleanup(doc, tray_rule, classify(doc, tray_rule)) is None


class TestPlanRelocation:
    """Tests for the relocation planners."""

    @pytest.fixture
    def rule(self):
        return RelocationRule(collection="surgeons", target_collection="physicians", version="v1")

    def test_copy_is_full_replacement(self, rule):
        """The copy keeps every field and gains relocation audit fields."""
        doc = Document("s1", {"name": "Dr. Lee", "specialty": "spine"})
        patch = plan_relocation(doc, rule, Classification.NEEDS_MIGRATION, now=NOW)

        assert patch.document_id == "s1"
        assert dict(patch.replacement) == {
            "name": "Dr. Lee",
            "specialty": "spine",
            "relocated_at": NOW,
            "relocation_version": "v1",
        }

    def test_existing_copy_skipped(self, rule):
        """Only documents without a copy are relocated."""
        doc = Document("s1", {"name": "Dr. Lee"})
        assert plan_relocation(doc, rule, Classification.ALREADY_MIGRATED) is None

    def test_rollback_deletes_own_copy(self, rule):
        """Rollback deletes copies stamped with this version."""
        doc = Document("s1", {"name": "Dr. Lee"})
        copies = {"s1": {"name": "Dr. Lee", "relocation_version": "v1"}}
        patch = plan_relocation_rollback(doc, rule, Classification.ALREADY_MIGRATED, copies)

        assert patch.delete is True

    def test_rollback_keeps_foreign_copy(self, rule):
        """Copies made by another version are kept."""
        doc = Document("s1", {"name": "Dr. Lee"})
        copies = {"s1": {"name": "Dr. Lee", "relocation_version": "v0"}}
        assert plan_relocation_rollback(doc, rule, Classification.ALREADY_MIGRATED, copies) is None


class TestPatch:
    """Tests for Patch validation."""

    def test_empty_patch_rejected(self):
        """A patch must write something."""
        with pytest.raises(PerDocumentError):
            Patch(1, {}, ())

    def test_set_and_unset_same_field_rejected(self):
        """A field cannot be both set and unset."""
        with pytest.raises(PerDocumentError) as exc_info:
            Patch(1, {"name": "A"}, ("name",))
        assert exc_info.value.document_id == 1

    def test_id_cannot_be_patched(self):
        """_id is never written."""
        with pytest.raises(PerDocumentError):
            Patch(1, {"_id": 2}, ())

    def test_replacement_cannot_carry_id(self):
        """Replacements never rewrite _id either."""
        with pytest.raises(PerDocumentError):
            Patch(1, replacement={"_id": 2, "name": "A"})

    def test_mixed_kinds_rejected(self):
        """Field updates cannot be combined with a delete."""
        with pytest.raises(PerDocumentError):
            Patch(1, {"tray_name": "A"}, delete=True)

    def test_replacement_is_read_only(self):
        """The stored replacement cannot be mutated."""
        patch = Patch(1, replacement={"name": "A"})
        with pytest.raises(TypeError):
            patch.replacement["name"] = "B"

    def test_to_update(self):
        """Field patches render as $set and $unset."""
        patch = Patch(1, {"tray_name": "A"}, ("name",))
        assert patch.to_update() == {"$set": {"tray_name": "A"}, "$unset": {"name": ""}}
