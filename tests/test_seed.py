"""Tests for demo data generation."""

from __future__ import annotations

import random

import pytest
from faker import Faker

from tray_tracker.classify import Classification, classify
from tray_tracker.rules import BUILTIN_RULES
from tray_tracker.seed import generate_documents, generate_facility, generate_tray
from tray_tracker.store import Document


class TestGenerateTray:
    """Tests for generate_tray."""

    @pytest.mark.parametrize(
        "layout,expected",
        [
            ("legacy", Classification.NEEDS_MIGRATION),
            ("migrated", Classification.ALREADY_MIGRATED),
            ("both", Classification.HAS_BOTH),
            ("neither", Classification.HAS_NEITHER),
        ],
    )
    def test_layouts_classify_as_expected(self, layout, expected):
        """Each seeded layout classifies as its name says."""
        doc = generate_tray(Faker(), random.Random(1), layout)
        (rule,) = BUILTIN_RULES["tray_name_v1"]

        assert classify(Document("x", doc), rule) is expected

    def test_legacy_tray_has_old_timestamps(self):
        """Legacy trays carry the old timestamp fields."""
        doc = generate_tray(Faker(), random.Random(1), "legacy")
        assert "createdAt" in doc
        assert ("lastModified" in doc) != ("updatedAt" in doc)


class TestGenerateFacility:
    """Tests for generate_facility."""

    def test_legacy_facility(self):
        """Legacy facilities only have createdAt."""
        doc = generate_facility(Faker(), random.Random(1), "legacy")
        assert "createdAt" in doc and "created_at" not in doc

    def test_both_layout_shares_created_value(self):
        """The both layout uses one value for old and new fields."""
        doc = generate_facility(Faker(), random.Random(1), "both")
        assert doc["createdAt"] == doc["created_at"]


class TestGenerateDocuments:
    """Tests for generate_documents."""

    def test_count(self):
        """The generator yields the requested count."""
        assert len(generate_documents("tray_tracking", 12, seed=3)) == 12

    def test_seed_is_reproducible(self):
        """The same seed gives the same documents."""
        first = generate_documents("facilities", 5, seed=42)
        second = generate_documents("facilities", 5, seed=42)

        assert [d["name"] for d in first] == [d["name"] for d in second]

    def test_unknown_collection(self):
        """Unknown collections are rejected."""
        with pytest.raises(ValueError):
            generate_documents("cases", 1)
