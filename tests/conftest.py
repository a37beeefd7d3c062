"""Shared fixtures: an in-memory document store with failure injection."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Set

import pytest

from tray_tracker.exceptions import BatchCommitError, FatalStoreError
from tray_tracker.rules import MigrationRule
from tray_tracker.store import Document, Patch


class MemoryBatch:
    def __init__(self, store: "MemoryStore", collection: str) -> None:
        self._store = store
        self._collection = collection
        self._patches: List[Patch] = []

    def set(self, document_id: Any, patch: Patch) -> None:
        self._patches.append(patch)

    def __len__(self) -> int:
        return len(self._patches)

    async def commit(self) -> int:
        self._store.commit_sizes.append(len(self._patches))
        if self._store.unreachable_on_commit:
            raise FatalStoreError("connection refused")
        failing = {p.document_id for p in self._patches} & self._store.fail_ids
        if failing:
            raise BatchCommitError(f"permission denied for {sorted(failing)}")

        docs = self._store.collections.setdefault(self._collection, {})
        for patch in self._patches:
            if patch.delete:
                docs.pop(patch.document_id, None)
            elif patch.replacement is not None:
                docs[patch.document_id] = dict(patch.replacement)
            else:
                fields = docs[patch.document_id]
                fields.update(patch.set_fields)
                for name in patch.unset_fields:
                    fields.pop(name, None)
        return len(self._patches)


class MemoryStore:
    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.collections: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        for name, docs in (collections or {}).items():
            self.collections[name] = {doc["id"]: {k: v for k, v in doc.items() if k != "id"} for doc in docs}
        self.commit_sizes: List[int] = []
        self.fail_ids: Set[Any] = set()
        self.unreachable_after: Optional[int] = None
        self.unreachable_on_commit = False

    @property
    def commit_calls(self) -> int:
        return len(self.commit_sizes)

    def fields(self, collection: str, document_id: Any) -> Dict[str, Any]:
        return self.collections[collection][document_id]

    def snapshot(self, collection: str) -> Dict[Any, Dict[str, Any]]:
        return copy.deepcopy(self.collections.get(collection, {}))

    async def list_all(self, collection: str, condition: Optional[Dict[str, Any]] = None):
        docs = self.collections.get(collection, {})
        for index, document_id in enumerate(list(docs)):
            if self.unreachable_after is not None and index >= self.unreachable_after:
                raise FatalStoreError("connection reset while reading")
            fields = docs[document_id]
            if condition and any(fields.get(k) != v for k, v in condition.items()):
                continue
            yield Document(document_id, copy.deepcopy(fields))

    async def get(self, collection: str, document_id: Any) -> Optional[Document]:
        fields = self.collections.get(collection, {}).get(document_id)
        if fields is None:
            return None
        return Document(document_id, copy.deepcopy(fields))

    def batch_write(self, collection: str) -> MemoryBatch:
        return MemoryBatch(self, collection)


class RecordingSink:
    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    def __call__(self, level, message, data=None, context=None) -> None:
        self.records.append({"level": level, "message": message, "data": data, "context": context})

    def levels(self, level: str) -> List[str]:
        return [r["message"] for r in self.records if r["level"] == level]


@pytest.fixture
def tray_rule() -> MigrationRule:
    return MigrationRule(collection="trays", source_field="name", target_field="tray_name", version="v1")


@pytest.fixture
def scenario_store() -> MemoryStore:
    return MemoryStore(
        {
            "trays": [
                {"id": 1, "name": "A"},
                {"id": 2, "name": "B", "tray_name": "B"},
                {"id": 3, "tray_name": "C"},
            ]
        }
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_store():
    """Build a MemoryStore from ``{collection: [docs]}``."""
    return MemoryStore


@pytest.fixture
def legacy_trays():
    """Build a store of ``count`` trays that all still use ``name``."""

    def _build(count: int, collection: str = "trays") -> MemoryStore:
        return MemoryStore({collection: [{"id": i, "name": f"Tray {i}"} for i in range(count)]})

    return _build
