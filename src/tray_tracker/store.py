"""Document store adapter.

The engine only needs three things from a store: stream every document of a
collection, fetch one document by id, and apply a group of patches as a
batch. ``MongoDocumentStore`` implements that on top of motor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import DeleteOne, ReplaceOne, UpdateOne
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from tray_tracker.exceptions import BatchCommitError, FatalStoreError, PerDocumentError

logger = logging.getLogger(__name__)


@dataclass
class Document:
    id: Any
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass(frozen=True)
class Patch:
    """Write for one document.

    Either field-level (values to set and fields to remove), a full
    ``replacement`` upserted under the same id, or a ``delete``.
    """

    document_id: Any
    set_fields: Mapping[str, Any] = field(default_factory=dict)
    unset_fields: Tuple[str, ...] = ()
    replacement: Optional[Mapping[str, Any]] = None
    delete: bool = False

    def __post_init__(self) -> None:
        field_level = bool(self.set_fields or self.unset_fields)
        kinds = sum((field_level, self.replacement is not None, self.delete))
        if kinds == 0:
            raise PerDocumentError(self.document_id, "Patch has nothing to write")
        if kinds > 1:
            raise PerDocumentError(self.document_id, "Patch mixes field updates, replacement and delete")
        overlap = set(self.set_fields) & set(self.unset_fields)
        if overlap:
            raise PerDocumentError(
                self.document_id, f"Patch both sets and unsets {', '.join(sorted(overlap))}"
            )
        touched = set(self.set_fields) | set(self.unset_fields) | set(self.replacement or {})
        if "_id" in touched:
            raise PerDocumentError(self.document_id, "Patch cannot modify _id")
        object.__setattr__(self, "set_fields", MappingProxyType(dict(self.set_fields)))
        object.__setattr__(self, "unset_fields", tuple(self.unset_fields))
        if self.replacement is not None:
            object.__setattr__(self, "replacement", MappingProxyType(dict(self.replacement)))

    def to_update(self) -> Dict[str, Any]:
        update: Dict[str, Any] = {}
        if self.set_fields:
            update["$set"] = dict(self.set_fields)
        if self.unset_fields:
            update["$unset"] = {name: "" for name in self.unset_fields}
        return update

    def to_operation(self) -> Union[UpdateOne, ReplaceOne, DeleteOne]:
        selector = {"_id": self.document_id}
        if self.delete:
            return DeleteOne(selector)
        if self.replacement is not None:
            return ReplaceOne(selector, dict(self.replacement), upsert=True)
        return UpdateOne(selector, self.to_update())


class BatchHandle(Protocol):
    def set(self, document_id: Any, patch: Patch) -> None: ...

    async def commit(self) -> int: ...

    def __len__(self) -> int: ...


class DocumentStore(Protocol):
    def list_all(
        self, collection: str, condition: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[Document]: ...

    async def get(self, collection: str, document_id: Any) -> Optional[Document]: ...

    def batch_write(self, collection: str) -> BatchHandle: ...


def _to_document(raw: Dict[str, Any]) -> Document:
    raw = dict(raw)
    document_id = raw.pop("_id", None)
    return Document(id=document_id, fields=raw)


class MongoBatch:
    def __init__(self, coll) -> None:
        self._coll = coll
        self._ops: List[Union[UpdateOne, ReplaceOne, DeleteOne]] = []

    def set(self, document_id: Any, patch: Patch) -> None:
        self._ops.append(patch.to_operation())

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> int:
        if not self._ops:
            return 0
        try:
            result = await self._coll.bulk_write(self._ops, ordered=False)
        except ServerSelectionTimeoutError as exc:
            raise FatalStoreError(f"MongoDB unreachable during commit: {exc}") from exc
        except PyMongoError as exc:
            # Network timeouts land here too and go through the per-document fallback
            raise BatchCommitError(f"Batch of {len(self._ops)} writes failed: {exc}") from exc
        logger.debug(
            f"Committed {len(self._ops)} writes to {self._coll.name} "
            f"(matched={result.matched_count}, modified={result.modified_count})"
        )
        return len(self._ops)


class MongoDocumentStore:
    """Store adapter backed by an ``AsyncIOMotorClient`` database."""

    def __init__(self, client: AsyncIOMotorClient, database: str, page_size: int = 500) -> None:
        self._db = client[database]
        self.page_size = page_size

    async def list_all(
        self, collection: str, condition: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[Document]:
        cursor = self._db[collection].find(condition or {}).sort("_id", 1).batch_size(self.page_size)
        try:
            async for raw in cursor:
                yield _to_document(raw)
        except PyMongoError as exc:
            # Bad filters, lost cursors and auth failures all end the scan
            raise FatalStoreError(f"MongoDB read of {collection} failed: {exc}") from exc

    async def get(self, collection: str, document_id: Any) -> Optional[Document]:
        try:
            raw = await self._db[collection].find_one({"_id": document_id})
        except PyMongoError as exc:
            raise FatalStoreError(f"MongoDB read of {collection} failed: {exc}") from exc
        if raw is None:
            return None
        return _to_document(raw)

    def batch_write(self, collection: str) -> MongoBatch:
        return MongoBatch(self._db[collection])
