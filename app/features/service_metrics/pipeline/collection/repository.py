"""
Document-store queries for chat discovery.

Every query is speculative: collections or fields may not exist, and any
single failure is logged and recorded in the trace, then treated as an
empty result so the remaining queries still count.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable, Sequence
from typing import Any

from app.db.firestore import DocumentStore, StoredDocument
from app.features.service_metrics.domain.trace import MetricsTrace
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def merge_by_path(results: Iterable[Sequence[StoredDocument]]) -> list[StoredDocument]:
    """Union of query results keyed by document path, in path order."""
    merged: dict[str, StoredDocument] = {}
    for documents in results:
        for document in documents:
            merged.setdefault(document.path, document)
    return [merged[path] for path in sorted(merged)]


class ConversationRepository:
    """Fan-out queries over the configured collection and field names."""

    def __init__(self, store: DocumentStore, trace: MetricsTrace) -> None:
        self.store = store
        self.trace = trace

    async def _safe(self, awaitable: Awaitable[list[StoredDocument]], **context: Any):
        try:
            return await awaitable
        except Exception as exc:
            logger.warning("Document query failed", error=str(exc), **context)
            self.trace.record("query_failed", error=str(exc), **context)
            return []

    async def find_by_field(
        self, collections: Sequence[str], fields: Sequence[str], values: Sequence[Any]
    ) -> list[StoredDocument]:
        """Documents of any collection whose field equals any of the values."""
        results = await asyncio.gather(
            *(
                self._safe(
                    self.store.query_equal(collection, name, value),
                    query="equal",
                    collection=collection,
                    field=name,
                    value=str(value),
                )
                for collection in collections
                for name in fields
                for value in values
            )
        )
        return merge_by_path(results)

    async def find_in_collection_group(
        self, names: Sequence[str], fields: Sequence[str], values: Sequence[Any]
    ) -> list[StoredDocument]:
        """Same equality fan-out, but across every sub-collection with the given names."""
        results = await asyncio.gather(
            *(
                self._safe(
                    self.store.query_collection_group(group, name, value),
                    query="collection_group",
                    collection=group,
                    field=name,
                    value=str(value),
                )
                for group in names
                for name in fields
                for value in values
            )
        )
        return merge_by_path(results)

    async def find_by_participant(
        self, collections: Sequence[str], fields: Sequence[str], needles: Sequence[Any]
    ) -> list[StoredDocument]:
        results = await asyncio.gather(
            *(
                self._safe(
                    self.store.query_array_contains(collection, name, needle),
                    query="array_contains",
                    collection=collection,
                    field=name,
                    value=str(needle),
                )
                for collection in collections
                for name in fields
                for needle in needles
            )
        )
        return merge_by_path(results)

    async def read_messages(
        self, conversation: StoredDocument, names: Sequence[str]
    ) -> list[StoredDocument]:
        """Message documents stored in sub-collections of one conversation."""
        results = await asyncio.gather(
            *(
                self._safe(
                    self.store.read_subcollection(conversation.path, name),
                    query="subcollection",
                    collection=name,
                    document=conversation.path,
                )
                for name in names
            )
        )
        return merge_by_path(results)
