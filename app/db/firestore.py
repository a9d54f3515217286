"""
Firestore client manager and document-store adapter.

Owns the process-wide Firebase handle. Initialisation is attempted once;
both the client and a failed attempt are memoised so callers never retry
per request.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.cloud.firestore_v1.base_query import FieldFilter

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class StoredDocument:
    """A document read from the schema-flexible store."""

    id: str
    path: str
    data: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None


class DocumentStore(Protocol):
    """Read capabilities the metrics engine needs from a document store."""

    async def query_equal(self, collection: str, field: str, value: Any) -> list[StoredDocument]:
        ...

    async def query_array_contains(
        self, collection: str, field: str, value: Any
    ) -> list[StoredDocument]:
        ...

    async def read_subcollection(self, document_path: str, name: str) -> list[StoredDocument]:
        ...

    async def query_collection_group(
        self, name: str, field: str, value: Any
    ) -> list[StoredDocument]:
        ...


def _to_stored(snapshot) -> StoredDocument:
    reference = snapshot.reference
    parent_doc = reference.parent.parent if reference.parent is not None else None
    return StoredDocument(
        id=snapshot.id,
        path=reference.path,
        data=snapshot.to_dict() or {},
        parent_id=parent_doc.id if parent_doc is not None else None,
    )


class FirestoreDocumentStore:
    """DocumentStore backed by google.cloud.firestore.AsyncClient."""

    def __init__(self, client) -> None:
        self._client = client

    async def query_equal(self, collection: str, field: str, value: Any) -> list[StoredDocument]:
        query = self._client.collection(collection).where(filter=FieldFilter(field, "==", value))
        return [_to_stored(snapshot) for snapshot in await query.get()]

    async def query_array_contains(
        self, collection: str, field: str, value: Any
    ) -> list[StoredDocument]:
        query = self._client.collection(collection).where(
            filter=FieldFilter(field, "array_contains", value)
        )
        return [_to_stored(snapshot) for snapshot in await query.get()]

    async def read_subcollection(self, document_path: str, name: str) -> list[StoredDocument]:
        snapshots = await self._client.document(document_path).collection(name).get()
        return [_to_stored(snapshot) for snapshot in snapshots]

    async def query_collection_group(
        self, name: str, field: str, value: Any
    ) -> list[StoredDocument]:
        query = self._client.collection_group(name).where(filter=FieldFilter(field, "==", value))
        return [_to_stored(snapshot) for snapshot in await query.get()]


class FirestoreClientManager:
    """Lazily create a shared Firestore client; remember failures."""

    def __init__(self) -> None:
        self._store: FirestoreDocumentStore | None = None
        self._initialization_attempted = False
        self._error: str | None = None

    def get_store(self) -> FirestoreDocumentStore | None:
        """Return the shared store, or None when Firestore cannot be used."""
        if self._store is not None:
            return self._store
        if self._initialization_attempted:
            return None

        self._initialization_attempted = True
        try:
            app = self._get_or_create_app()
            self._store = FirestoreDocumentStore(firestore_async.client(app=app))
            logger.info("Firestore client created", project_id=settings.FIREBASE_PROJECT_ID)
        except Exception as exc:
            self._error = str(exc)
            logger.error("Unable to initialize Firestore client", error=self._error)
            return None
        return self._store

    def _get_or_create_app(self) -> firebase_admin.App:
        try:
            return firebase_admin.get_app()
        except ValueError:
            pass

        options = None
        if settings.FIREBASE_PROJECT_ID:
            options = {"projectId": settings.FIREBASE_PROJECT_ID}
        return firebase_admin.initialize_app(self._load_credential(), options)

    def _load_credential(self) -> credentials.Base:
        if settings.FIREBASE_SERVICE_ACCOUNT:
            logger.debug("Using FIREBASE_SERVICE_ACCOUNT JSON from environment")
            return credentials.Certificate(json.loads(settings.FIREBASE_SERVICE_ACCOUNT))

        if settings.FIREBASE_SERVICE_ACCOUNT_PATH:
            path = settings.FIREBASE_SERVICE_ACCOUNT_PATH
            if not os.path.isabs(path):
                path = os.path.join(os.getcwd(), path)
            logger.debug("Using FIREBASE_SERVICE_ACCOUNT_PATH", path=path)
            with open(path, encoding="utf-8") as handle:
                return credentials.Certificate(json.load(handle))

        logger.debug("Using application default credentials")
        return credentials.ApplicationDefault()

    def health_check(self) -> dict[str, Any]:
        """Return Firestore handle status without triggering initialisation."""
        if self._store is not None:
            return {"healthy": True, "service": "firestore"}
        if self._initialization_attempted:
            return {"healthy": False, "service": "firestore", "error": self._error}
        return {"healthy": False, "service": "firestore", "error": "Client not initialized"}


firestore_manager = FirestoreClientManager()
