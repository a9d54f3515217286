from datetime import UTC, datetime

import pytest

from app.db.firestore import StoredDocument
from app.features.service_metrics.pipeline.calendar.service import BusinessCalendar


def _same_value(stored, wanted) -> bool:
    # Firestore equality is type-sensitive between strings and numbers
    if isinstance(stored, bool) or isinstance(wanted, bool):
        return type(stored) is type(wanted) and stored == wanted
    if isinstance(stored, str) or isinstance(wanted, str):
        return isinstance(stored, str) and isinstance(wanted, str) and stored == wanted
    return stored == wanted


class InMemoryDocumentStore:
    """DocumentStore over a dict of path -> data, with per-query failure injection."""

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.failures: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str, str, object]] = []

    def add(self, path: str, data: dict) -> None:
        self.documents[path] = data

    def fail(self, operation: str, collection: str) -> None:
        self.failures.add((operation, collection))

    def _check(self, operation: str, collection: str, field: str = "", value=None) -> None:
        self.calls.append((operation, collection, field, value))
        if (operation, collection) in self.failures:
            raise RuntimeError(f"{operation} on {collection} failed")

    @staticmethod
    def _stored(path: str, data: dict) -> StoredDocument:
        segments = path.split("/")
        return StoredDocument(
            id=segments[-1],
            path=path,
            data=data,
            parent_id=segments[-3] if len(segments) >= 4 else None,
        )

    def _in_collection(self, collection: str, top_level: bool):
        for path in sorted(self.documents):
            segments = path.split("/")
            if segments[-2] != collection:
                continue
            if top_level and len(segments) != 2:
                continue
            yield path, self.documents[path]

    async def query_equal(self, collection, field, value):
        self._check("equal", collection, field, value)
        return [
            self._stored(path, data)
            for path, data in self._in_collection(collection, top_level=True)
            if field in data and _same_value(data[field], value)
        ]

    async def query_array_contains(self, collection, field, value):
        self._check("array_contains", collection, field, value)
        return [
            self._stored(path, data)
            for path, data in self._in_collection(collection, top_level=True)
            if isinstance(data.get(field), list)
            and any(_same_value(item, value) for item in data[field])
        ]

    async def read_subcollection(self, document_path, name):
        self._check("subcollection", name)
        prefix = f"{document_path}/{name}/"
        return [
            self._stored(path, data)
            for path, data in sorted(self.documents.items())
            if path.startswith(prefix) and "/" not in path[len(prefix) :]
        ]

    async def query_collection_group(self, name, field, value):
        self._check("collection_group", name, field, value)
        return [
            self._stored(path, data)
            for path, data in self._in_collection(name, top_level=False)
            if field in data and _same_value(data[field], value)
        ]


class FakeStoreManager:
    def __init__(self, store=None):
        self.store = store
        self.calls = 0

    def get_store(self):
        self.calls += 1
        return self.store


class FakeCalendarService:
    def __init__(self, calendar: BusinessCalendar | None = None):
        self.calendar = calendar or BusinessCalendar.always_open()
        self.loaded_for = []

    async def load(self, professional_id):
        self.loaded_for.append(professional_id)
        return self.calendar


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.fixture
def store_manager():
    return FakeStoreManager


@pytest.fixture
def calendar_service():
    return FakeCalendarService()
