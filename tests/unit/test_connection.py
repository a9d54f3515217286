"""
Tests for the relational pool and the Firestore client manager.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from app.config import settings
from app.db.firestore import FirestoreClientManager, FirestoreDocumentStore
from app.db.helpers import DatabaseError, fetch_all, fetch_one
from app.db.pool import DatabasePoolManager


def _cursor_connection(cursor):
    connection = MagicMock()
    connection.cursor.return_value.__aenter__.return_value = cursor
    return connection


class TestDatabasePool:
    """Tests for DatabasePoolManager lifecycle guards."""

    @pytest.mark.asyncio
    async def test_initialize_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(settings, "DATABASE_URL", None)
        manager = DatabasePoolManager()

        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            await manager.initialize()

        assert manager.pool is None

    @pytest.mark.asyncio
    async def test_connection_before_initialize_fails(self):
        manager = DatabasePoolManager()

        with pytest.raises(RuntimeError, match="not initialized"):
            async with manager.connection():
                pass

    @pytest.mark.asyncio
    async def test_health_check_reports_uninitialized_pool(self):
        health = await DatabasePoolManager().health_check()

        assert health["healthy"] is False
        assert health["service"] == "database_pool"

    @pytest.mark.asyncio
    async def test_close_without_initialize_is_noop(self):
        manager = DatabasePoolManager()

        await manager.close()

        assert manager.pool is None


class TestDatabaseHelpers:
    """Tests for fetch_one / fetch_all error handling."""

    @pytest.mark.asyncio
    async def test_fetch_all_returns_rows(self):
        cursor = AsyncMock()
        cursor.fetchall.return_value = [{"id": 1, "action_rate": 12.0}]

        rows = await fetch_all(
            "SELECT id FROM services", (), connection=_cursor_connection(cursor)
        )

        assert rows == [{"id": 1, "action_rate": 12.0}]
        cursor.execute.assert_awaited_once_with("SELECT id FROM services", ())

    @pytest.mark.asyncio
    async def test_fetch_one_returns_none_for_empty_result(self):
        cursor = AsyncMock()
        cursor.fetchone.return_value = None

        row = await fetch_one("SELECT 1", (), connection=_cursor_connection(cursor))

        assert row is None

    @pytest.mark.asyncio
    async def test_driver_error_is_wrapped(self):
        cursor = AsyncMock()
        cursor.execute.side_effect = psycopg.Error("relation does not exist")

        with pytest.raises(DatabaseError) as excinfo:
            await fetch_all("SELECT * FROM missing", (), connection=_cursor_connection(cursor))

        assert excinfo.value.operation == "fetch_all"


class TestFirestoreClientManager:
    """Tests for lazy Firestore initialisation."""

    def test_failed_initialization_is_memoised(self):
        manager = FirestoreClientManager()

        with (
            patch("app.db.firestore.firebase_admin.get_app", side_effect=ValueError("no app")),
            patch(
                "app.db.firestore.firebase_admin.initialize_app",
                side_effect=RuntimeError("no credentials"),
            ) as mock_initialize,
            patch.object(FirestoreClientManager, "_load_credential", return_value=MagicMock()),
        ):
            assert manager.get_store() is None
            assert manager.get_store() is None

        mock_initialize.assert_called_once()
        health = manager.health_check()
        assert health["healthy"] is False
        assert health["error"] == "no credentials"

    def test_existing_app_is_reused(self):
        manager = FirestoreClientManager()
        app = MagicMock()

        with (
            patch("app.db.firestore.firebase_admin.get_app", return_value=app),
            patch("app.db.firestore.firestore_async.client") as mock_client,
        ):
            store = manager.get_store()
            again = manager.get_store()

        assert isinstance(store, FirestoreDocumentStore)
        assert again is store
        mock_client.assert_called_once_with(app=app)
        assert manager.health_check()["healthy"] is True

    def test_health_check_does_not_initialize(self):
        assert FirestoreClientManager().health_check()["error"] == "Client not initialized"

    def test_service_account_json_is_used(self, monkeypatch):
        monkeypatch.setattr(settings, "FIREBASE_SERVICE_ACCOUNT", '{"type": "service_account"}')

        with patch("app.db.firestore.credentials.Certificate") as mock_certificate:
            FirestoreClientManager()._load_credential()

        mock_certificate.assert_called_once_with({"type": "service_account"})


class TestFirestoreDocumentStore:
    """Tests for snapshot conversion in the Firestore adapter."""

    @staticmethod
    def _snapshot(doc_id, path, data, parent_id=None):
        snapshot = MagicMock()
        snapshot.id = doc_id
        snapshot.reference.path = path
        snapshot.to_dict.return_value = data
        if parent_id is None:
            snapshot.reference.parent.parent = None
        else:
            snapshot.reference.parent.parent.id = parent_id
        return snapshot

    @pytest.mark.asyncio
    async def test_query_equal_converts_snapshots(self):
        client = MagicMock()
        snapshot = self._snapshot("c1", "conversations/c1", {"serviceId": "s1"})
        client.collection.return_value.where.return_value.get = AsyncMock(
            return_value=[snapshot]
        )

        documents = await FirestoreDocumentStore(client).query_equal(
            "conversations", "serviceId", "s1"
        )

        client.collection.assert_called_once_with("conversations")
        assert len(documents) == 1
        assert documents[0].path == "conversations/c1"
        assert documents[0].data == {"serviceId": "s1"}
        assert documents[0].parent_id is None

    @pytest.mark.asyncio
    async def test_collection_group_keeps_parent_id(self):
        client = MagicMock()
        snapshot = self._snapshot("m1", "chats/c9/messages/m1", None, parent_id="c9")
        client.collection_group.return_value.where.return_value.get = AsyncMock(
            return_value=[snapshot]
        )

        documents = await FirestoreDocumentStore(client).query_collection_group(
            "messages", "serviceId", "s1"
        )

        assert documents[0].parent_id == "c9"
        assert documents[0].data == {}
