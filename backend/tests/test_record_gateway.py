"""Tests for the relational record gateway (SQLite in memory)"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from projectflow.schemas.realtime import ChangeKind
from projectflow.services.realtime_service import RealtimeError
from projectflow.services.record_gateway import (
    ASSISTANCE_TABLE,
    PROFILES_TABLE,
    PROJECTS_TABLE,
    RecordGateway,
    RecordNotFoundError,
    UnknownColumnError,
    UnknownTableError,
)


@pytest.fixture
def mock_realtime():
    realtime = AsyncMock()
    realtime.publish = AsyncMock(return_value=1)
    return realtime


@pytest.fixture
def gateway(sqlite_session_factory, mock_realtime):
    return RecordGateway(sqlite_session_factory, realtime=mock_realtime)


def project(name, client_id, created_at=None, **extra):
    row = {"name": name, "clientuid": client_id, "files": []}
    if created_at is not None:
        row["created_at"] = created_at
    row.update(extra)
    return row


class TestInsertAndSelect:
    """Test inserting and querying rows"""

    @pytest.mark.asyncio
    async def test_insert_fills_server_defaults(self, gateway, mock_realtime):
        """Test that id, created_at and column defaults are returned"""
        stored = await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))

        assert stored["id"]
        assert stored["created_at"] is not None
        assert stored["status"] == "Pagamento Feito"
        assert stored["clientuid"] == "c1"

        published = mock_realtime.publish.call_args[0][0]
        assert published.table == PROJECTS_TABLE
        assert published.kind == ChangeKind.INSERT
        assert published.record_id == stored["id"]

    @pytest.mark.asyncio
    async def test_select_filters_by_column_name(self, gateway):
        """Test equality filters keyed by database column names"""
        await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))
        await gateway.insert(PROJECTS_TABLE, project("Closet", "c2"))

        rows = await gateway.select(PROJECTS_TABLE, filters={"clientuid": "c2"})

        assert [row["name"] for row in rows] == ["Closet"]

    @pytest.mark.asyncio
    async def test_select_orders_newest_first(self, gateway):
        """Test descending order by created_at"""
        for day, name in ((1, "A"), (3, "C"), (2, "B")):
            await gateway.insert(
                PROJECTS_TABLE, project(name, "c1", created_at=datetime(2024, 1, day, tzinfo=timezone.utc))
            )

        rows = await gateway.select(PROJECTS_TABLE, order_by="created_at")

        assert [row["name"] for row in rows] == ["C", "B", "A"]

    @pytest.mark.asyncio
    async def test_profiles_keep_embedded_contract(self, gateway):
        """Test JSON columns round-trip through the database"""
        contract = {"id": "contracts/c1/a.pdf", "name": "a.pdf", "url": "https://cdn.test/a.pdf",
                    "type": "contract", "uploadedAt": "2024-01-01T12:00:00+00:00"}
        await gateway.insert(PROFILES_TABLE, {
            "id": "c1", "role": "client", "name": "João", "email": "joao@example.com", "contract": contract,
        })

        [row] = await gateway.select(PROFILES_TABLE, filters={"id": "c1"})

        assert row["contract"] == contract
        assert row["phone"] is None

    @pytest.mark.asyncio
    async def test_unknown_table(self, gateway):
        """Test that unmapped tables are refused"""
        with pytest.raises(UnknownTableError):
            await gateway.select("photos")

    @pytest.mark.asyncio
    async def test_unknown_column(self, gateway):
        """Test that unmapped columns are refused"""
        with pytest.raises(UnknownColumnError):
            await gateway.select(PROJECTS_TABLE, filters={"client_id": "c1"})


class TestUpdateAndDelete:
    """Test updates and deletes"""

    @pytest.mark.asyncio
    async def test_update_returns_new_row(self, gateway, mock_realtime):
        """Test partial updates and the published before/after rows"""
        stored = await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))

        updated = await gateway.update(PROJECTS_TABLE, stored["id"], {"status": "Concluído"})

        assert updated["status"] == "Concluído"
        assert updated["name"] == "Cozinha"
        published = mock_realtime.publish.call_args[0][0]
        assert published.kind == ChangeKind.UPDATE
        assert published.old["status"] == "Pagamento Feito"
        assert published.new["status"] == "Concluído"

    @pytest.mark.asyncio
    async def test_update_missing_row(self, gateway):
        """Test updating an unknown id"""
        with pytest.raises(RecordNotFoundError):
            await gateway.update(PROJECTS_TABLE, "missing", {"status": "Concluído"})

    @pytest.mark.asyncio
    async def test_delete(self, gateway, mock_realtime):
        """Test deleting a row returns the old row"""
        stored = await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))

        old = await gateway.delete(PROJECTS_TABLE, stored["id"])

        assert old["id"] == stored["id"]
        assert await gateway.select(PROJECTS_TABLE) == []
        assert mock_realtime.publish.call_args[0][0].kind == ChangeKind.DELETE

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, gateway, mock_realtime):
        """Test that deleting an unknown id does nothing"""
        assert await gateway.delete(PROJECTS_TABLE, "missing") is None
        mock_realtime.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_where(self, gateway, mock_realtime):
        """Test deleting all assistance requests of a project"""
        p1 = await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))
        p2 = await gateway.insert(PROJECTS_TABLE, project("Closet", "c1"))
        for project_id in (p1["id"], p1["id"], p2["id"]):
            await gateway.insert(ASSISTANCE_TABLE, {
                "projectId": project_id, "clientUid": "c1", "clientName": "João",
                "description": "Porta", "photos": [],
            })
        mock_realtime.publish.reset_mock()

        deleted = await gateway.delete_where(ASSISTANCE_TABLE, "projectId", p1["id"])

        assert len(deleted) == 2
        assert mock_realtime.publish.call_count == 2
        remaining = await gateway.select(ASSISTANCE_TABLE)
        assert [row["projectId"] for row in remaining] == [p2["id"]]

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_write(self, gateway, mock_realtime):
        """Test that a committed write is returned even when publishing fails"""
        mock_realtime.publish.side_effect = RealtimeError("redis down")

        stored = await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))

        assert [row["id"] for row in await gateway.select(PROJECTS_TABLE)] == [stored["id"]]


class TestWithoutRealtime:
    """Test the gateway with no change feed attached"""

    @pytest.mark.asyncio
    async def test_insert_without_realtime(self, sqlite_session_factory):
        """Test that writes work without publishing"""
        gateway = RecordGateway(sqlite_session_factory)

        stored = await gateway.insert(PROJECTS_TABLE, project("Cozinha", "c1"))

        assert stored["name"] == "Cozinha"
