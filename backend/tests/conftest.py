"""Pytest configuration and shared fixtures"""

import copy
import inspect
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from projectflow.database import Base
from projectflow.monitoring.metrics import MetricsCollector
from projectflow.schemas.auth import AuthChangeEvent, Session
from projectflow.schemas.realtime import ChangeEvent
from projectflow.services.data_store import DataStore
from projectflow.services.record_gateway import (
    ASSISTANCE_TABLE,
    PROFILES_TABLE,
    PROJECTS_TABLE,
    RecordNotFoundError,
)
from projectflow.services.s3_service import S3ConnectionError
import projectflow.models  # noqa: F401  (registers tables on Base.metadata)


ADMIN_ID = "a0000000-0000-4000-8000-000000000001"
CLIENT_ID = "c0000000-0000-4000-8000-000000000001"
OTHER_CLIENT_ID = "c0000000-0000-4000-8000-000000000002"

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(hours: float) -> datetime:
    """Timestamp `hours` after BASE_TIME"""
    return BASE_TIME + timedelta(hours=hours)


def make_session(user_id: str, email: Optional[str] = None) -> Session:
    return Session(
        access_token=f"token-{user_id}",
        user_id=user_id,
        email=email,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


class FakeSubscription:
    def __init__(self, auth: "FakeAuth", callback):
        self.auth = auth
        self.callback = callback

    def unsubscribe(self):
        if self.callback in self.auth.listeners:
            self.auth.listeners.remove(self.callback)


class FakeAuth:
    """In-memory auth session with listener notification"""

    def __init__(self):
        self.session: Optional[Session] = None
        self.listeners: List[Callable] = []
        self.sign_out_calls = 0

    async def get_current_session(self) -> Optional[Session]:
        return self.session

    def on_auth_state_change(self, callback) -> FakeSubscription:
        self.listeners.append(callback)
        return FakeSubscription(self, callback)

    async def sign_in(self, user_id: str) -> Session:
        event = AuthChangeEvent.SIGNED_IN
        if self.session is not None and self.session.user_id == user_id:
            event = AuthChangeEvent.TOKEN_REFRESHED
        self.session = make_session(user_id)
        await self.emit(event, self.session)
        return self.session

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.session = None
        await self.emit(AuthChangeEvent.SIGNED_OUT, None)

    async def emit(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        for callback in list(self.listeners):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result


class FakeRecords:
    """
    In-memory relational gateway.

    Inserts get an id and (except profiles) a server timestamp one second
    after the previous one. `fail_on[(method, table)]` makes a call raise;
    `select_hook` is awaited before every select.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            PROFILES_TABLE: [],
            PROJECTS_TABLE: [],
            ASSISTANCE_TABLE: [],
        }
        self.fail_on: Dict[tuple, Exception] = {}
        self.calls: List[tuple] = []
        self.select_hook: Optional[Callable[[str, Optional[dict]], Awaitable[None]]] = None
        self._clock = at(100)

    def seed(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables[table].append(stored)
        return copy.deepcopy(stored)

    def _check(self, method: str, table: str):
        self.calls.append((method, table))
        error = self.fail_on.get((method, table))
        if error is not None:
            raise error

    async def select(self, table, filters=None, order_by=None, descending=True):
        if self.select_hook is not None:
            await self.select_hook(table, filters)
        self._check("select", table)
        rows = [
            copy.deepcopy(row)
            for row in self.tables[table]
            if all(row.get(column) == value for column, value in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda row: row[order_by], reverse=descending)
        return rows

    async def insert(self, table, row):
        self._check("insert", table)
        stored = copy.deepcopy(dict(row))
        stored.setdefault("id", str(uuid.uuid4()))
        if table != PROFILES_TABLE:
            self._clock += timedelta(seconds=1)
            stored["created_at"] = self._clock
        self.tables[table].append(stored)
        return copy.deepcopy(stored)

    async def update(self, table, record_id, changes):
        self._check("update", table)
        for row in self.tables[table]:
            if row["id"] == record_id:
                row.update(copy.deepcopy(dict(changes)))
                return copy.deepcopy(row)
        raise RecordNotFoundError(f"{table} row {record_id} not found")

    async def delete(self, table, record_id):
        self._check("delete", table)
        for row in self.tables[table]:
            if row["id"] == record_id:
                self.tables[table].remove(row)
                return copy.deepcopy(row)
        return None

    async def delete_where(self, table, column, value):
        self._check("delete_where", table)
        deleted = [row for row in self.tables[table] if row.get(column) == value]
        self.tables[table] = [row for row in self.tables[table] if row.get(column) != value]
        return copy.deepcopy(deleted)


class FakeChannel:
    def __init__(self, table: str, on_change):
        self.table = table
        self.on_change = on_change
        self.active = True


class FakeRealtime:
    """Captures subscriptions; emit() delivers an event to the open channels of its table"""

    def __init__(self):
        self.channels: List[FakeChannel] = []

    async def subscribe(self, table, on_change) -> FakeChannel:
        channel = FakeChannel(table, on_change)
        self.channels.append(channel)
        return channel

    async def unsubscribe(self, channel: FakeChannel) -> None:
        channel.active = False

    @property
    def active_tables(self) -> List[str]:
        return [channel.table for channel in self.channels if channel.active]

    def emit(self, event: ChangeEvent) -> None:
        for channel in list(self.channels):
            if channel.active and channel.table == event.table:
                channel.on_change(event)


class FakeStorage:
    """In-memory blob storage; uploads whose path contains a name in fail_uploads raise"""

    def __init__(self):
        self.objects: Dict[tuple, bytes] = {}
        self.removed: List[tuple] = []
        self.fail_uploads: set = set()
        self.fail_remove: Optional[Exception] = None

    async def upload(self, bucket, path, data, content_type="application/octet-stream", overwrite=True):
        if any(name in path for name in self.fail_uploads):
            raise S3ConnectionError(f"Failed to upload bytes: {path}")
        self.objects[(bucket, path)] = data
        return path

    def get_public_url(self, bucket, path):
        return f"https://storage.test/{bucket}/{path}"

    async def remove(self, bucket, paths):
        if self.fail_remove is not None:
            raise self.fail_remove
        for path in paths:
            self.objects.pop((bucket, path), None)
        self.removed.append((bucket, list(paths)))


def profile_row(profile_id: str, role: str, name: str, **extra) -> Dict[str, Any]:
    row = {
        "id": profile_id,
        "role": role,
        "name": name,
        "email": f"{name.lower().replace(' ', '.')}@example.com",
        "phone": None,
        "contract": None,
    }
    row.update(extra)
    return row


def project_row(name: str, client_id: str, created_at: datetime, **extra) -> Dict[str, Any]:
    row = {
        "id": str(uuid.uuid4()),
        "name": name,
        "description": "",
        "clientuid": client_id,
        "status": "Pagamento Feito",
        "price": "1000.00",
        "payment_condition": "",
        "delivery_date": None,
        "files": [],
        "created_at": created_at,
    }
    row.update(extra)
    return row


def request_row(project_id: str, client_id: str, created_at: datetime, **extra) -> Dict[str, Any]:
    row = {
        "id": str(uuid.uuid4()),
        "projectId": project_id,
        "clientUid": client_id,
        "clientName": "João Silva",
        "description": "Porta desalinhada",
        "status": "Aberto",
        "response": "",
        "photos": [],
        "created_at": created_at,
    }
    row.update(extra)
    return row


def file_row(path: str, name: str, file_type: str = "photo") -> Dict[str, Any]:
    return {
        "id": path,
        "name": name,
        "url": f"https://storage.test/project-files/{path}",
        "type": file_type,
        "uploadedAt": BASE_TIME.isoformat(),
    }


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def fake_records():
    """Records seeded with one admin and two clients"""
    records = FakeRecords()
    records.seed(PROFILES_TABLE, profile_row(ADMIN_ID, "admin", "Carla Mendes"))
    records.seed(PROFILES_TABLE, profile_row(CLIENT_ID, "client", "João Silva"))
    records.seed(PROFILES_TABLE, profile_row(OTHER_CLIENT_ID, "client", "Maria Souza"))
    return records


@pytest.fixture
def fake_realtime():
    return FakeRealtime()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def mock_metrics():
    """Metrics recorder that keeps the global Prometheus registry untouched"""
    return Mock(spec=MetricsCollector)


@pytest.fixture
def store(fake_auth, fake_records, fake_realtime, fake_storage, mock_metrics):
    """DataStore wired to the in-memory fakes"""
    return DataStore(
        auth=fake_auth,
        records=fake_records,
        realtime=fake_realtime,
        storage=fake_storage,
        metrics=mock_metrics,
        project_bucket="project-files",
        contract_bucket="contracts",
    )


@pytest_asyncio.fixture
async def start_session(store, fake_auth):
    """Start the store with a session for the given user id; stopped on teardown"""
    async def start(user_id: Optional[str]) -> DataStore:
        fake_auth.session = make_session(user_id) if user_id else None
        await store.start()
        return store

    yield start
    await store.stop()


@pytest_asyncio.fixture(scope="function")
async def sqlite_session_factory():
    """Session factory over an in-memory SQLite database with all tables"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
