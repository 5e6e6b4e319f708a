import pytest
import sys
import os

# Add the project root to sys.path to allow imports from 'reciclagem'
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, PROJECT_ROOT)
import asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from reciclagem.crud import crud_settings
from reciclagem.models.local_models import LocalBase
from reciclagem.services.connectivity import StaticConnectivityMonitor
from reciclagem.services.remote_client import RemoteClient, RemoteClientProvider
from reciclagem.services.sync_service import SyncEngine

DATABASE_URL_TEST = "sqlite:///:memory:"


class FakeRemoteClient(RemoteClient):
    """
    In-Memory-Backend für Tests. Zeichnet alle Aufrufe auf und vergibt ids
    wie ein Server. Fehler pro (Aktion, Tabelle) über ``fail`` konfigurierbar.
    """

    def __init__(self, tables=None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls = []
        self.fail = {}
        self.delay = 0.0
        self._next_id = 1000

    async def _enter(self, action, table, data=None):
        self.calls.append((action, table, data))
        if self.delay:
            await asyncio.sleep(self.delay)
        exc = self.fail.get((action, table)) or self.fail.get((action, "*"))
        if exc is not None:
            raise exc

    def _assign_id(self, row):
        if row.get("id") is None:
            self._next_id += 1
            row["id"] = self._next_id
        return row

    def writes(self):
        return [c for c in self.calls if c[0] in ("insert", "upsert", "delete")]

    async def select_all(self, table):
        await self._enter("select", table)
        return [dict(r) for r in self.tables.get(table, [])]

    async def find_one(self, table, column, value):
        await self._enter("find_one", table, {column: value})
        for row in self.tables.get(table, []):
            if row.get(column) == value:
                return {"id": row.get("id")}
        return None

    async def insert(self, table, row):
        await self._enter("insert", table, dict(row))
        stored = self._assign_id(dict(row))
        self.tables.setdefault(table, []).append(stored)
        return [dict(stored)]

    async def upsert(self, table, row, on_conflict):
        await self._enter("upsert", table, dict(row))
        rows = self.tables.setdefault(table, [])
        for existing in rows:
            if on_conflict in row and existing.get(on_conflict) == row[on_conflict]:
                existing.update(row)
                return [dict(existing)]
        stored = self._assign_id(dict(row))
        rows.append(stored)
        return [dict(stored)]

    async def delete(self, table, record_id):
        await self._enter("delete", table, {"id": record_id})
        self.tables[table] = [r for r in self.tables.get(table, []) if str(r.get("id")) != str(record_id)]


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        DATABASE_URL_TEST,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    LocalBase.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def fake_remote():
    return FakeRemoteClient()


@pytest.fixture(scope="function")
def connectivity():
    return StaticConnectivityMonitor(online=True)


@pytest.fixture(scope="function")
def with_credentials(db_session):
    crud_settings.save_remote_settings(db_session, "https://example.supabase.co", "anon-key")
    return db_session


@pytest.fixture(scope="function")
def make_engine(session_factory, connectivity, fake_remote):
    """Factory für SyncEngines mit Fake-Backend; Keyword-Argumente überschreiben Defaults."""

    def _make(**kwargs):
        provider = RemoteClientProvider(session_factory, factory=lambda url, key: fake_remote)
        params = {
            "session_factory": session_factory,
            "connectivity": connectivity,
            "client_provider": provider,
            "remote_timeout": 1.0,
        }
        params.update(kwargs)
        return SyncEngine(**params)

    return _make


@pytest.fixture(scope="function")
def sync_engine(make_engine):
    return make_engine()
