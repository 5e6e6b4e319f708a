import asyncio
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from sqlalchemy.orm import Session, sessionmaker
from supabase import Client, ClientOptions, create_client

from reciclagem.config import REMOTE_APP_NAME
from reciclagem.crud import crud_settings
from reciclagem.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "RemoteClient"


class RemoteError(Exception):
    """Fehler bei einem Aufruf gegen das Remote-Backend."""

    def __init__(self, table: str, action: str, message: str):
        self.table = table
        self.action = action
        self.message = message
        super().__init__(f"{action} on '{table}' failed: {message}")


class RemoteClient:
    """
    Schnittstelle zum Remote-Backend. Alle Methoden sind async und werfen
    RemoteError bei Fehlern.
    """

    async def select_all(self, table: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, table: str, row: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def delete(self, table: str, record_id: str) -> None:
        raise NotImplementedError


class SupabaseRemoteClient(RemoteClient):
    """RemoteClient über den Supabase/PostgREST-Client. Blockierende Aufrufe laufen im Thread-Pool."""

    def __init__(self, url: str, anon_key: str, client: Optional[Client] = None):
        self.url = url
        self._client = client or create_client(
            url,
            anon_key,
            options=ClientOptions(
                headers={"x-application-name": REMOTE_APP_NAME},
                persist_session=False,
                auto_refresh_token=False,
            ),
        )

    async def _run(self, table: str, action: str, query) -> List[Dict[str, Any]]:
        try:
            response = await asyncio.to_thread(query.execute)
        except APIError as e:
            raise RemoteError(table, action, e.message or str(e)) from e
        except Exception as e:
            raise RemoteError(table, action, str(e)) from e
        data = getattr(response, "data", None)
        return data if isinstance(data, list) else []

    async def select_all(self, table: str) -> List[Dict[str, Any]]:
        rows = await self._run(table, "select", self._client.table(table).select("*"))
        debugLog(MODULE_NAME, f"Fetched {len(rows)} rows from '{table}'")
        return rows

    async def find_one(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        query = self._client.table(table).select("id").eq(column, value).limit(1)
        rows = await self._run(table, "select", query)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._run(table, "insert", self._client.table(table).insert(row))

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str) -> List[Dict[str, Any]]:
        return await self._run(table, "upsert", self._client.table(table).upsert(row, on_conflict=on_conflict))

    async def delete(self, table: str, record_id: str) -> None:
        await self._run(table, "delete", self._client.table(table).delete().eq("id", record_id))


class RemoteClientProvider:
    """
    Liefert den RemoteClient passend zu den gespeicherten Zugangsdaten.
    Ohne Zugangsdaten gibt get_client() None zurück; der Client wird pro
    (url, key) gecacht und bei Änderung neu gebaut.
    """

    def __init__(self, session_factory: sessionmaker, factory=None):
        self._session_factory = session_factory
        self._factory = factory or SupabaseRemoteClient
        self._client: Optional[RemoteClient] = None
        self._cache_key: Optional[str] = None

    def _read_credentials(self) -> Dict[str, Optional[str]]:
        db: Session = self._session_factory()
        try:
            return crud_settings.get_remote_settings(db)
        finally:
            db.close()

    def has_credentials(self) -> bool:
        creds = self._read_credentials()
        return bool(creds["url"]) and bool(creds["anon_key"])

    def get_client(self) -> Optional[RemoteClient]:
        creds = self._read_credentials()
        url, anon_key = creds["url"], creds["anon_key"]
        if not url or not anon_key:
            if self._client is not None:
                infoLog(MODULE_NAME, "Remote credentials removed, dropping cached client")
            self.reset()
            return None

        cache_key = f"{url}|{anon_key}"
        if self._client is not None and self._cache_key == cache_key:
            return self._client

        try:
            self._client = self._factory(url, anon_key)
            self._cache_key = cache_key
            infoLog(MODULE_NAME, "Remote client created", details={"url": url})
            return self._client
        except Exception as e:
            errorLog(MODULE_NAME, "Could not create remote client", details={"url": url, "error": str(e)})
            self.reset()
            return None

    def reset(self) -> None:
        self._client = None
        self._cache_key = None
