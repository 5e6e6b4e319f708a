import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from reciclagem.config import SYNC_POISON_MAX_ATTEMPTS, SYNC_REMOTE_TIMEOUT_SECONDS
from reciclagem.crud import crud_local, crud_outbox, crud_settings
from reciclagem.models.schemas import OperationType, SyncStatus
from reciclagem.services.connectivity import ConnectivityMonitor
from reciclagem.services.remote_client import RemoteClient, RemoteClientProvider, RemoteError
from reciclagem.services.sync_registry import (
    DEFAULT_REGISTRY,
    OFFLINE_PRESERVED_TABLES,
    PULL_TABLES,
    SINGLETON_TABLES,
    SyncDescriptor,
    get_descriptor,
)
from reciclagem.services.trigger_policy import ManualTriggerPolicy, TriggerPolicy
from reciclagem.utils.logger import debugLog, errorLog, infoLog, warnLog

MODULE_NAME = "SyncService"

StatusListener = Callable[[SyncStatus], None]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncEngine:
    """
    Offline-first Sync: Outbox hochladen (Push), danach Remote-Snapshots in die
    lokale Datenbank übernehmen (Pull). Besitzt den Sync-Status und die
    Beobachterliste; Beobachter erhalten immer eine Kopie.

    Es gibt keinen Mutex: parallele Auslöser können überlappende Zyklen starten.
    Idempotente Upserts über Konfliktspalten halten das unschädlich.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        connectivity: ConnectivityMonitor,
        client_provider: Optional[RemoteClientProvider] = None,
        trigger_policy: Optional[TriggerPolicy] = None,
        registry: Optional[Dict[str, SyncDescriptor]] = None,
        pull_tables: Optional[List[str]] = None,
        remote_timeout: float = SYNC_REMOTE_TIMEOUT_SECONDS,
        poison_max_attempts: int = SYNC_POISON_MAX_ATTEMPTS,
    ):
        self.session_factory = session_factory
        self.connectivity = connectivity
        self.client_provider = client_provider or RemoteClientProvider(session_factory)
        self.trigger_policy = trigger_policy or ManualTriggerPolicy()
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.pull_tables = list(pull_tables) if pull_tables is not None else list(PULL_TABLES)
        self.remote_timeout = remote_timeout
        self.poison_max_attempts = poison_max_attempts

        self._status = SyncStatus()
        self._listeners: List[StatusListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._remove_connectivity_listener: Optional[Callable[[], None]] = None

        db = self.session_factory()
        try:
            self._status.last_sync_at = crud_settings.get_last_sync_at(db)
        finally:
            db.close()

    # --- Status & Beobachter ---

    def get_status(self) -> SyncStatus:
        return self._status.model_copy()

    def subscribe(self, callback: StatusListener) -> Callable[[], None]:
        self._listeners.append(callback)
        self._call_listener(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _call_listener(self, callback: StatusListener) -> None:
        try:
            callback(self._status.model_copy())
        except Exception as e:
            errorLog(MODULE_NAME, "Status listener raised, ignoring", details={"error": str(e)})

    def _emit(self) -> None:
        for listener in list(self._listeners):
            self._call_listener(listener)

    async def _refresh_online_status(self) -> None:
        try:
            self._status.is_online = bool(await self.connectivity.is_online())
        except Exception as e:
            warnLog(MODULE_NAME, "Connectivity check failed, assuming offline", details={"error": str(e)})
            self._status.is_online = False

    def _refresh_credentials_status(self) -> None:
        self._status.has_credentials = self.client_provider.has_credentials()

    def _refresh_pending_count(self) -> None:
        db = self.session_factory()
        try:
            self._status.pending_count = crud_outbox.count_pending(db)
        finally:
            db.close()

    # --- Lebenszyklus & Auslöser ---

    async def initialize(self) -> None:
        self._refresh_credentials_status()
        await self._refresh_online_status()
        self._refresh_pending_count()
        self._emit()
        if self._remove_connectivity_listener is None:
            self._remove_connectivity_listener = self.connectivity.add_listener(self._on_connectivity_change)
        infoLog(MODULE_NAME, "Sync engine initialized", details=self._status.model_dump())

    def shutdown(self) -> None:
        if self._remove_connectivity_listener is not None:
            self._remove_connectivity_listener()
            self._remove_connectivity_listener = None
        for task in list(self._tasks):
            task.cancel()

    def _on_connectivity_change(self, online: bool) -> None:
        self._status.is_online = online
        self._emit()
        self.trigger_policy.on_connectivity_change(self, online)

    def notify_credentials_changed(self) -> None:
        self.client_provider.reset()
        self._refresh_credentials_status()
        self._emit()
        self.trigger_policy.on_credentials_change(self)

    def trigger_now(self) -> asyncio.Task:
        """Startet einen Sync-Zyklus im Hintergrund (fire-and-forget)."""
        task = asyncio.get_running_loop().create_task(self.sync_once())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def is_busy(self) -> bool:
        """True, solange ein Zyklus läuft oder ein gestarteter Zyklus noch aussteht."""
        return self._status.syncing or any(not t.done() for t in self._tasks)

    def trigger_if_idle(self) -> Optional[asyncio.Task]:
        """Wie trigger_now, startet aber keinen zweiten Zyklus neben einem laufenden."""
        if self.is_busy():
            debugLog(MODULE_NAME, "Sync trigger ignored: cycle already in flight")
            return None
        return self.trigger_now()

    # --- Zyklus ---

    async def sync_once(self) -> None:
        await self._refresh_online_status()
        self._refresh_credentials_status()
        self._emit()

        if not self._status.has_credentials:
            warnLog(MODULE_NAME, "Sync idle: missing remote credentials")
            return
        if not self._status.is_online:
            infoLog(MODULE_NAME, "Sync idle: offline")
            return

        self._status.syncing = True
        self._status.last_error = None
        self._emit()

        try:
            await self.push_pending()
            await self.pull_all()
            now = utc_now_iso()
            db = self.session_factory()
            try:
                crud_settings.set_last_sync_at(db, now)
            finally:
                db.close()
            self._status.last_sync_at = now
            infoLog(MODULE_NAME, "Sync cycle finished", details={"last_sync_at": now})
        except Exception as e:
            self._status.last_error = str(e) or type(e).__name__
            errorLog(MODULE_NAME, "Sync cycle error", details={"error": self._status.last_error})
        finally:
            self._status.syncing = False
            self._emit()

    async def _call_remote(self, coro):
        return await asyncio.wait_for(coro, timeout=self.remote_timeout)

    # --- Push ---

    async def push_pending(self) -> None:
        client = self.client_provider.get_client()
        if client is None:
            warnLog(MODULE_NAME, "Push skipped: remote client not configured")
            return

        db = self.session_factory()
        try:
            crud_outbox.purge_delivered(db)
            pending = crud_outbox.list_pending(db)
            self._status.pending_count = len(pending)
            self._emit()

            for entry in pending:
                entry_id = entry.id
                try:
                    await self._push_entry(db, client, entry)
                except SQLAlchemyError as e:
                    db.rollback()
                    errorLog(MODULE_NAME, f"Local outbox error for sync_queue id={entry_id}, continuing", details={"error": str(e)})
        finally:
            db.close()

        self._refresh_pending_count()
        self._emit()

    async def _push_entry(self, db: Session, client: RemoteClient, entry) -> None:
        entry_id = entry.id
        table = entry.table_name
        op_raw = (entry.operation or "").upper()
        record_id = entry.record_id
        details = {"queue_id": entry_id, "table": table, "operation": op_raw, "record_id": record_id}

        try:
            payload = json.loads(entry.payload)
        except (TypeError, ValueError) as e:
            errorLog(MODULE_NAME, f"Invalid JSON payload in sync_queue id={entry_id}", details={**details, "error": str(e)})
            attempts = crud_outbox.record_failure(db, entry_id, f"invalid payload: {e}")
            if attempts >= self.poison_max_attempts:
                crud_outbox.quarantine(db, entry_id, f"invalid payload: {e}")
            return

        try:
            operation = OperationType(op_raw)
        except ValueError:
            warnLog(MODULE_NAME, f"Unknown operation in sync_queue id={entry_id}", details=details)
            return

        descriptor = get_descriptor(table, self.registry)
        if descriptor.local_only:
            debugLog(MODULE_NAME, f"Local-only entry {entry_id} finalised without remote call", details=details)
            crud_outbox.complete_entry(db, entry_id)
            return

        if operation == OperationType.DELETE and not record_id:
            warnLog(MODULE_NAME, f"DELETE without record_id in sync_queue id={entry_id}", details=details)
            return

        try:
            if operation == OperationType.DELETE:
                await self._call_remote(client.delete(descriptor.remote_table, record_id))
                crud_outbox.complete_entry(db, entry_id)
                infoLog(MODULE_NAME, f"Pushed DELETE for {table}", details=details)
                return

            resolved = await self._call_remote(descriptor.resolve_foreign_keys(client, payload))
            if resolved is None:
                infoLog(MODULE_NAME, f"Deferred sync_queue id={entry_id}: unresolved reference", details=details)
                return

            row = descriptor.to_remote(resolved, operation, record_id)
            mode, conflict = descriptor.write_mode(operation)
            if mode == "upsert":
                await self._call_remote(client.upsert(descriptor.remote_table, row, on_conflict=conflict))
            else:
                await self._call_remote(client.insert(descriptor.remote_table, row))
        except (RemoteError, asyncio.TimeoutError) as e:
            message = str(e) or "remote call timed out"
            errorLog(MODULE_NAME, f"Push failed for {table} op {op_raw}", details={**details, "error": message})
            crud_outbox.record_failure(db, entry_id, message)
            return

        crud_outbox.complete_entry(db, entry_id, self._local_bookkeeping(descriptor, record_id, payload))
        infoLog(MODULE_NAME, f"Pushed {op_raw} for {table}", details=details)

    def _local_bookkeeping(self, descriptor: SyncDescriptor, record_id: Optional[str], payload: Dict[str, Any]):
        if not descriptor.local_table:
            return None
        natural_value = payload.get(descriptor.natural_key) if descriptor.natural_key else None

        def apply(db: Session) -> None:
            crud_local.mark_local_row_synced(
                db,
                descriptor.local_table,
                record_id=record_id,
                natural_key=descriptor.natural_key,
                natural_value=natural_value,
            )

        return apply

    # --- Pull ---

    async def pull_all(self) -> None:
        client = self.client_provider.get_client()
        if client is None:
            warnLog(MODULE_NAME, "Pull skipped: remote client not configured")
            return

        for table in self.pull_tables:
            try:
                rows = await self._call_remote(client.select_all(table))
            except (RemoteError, asyncio.TimeoutError) as e:
                errorLog(MODULE_NAME, f"Pull failed for table {table}", details={"error": str(e) or "timeout"})
                continue
            self.replace_table_data(table, rows or [])

    def replace_table_data(self, table: str, rows: List[Dict[str, Any]]) -> bool:
        db = self.session_factory()
        try:
            crud_local.replace_table_rows(
                db,
                table,
                rows,
                preserve_offline=table in OFFLINE_PRESERVED_TABLES,
                singleton=table in SINGLETON_TABLES,
            )
            return True
        except Exception as e:
            errorLog(MODULE_NAME, f"Replace table data failed for {table}", details={"error": str(e)})
            return False
        finally:
            db.close()
