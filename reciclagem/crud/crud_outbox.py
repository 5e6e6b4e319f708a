import json
from typing import Any, Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reciclagem.models.local_models import SyncDeadLetter, SyncQueueEntry, utc_now_iso
from reciclagem.models.schemas import OperationType
from reciclagem.utils.logger import debugLog, errorLog, infoLog, warnLog

MODULE_NAME = "CrudOutbox"


def build_entry(
    table_name: str,
    operation: OperationType,
    record_id: Optional[Any],
    payload: Any,
) -> SyncQueueEntry:
    """Erstellt einen (noch nicht gespeicherten) Outbox-Eintrag mit eingefrorenem Payload."""
    op = OperationType(operation)
    return SyncQueueEntry(
        table_name=table_name,
        operation=op.value,
        record_id=str(record_id) if record_id is not None else None,
        payload=json.dumps(payload, ensure_ascii=False),
        created_at=utc_now_iso(),
        synced=0,
        attempts=0,
    )


def enqueue(
    db: Session,
    table_name: str,
    operation: OperationType,
    record_id: Optional[Any],
    payload: Any,
) -> int:
    """Hängt eine Mutation an die Outbox an. Fehler werden nicht verschluckt."""
    entry = build_entry(table_name, operation, record_id, payload)
    try:
        db.add(entry)
        db.commit()
        db.refresh(entry)
        debugLog(MODULE_NAME, f"Enqueued outbox entry {entry.id}", details={
            "table": table_name, "operation": entry.operation, "record_id": entry.record_id
        })
        return entry.id
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, "Error enqueuing outbox entry", details={
            "table": table_name, "operation": str(operation), "error": str(e)
        })
        raise


def list_pending(db: Session) -> List[SyncQueueEntry]:
    """Alle noch nicht synchronisierten Einträge in FIFO-Reihenfolge."""
    return (
        db.query(SyncQueueEntry)
        .filter(SyncQueueEntry.synced == 0)
        .order_by(SyncQueueEntry.created_at.asc(), SyncQueueEntry.id.asc())
        .all()
    )


def count_pending(db: Session) -> int:
    return db.query(func.count(SyncQueueEntry.id)).filter(SyncQueueEntry.synced == 0).scalar() or 0


def get_entry(db: Session, entry_id: int) -> Optional[SyncQueueEntry]:
    return db.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry_id).first()


def mark_synced(db: Session, entry_id: int) -> None:
    try:
        db.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry_id).update(
            {SyncQueueEntry.synced: 1}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Error marking outbox entry {entry_id} as synced", details={"error": str(e)})
        raise


def remove(db: Session, entry_id: int) -> None:
    try:
        db.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Error removing outbox entry {entry_id}", details={"error": str(e)})
        raise


def complete_entry(
    db: Session,
    entry_id: int,
    local_update: Optional[Callable[[Session], None]] = None,
) -> None:
    """
    Schließt einen zugestellten Eintrag ab: lokales Bookkeeping, als synchronisiert
    markieren und löschen in einer Transaktion.

    Scheitert diese Transaktion, wird der Eintrag trotzdem finalisiert
    (markieren, dann löschen); nur das lokale Bookkeeping bleibt liegen.
    """
    try:
        if local_update is not None:
            local_update(db)
        db.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry_id).update(
            {SyncQueueEntry.synced: 1}, synchronize_session=False
        )
        db.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry_id).delete(synchronize_session=False)
        db.commit()
        debugLog(MODULE_NAME, f"Outbox entry {entry_id} delivered and removed")
        return
    except SQLAlchemyError as e:
        db.rollback()
        warnLog(MODULE_NAME, f"Local bookkeeping failed for outbox entry {entry_id}, finalising entry anyway",
                details={"error": str(e)})

    mark_synced(db, entry_id)
    remove(db, entry_id)


def record_failure(db: Session, entry_id: int, error: str) -> int:
    """Erhöht den Fehlversuchszähler und gibt den neuen Stand zurück."""
    try:
        entry = get_entry(db, entry_id)
        if entry is None:
            return 0
        entry.attempts = (entry.attempts or 0) + 1
        entry.last_error = error
        db.commit()
        return entry.attempts
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Error recording failure for outbox entry {entry_id}", details={"error": str(e)})
        raise


def quarantine(db: Session, entry_id: int, error: str) -> Optional[int]:
    """Verschiebt einen nicht zustellbaren Eintrag in die Dead-Letter-Tabelle."""
    try:
        entry = get_entry(db, entry_id)
        if entry is None:
            return None
        dead = SyncDeadLetter(
            queue_id=entry.id,
            table_name=entry.table_name,
            operation=entry.operation,
            record_id=entry.record_id,
            payload=entry.payload,
            created_at=entry.created_at,
            attempts=entry.attempts or 0,
            error=error,
            quarantined_at=utc_now_iso(),
        )
        db.add(dead)
        db.delete(entry)
        db.commit()
        db.refresh(dead)
        warnLog(MODULE_NAME, f"Outbox entry {entry_id} moved to dead letter", details={
            "table": dead.table_name, "operation": dead.operation, "attempts": dead.attempts, "error": error
        })
        return dead.id
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Error quarantining outbox entry {entry_id}", details={"error": str(e)})
        raise


def list_dead_letters(db: Session) -> List[SyncDeadLetter]:
    return db.query(SyncDeadLetter).order_by(SyncDeadLetter.id.asc()).all()


def purge_delivered(db: Session) -> int:
    """Entfernt Einträge, die als synchronisiert markiert, aber nie gelöscht wurden."""
    try:
        count = db.query(SyncQueueEntry).filter(SyncQueueEntry.synced == 1).delete(synchronize_session=False)
        db.commit()
        if count:
            infoLog(MODULE_NAME, f"Purged {count} delivered outbox entries left behind")
        return count
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, "Error purging delivered outbox entries", details={"error": str(e)})
        raise
