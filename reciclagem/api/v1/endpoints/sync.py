from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Any, Dict, List

from reciclagem.api import deps
from reciclagem.crud import crud_outbox, crud_settings
from reciclagem.models.schemas import (
    RemoteCredentialsIn,
    RemoteCredentialsStatus,
    SyncStatus,
    TriggerResponse,
    dump_outbox,
)
from reciclagem.services.sync_service import SyncEngine
from reciclagem.utils.logger import infoLog, errorLog, debugLog

MODULE_NAME = "SyncAPI"

router = APIRouter()


@router.get("/status", response_model=SyncStatus, response_model_by_alias=True)
async def get_sync_status(engine: SyncEngine = Depends(deps.get_sync_engine)):
    """
    Aktueller Sync-Status (Kopie) der lokalen SyncEngine.
    """
    current = engine.get_status()
    debugLog(MODULE_NAME, "Sync status requested", details=current.model_dump())
    return current


@router.post("/trigger", response_model=TriggerResponse, response_model_by_alias=True)
async def trigger_sync(engine: SyncEngine = Depends(deps.get_sync_engine)):
    """
    Startet einen Sync-Zyklus im Hintergrund. Die Antwort enthält den Status zum Zeitpunkt des Auslösens;
    läuft bereits ein Zyklus, wird nichts gestartet (triggered=False).
    """
    task = engine.trigger_if_idle()
    if task is None:
        infoLog(MODULE_NAME, "Manual sync ignored: cycle already running")
    else:
        infoLog(MODULE_NAME, "Manual sync triggered")
    return TriggerResponse(triggered=task is not None, status=engine.get_status())


@router.put("/credentials", response_model=RemoteCredentialsStatus, response_model_by_alias=True)
async def save_credentials(
    credentials: RemoteCredentialsIn,
    engine: SyncEngine = Depends(deps.get_sync_engine),
    db: Session = Depends(deps.get_db),
):
    try:
        crud_settings.save_remote_settings(db, credentials.url, credentials.anon_key)
    except SQLAlchemyError as e:
        errorLog(MODULE_NAME, "Error saving remote credentials", details={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error saving credentials: {str(e)}"
        )
    engine.notify_credentials_changed()
    saved = crud_settings.get_remote_settings(db)
    return RemoteCredentialsStatus(has_credentials=engine.get_status().has_credentials, url=saved["url"])


@router.delete("/credentials", response_model=RemoteCredentialsStatus, response_model_by_alias=True)
async def clear_credentials(
    engine: SyncEngine = Depends(deps.get_sync_engine),
    db: Session = Depends(deps.get_db),
):
    crud_settings.clear_remote_settings(db)
    engine.notify_credentials_changed()
    return RemoteCredentialsStatus(has_credentials=False, url=None)


@router.get("/outbox")
async def get_outbox(db: Session = Depends(deps.get_db)) -> List[Dict[str, Any]]:
    """
    Ausstehende Outbox-Einträge in Push-Reihenfolge (Diagnose).
    """
    entries = crud_outbox.list_pending(db)
    debugLog(MODULE_NAME, f"Returning {len(entries)} pending outbox entries")
    return dump_outbox(entries)


@router.get("/dead-letter")
async def get_dead_letters(db: Session = Depends(deps.get_db)) -> List[Dict[str, Any]]:
    """
    In Quarantäne verschobene Outbox-Einträge.
    """
    return [
        {
            "id": d.id,
            "queue_id": d.queue_id,
            "table_name": d.table_name,
            "operation": d.operation,
            "record_id": d.record_id,
            "attempts": d.attempts,
            "error": d.error,
            "quarantined_at": d.quarantined_at,
        }
        for d in crud_outbox.list_dead_letters(db)
    ]
