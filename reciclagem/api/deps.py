from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import Iterator

from reciclagem.services.sync_service import SyncEngine
from reciclagem.utils.logger import errorLog


def get_sync_engine(request: Request) -> SyncEngine:
    """
    Liefert die beim Start erzeugte SyncEngine aus dem App-State.
    """
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        errorLog("deps", "Sync engine requested before application startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not initialized"
        )
    return engine


def get_db(request: Request) -> Iterator[Session]:
    """
    Lokale Datenbank-Session aus derselben Session-Factory, die auch die SyncEngine nutzt.
    """
    engine = get_sync_engine(request)
    db = engine.session_factory()
    try:
        yield db
    finally:
        db.close()
