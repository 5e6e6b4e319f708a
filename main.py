from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from reciclagem.config import CORS_ORIGINS
from reciclagem.db.database import SessionLocal, create_db_and_tables
from reciclagem.services.connectivity import TcpConnectivityMonitor
from reciclagem.services.sync_service import SyncEngine
from reciclagem.services.trigger_policy import default_trigger_policy
from reciclagem.websocket import endpoints as websocket_endpoints  # WebSocket-Router importieren
from reciclagem.websocket.connection_manager import manager as websocket_manager
from reciclagem.api.v1.endpoints import sync as sync_endpoints  # Sync-API-Router importieren
from reciclagem.utils.logger import infoLog, errorLog, debugLog

MODULE_NAME = "MainApp"


def build_sync_engine() -> SyncEngine:
    return SyncEngine(
        session_factory=SessionLocal,
        connectivity=TcpConnectivityMonitor(),
        trigger_policy=default_trigger_policy(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    infoLog(MODULE_NAME, "Application startup sequence initiated.")
    try:
        create_db_and_tables()
        infoLog(MODULE_NAME, "Database and tables creation process completed.")
    except Exception as e:
        errorLog(MODULE_NAME, "Error during database and table creation.", details={"error": str(e), "error_type": type(e).__name__})

    engine = getattr(app.state, "sync_engine", None) or build_sync_engine()
    app.state.sync_engine = engine
    unsubscribe = engine.subscribe(websocket_manager.publish_status)
    try:
        await engine.initialize()
        # Ein Zyklus beim Start, danach nur auf Anforderung
        engine.trigger_now()
    except Exception as e:
        errorLog(MODULE_NAME, "Error initializing sync engine - continuing with startup",
                 details={"error": str(e), "error_type": type(e).__name__})

    yield

    debugLog(MODULE_NAME, "Lifespan context manager exiting.")
    unsubscribe()
    engine.shutdown()
    infoLog(MODULE_NAME, "Application shutting down.")


app = FastAPI(
    title="Reciclagem Sync API",
    version="0.1.0",
    lifespan=lifespan
)
debugLog(MODULE_NAME, "FastAPI app instance created.", details={"title": app.title, "version": app.version})

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
debugLog(MODULE_NAME, "CORS middleware added to the application.", details={"origins": CORS_ORIGINS})


@app.get("/ping")
async def ping():
    debugLog(MODULE_NAME, "Ping endpoint '/ping' accessed.")
    return {"status": "online", "message": "Reciclagem sync is running"}


app.include_router(websocket_endpoints.router, prefix="/ws_reciclagem")  # WebSocket-Router einbinden
app.include_router(sync_endpoints.router, prefix="/api/v1/sync", tags=["sync"])  # Sync-API-Router einbinden
debugLog(MODULE_NAME, "Routers included.", details={"prefixes": ["/ws_reciclagem", "/api/v1/sync"]})

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
