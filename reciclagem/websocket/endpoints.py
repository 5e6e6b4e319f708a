from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import json

from reciclagem.models.schemas import SyncStatusMessage
from reciclagem.websocket.connection_manager import manager
from reciclagem.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "WebSocketEndpoints"

router = APIRouter()


@router.websocket("/status")
async def status_websocket(websocket: WebSocket):
    """
    Schickt beim Verbinden den aktuellen Sync-Status und danach jede Änderung.
    Clients können {"type": "trigger_sync"} senden, um einen Zyklus zu starten.
    """
    engine = getattr(websocket.app.state, "sync_engine", None)
    await manager.connect(websocket)
    try:
        if engine is not None:
            initial = SyncStatusMessage(status=engine.get_status())
            await manager.send_personal_json_message(initial.model_dump(by_alias=True), websocket)

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                debugLog(MODULE_NAME, "Ignoring non-JSON websocket message", details={"length": len(data)})
                continue

            if isinstance(message, dict) and message.get("type") == "trigger_sync" and engine is not None:
                if engine.trigger_if_idle() is not None:
                    infoLog(MODULE_NAME, "Sync triggered via websocket")
            elif isinstance(message, dict) and message.get("type") == "ping":
                await manager.send_personal_json_message({"type": "pong", "timestamp": message.get("timestamp")}, websocket)
    except WebSocketDisconnect:
        manager.disconnect(websocket, reason="Client disconnected")
    except Exception as e:
        errorLog(
            MODULE_NAME,
            "Error in status websocket connection",
            details={"client_host": websocket.client.host if websocket.client else "Unknown", "error": str(e), "error_type": type(e).__name__}
        )
        manager.disconnect(websocket, reason="Exception")
