from fastapi import WebSocket
from typing import Optional, Set
import asyncio
from reciclagem.models.schemas import SyncStatus, SyncStatusMessage
from reciclagem.utils.logger import debugLog, infoLog, warnLog, errorLog

MODULE_NAME = "ConnectionManager"

# Starlette WebSocketState.DISCONNECTED
DISCONNECTED_STATE = 2


def _client_host(websocket: WebSocket) -> str:
    return websocket.client.host if websocket.client else "Unknown"


class ConnectionManager:
    """
    Verwaltet die WebSocket-Verbindungen der UI und verteilt Sync-Status-Updates.
    """
    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._tasks: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        debugLog(MODULE_NAME, "WebSocket connected", details={"client": _client_host(websocket)})

    def disconnect(self, websocket: WebSocket, reason: str = "Unknown"):
        if websocket in self.active_connections:
            self.active_connections.discard(websocket)
            infoLog(
                MODULE_NAME,
                f"WebSocket disconnected. Reason: {reason}",
                details={"client": _client_host(websocket), "reason": reason}
            )

    async def send_personal_json_message(self, message: dict, websocket: WebSocket):
        try:
            if websocket.application_state is not None and hasattr(websocket.application_state, 'value'):
                if websocket.application_state.value == DISCONNECTED_STATE:
                    warnLog(MODULE_NAME, "Cannot send JSON message - WebSocket is disconnected",
                            details={"client": _client_host(websocket)})
                    return
            await websocket.send_json(message)
        except RuntimeError as e:
            warnLog(MODULE_NAME, f"WebSocket state error sending JSON message: {e}",
                    details={"client": _client_host(websocket), "error": str(e)})
        except Exception as e:
            errorLog(MODULE_NAME, f"Unexpected error sending JSON message: {e}",
                     details={"client": _client_host(websocket), "error_type": type(e).__name__, "error": str(e)})

    async def broadcast_json_to_all(self, message: dict, exclude_websocket: Optional[WebSocket] = None):
        sent_to_count = 0
        failed_connections = []

        for connection in self.active_connections.copy():  # Kopie für sichere Iteration
            if exclude_websocket and connection == exclude_websocket:
                continue
            try:
                if connection.application_state is not None and hasattr(connection.application_state, 'value'):
                    if connection.application_state.value == DISCONNECTED_STATE:
                        failed_connections.append(connection)
                        continue
                await connection.send_json(message)
                sent_to_count += 1
            except RuntimeError as e:
                warnLog(MODULE_NAME, f"WebSocket state error broadcasting: {e}",
                        details={"client": _client_host(connection), "error": str(e)})
                failed_connections.append(connection)
            except Exception as e:
                errorLog(MODULE_NAME, f"Unexpected error broadcasting: {e}",
                         details={"client": _client_host(connection), "error_type": type(e).__name__, "error": str(e)})
                failed_connections.append(connection)

        for failed_connection in failed_connections:
            self.disconnect(failed_connection, reason="Broadcast failed - connection state error")

        debugLog(MODULE_NAME, "Broadcasted JSON message", details={
            "sent_to_count": sent_to_count, "failed_count": len(failed_connections)
        })

    def publish_status(self, status: SyncStatus):
        """Status-Listener für die SyncEngine: plant einen Broadcast im laufenden Event-Loop."""
        if not self.active_connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            debugLog(MODULE_NAME, "No running event loop, status broadcast skipped")
            return
        message = SyncStatusMessage(status=status).model_dump(by_alias=True)
        task = loop.create_task(self.broadcast_json_to_all(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def get_connection_stats(self) -> dict:
        return {"active_connections": len(self.active_connections)}


manager = ConnectionManager()
