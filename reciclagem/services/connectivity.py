import asyncio
from typing import Callable, List

from reciclagem.config import (
    CONNECTIVITY_PROBE_HOST,
    CONNECTIVITY_PROBE_PORT,
    CONNECTIVITY_PROBE_TIMEOUT_SECONDS,
)
from reciclagem.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "Connectivity"

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Liefert den aktuellen Online-Status und meldet Übergänge an Listener."""

    def __init__(self):
        self._listeners: List[ConnectivityListener] = []

    async def is_online(self) -> bool:
        raise NotImplementedError

    def add_listener(self, callback: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self, online: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                errorLog(MODULE_NAME, "Connectivity listener failed", details={"error": str(e)})


class StaticConnectivityMonitor(ConnectivityMonitor):
    """Status wird vom Host gesetzt, z.B. aus einem Plattform-Netzwerk-Plugin."""

    def __init__(self, online: bool = False):
        super().__init__()
        self._online = online

    async def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        infoLog(MODULE_NAME, f"Connectivity changed: {'online' if online else 'offline'}")
        self._notify(online)


class TcpConnectivityMonitor(ConnectivityMonitor):
    """Prüft die Erreichbarkeit über einen TCP-Verbindungsaufbau."""

    def __init__(
        self,
        host: str = CONNECTIVITY_PROBE_HOST,
        port: int = CONNECTIVITY_PROBE_PORT,
        timeout: float = CONNECTIVITY_PROBE_TIMEOUT_SECONDS,
    ):
        super().__init__()
        self.host = host
        self.port = port
        self.timeout = timeout
        self._last_online = None

    async def is_online(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
            writer.close()
            await writer.wait_closed()
            online = True
        except (OSError, asyncio.TimeoutError) as e:
            debugLog(MODULE_NAME, f"Probe to {self.host}:{self.port} failed", details={"error": str(e)})
            online = False

        if self._last_online is not None and online != self._last_online:
            self._notify(online)
        self._last_online = online
        return online
