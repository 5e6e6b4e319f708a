import time

from reciclagem.config import SYNC_RECONNECT_MIN_INTERVAL_SECONDS, SYNC_RECONNECT_TRIGGER
from reciclagem.utils.logger import debugLog, infoLog

MODULE_NAME = "TriggerPolicy"


class TriggerPolicy:
    """Entscheidet, ob ein Zustandswechsel einen Sync-Zyklus startet."""

    def on_connectivity_change(self, engine, online: bool) -> bool:
        return False

    def on_credentials_change(self, engine) -> bool:
        return False


class ManualTriggerPolicy(TriggerPolicy):
    """Standard: Zyklen laufen nur beim Start und auf ausdrücklichen Wunsch."""


class ReconnectTriggerPolicy(TriggerPolicy):
    """Startet einen Zyklus, wenn das Gerät mit Zugangsdaten wieder online kommt."""

    def __init__(self, min_interval_seconds: float = SYNC_RECONNECT_MIN_INTERVAL_SECONDS, clock=time.monotonic):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._last_trigger = None

    def _maybe_trigger(self, engine, reason: str) -> bool:
        status = engine.get_status()
        if not (status.is_online and status.has_credentials):
            return False
        now = self._clock()
        if self._last_trigger is not None and now - self._last_trigger < self.min_interval_seconds:
            debugLog(MODULE_NAME, f"Trigger suppressed ({reason}), last cycle too recent")
            return False
        if engine.trigger_if_idle() is None:
            return False
        self._last_trigger = now
        infoLog(MODULE_NAME, f"Starting sync cycle ({reason})")
        return True

    def on_connectivity_change(self, engine, online: bool) -> bool:
        if not online:
            return False
        return self._maybe_trigger(engine, "reconnect")

    def on_credentials_change(self, engine) -> bool:
        return self._maybe_trigger(engine, "credentials")


def default_trigger_policy() -> TriggerPolicy:
    if SYNC_RECONNECT_TRIGGER:
        return ReconnectTriggerPolicy()
    return ManualTriggerPolicy()
