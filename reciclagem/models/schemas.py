import enum
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional


class OperationType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Sync-Status, wie er an UI-Beobachter verteilt wird
class SyncStatus(BaseModel):
    is_online: bool = False
    has_credentials: bool = False
    syncing: bool = False
    last_sync_at: Optional[str] = None
    pending_count: int = 0
    last_error: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# Outbox-Eintrag für die Diagnose-Ansicht
class OutboxEntryRead(BaseModel):
    id: int
    table_name: str
    operation: OperationType
    record_id: Optional[str] = None
    payload: str
    created_at: str
    synced: int
    attempts: int = 0
    last_error: Optional[str] = None

    class Config:
        from_attributes = True


class RemoteCredentialsIn(BaseModel):
    url: str = Field(..., min_length=1)
    anon_key: str = Field(..., min_length=1, alias="anonKey")

    class Config:
        populate_by_name = True


class RemoteCredentialsStatus(BaseModel):
    has_credentials: bool
    url: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ComandaItemIn(BaseModel):
    """Eine Position einer offline erfassten Comanda."""
    material_nome: str
    material_id: Optional[int] = None
    categoria: Optional[str] = None
    preco_kg: float
    kg_total: float
    valor_total: float
    data: Optional[str] = None


class SyncStatusMessage(BaseModel):
    """WebSocket-Nachricht mit dem aktuellen Sync-Status."""
    type: Literal["sync_status"] = "sync_status"
    status: SyncStatus


class TriggerResponse(BaseModel):
    triggered: bool
    status: SyncStatus


def dump_outbox(entries: List[Any]) -> List[Dict[str, Any]]:
    return [OutboxEntryRead.model_validate(e).model_dump(mode="json") for e in entries]
