"""
Registry der synchronisierbaren Entitäten.

Jeder Deskriptor beschreibt, wie ein Outbox-Eintrag einer Tabelle in das
Remote-Schema übersetzt und geschrieben wird. Der Push-Loop dispatcht nur
noch über diese Registry.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

from reciclagem.models.schemas import OperationType
from reciclagem.utils.logger import debugLog

MODULE_NAME = "SyncRegistry"

BOOKKEEPING_FIELDS = frozenset({"data_sync", "origem_offline"})


def is_numeric_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    if isinstance(value, str):
        return value.strip().isdigit()
    return False


@dataclass(frozen=True)
class SyncDescriptor:
    outbox_table: str
    remote_table: str
    local_table: Optional[str] = None
    conflict_key: Optional[str] = None  # Upsert-Konfliktspalte für INSERT und UPDATE
    natural_key: Optional[str] = None  # lokales Matching, wenn record_id leer ist
    local_only: bool = False  # nie pushen, nur finalisieren
    drop_id_on_insert: bool = True
    always_drop: FrozenSet[str] = field(default_factory=frozenset)
    bool_fields: FrozenSet[str] = field(default_factory=frozenset)

    def to_remote(self, payload: Dict[str, Any], operation: OperationType, record_id: Optional[str] = None) -> Dict[str, Any]:
        row = {
            k: v for k, v in payload.items()
            if k not in BOOKKEEPING_FIELDS and k not in self.always_drop
        }
        for name in self.bool_fields:
            if name in row and row[name] is not None:
                row[name] = bool(row[name])
        if operation == OperationType.INSERT and self.drop_id_on_insert:
            row.pop("id", None)
        elif operation == OperationType.UPDATE and "id" not in row and is_numeric_id(record_id):
            row["id"] = int(record_id)
        return row

    def write_mode(self, operation: OperationType) -> Tuple[str, Optional[str]]:
        """('upsert', Konfliktspalte) oder ('insert', None)."""
        if self.conflict_key:
            return "upsert", self.conflict_key
        if operation == OperationType.UPDATE:
            return "upsert", "id"
        return "insert", None

    async def resolve_foreign_keys(self, client, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Gibt den Payload mit aufgelösten Referenzen zurück oder None (zurückgestellt)."""
        return payload


@dataclass(frozen=True)
class ItemDescriptor(SyncDescriptor):
    """Comanda-Item: comanda/material werden erst beim Push auf Remote-ids aufgelöst."""

    async def _resolve(self, client, value: Any, table: str, column: str, lookup: Any) -> Optional[int]:
        if is_numeric_id(value):
            return int(value)
        if lookup in (None, ""):
            return None
        found = await client.find_one(table, column, lookup)
        if found and is_numeric_id(found.get("id")):
            return int(found["id"])
        return None

    async def resolve_foreign_keys(self, client, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        comanda_id = await self._resolve(client, payload.get("comanda"), "comanda", "codigo", payload.get("codigo"))
        if comanda_id is None:
            debugLog(MODULE_NAME, "Item comanda reference unresolved", details={"codigo": payload.get("codigo")})
            return None
        material_id = await self._resolve(client, payload.get("material"), "material", "nome", payload.get("material_nome"))
        if material_id is None:
            debugLog(MODULE_NAME, "Item material reference unresolved", details={"material_nome": payload.get("material_nome")})
            return None
        resolved = dict(payload)
        resolved["comanda"] = comanda_id
        resolved["material"] = material_id
        return resolved


DEFAULT_REGISTRY: Dict[str, SyncDescriptor] = {
    "material": SyncDescriptor(
        outbox_table="material", remote_table="material", local_table="material",
        conflict_key="nome", natural_key="nome",
    ),
    # lokale id == Remote-id, INSERT und UPDATE sind Upserts auf id
    "vale_false": SyncDescriptor(
        outbox_table="vale_false", remote_table="vale", local_table="vale_false",
        conflict_key="id", drop_id_on_insert=False,
        bool_fields=frozenset({"status"}),
    ),
    "pendencia_false": SyncDescriptor(
        outbox_table="pendencia_false", remote_table="pendencia", local_table="pendencia_false",
        conflict_key="id", drop_id_on_insert=False,
        bool_fields=frozenset({"status"}),
    ),
    "despesa": SyncDescriptor(
        outbox_table="despesa", remote_table="despesa", local_table="despesa_mes",
        conflict_key="id", drop_id_on_insert=False,
    ),
    # record_id ist synthetisch (fech_...), Payload geht unverändert raus
    "fechamento": SyncDescriptor(
        outbox_table="fechamento", remote_table="fechamento", drop_id_on_insert=False,
    ),
    "comanda": SyncDescriptor(
        outbox_table="comanda", remote_table="comanda", conflict_key="codigo", natural_key="codigo",
        always_drop=frozenset({"id"}),
    ),
    "item": ItemDescriptor(
        outbox_table="item", remote_table="item",
        always_drop=frozenset({"codigo", "material_nome", "categoria", "tipo"}),
    ),
    "ultimas_20": SyncDescriptor(
        outbox_table="ultimas_20", remote_table="ultimas_20", local_table="ultimas_20", local_only=True,
    ),
}


def get_descriptor(table_name: str, registry: Optional[Dict[str, SyncDescriptor]] = None) -> SyncDescriptor:
    """Deskriptor für eine Outbox-Tabelle; unbekannte Tabellen werden 1:1 durchgereicht."""
    registry = registry if registry is not None else DEFAULT_REGISTRY
    descriptor = registry.get(table_name)
    if descriptor is None:
        descriptor = SyncDescriptor(outbox_table=table_name, remote_table=table_name, drop_id_on_insert=False)
    return descriptor


# Tabellen/Views, die beim Pull vollständig ersetzt werden
PULL_TABLES = [
    "material",
    "vale_false",
    "pendencia_false",
    "comanda_20",
    "fechamento_mes",
    "relatorio_diario",
    "relatorio_mensal",
    "relatorio_anual",
    "compra_por_material_diario",
    "compra_por_material_mes",
    "compra_por_material_anual",
    "venda_por_material_diario",
    "venda_por_material_mes",
    "venda_por_material_anual",
    "ultimas_20",
    "estoque",
    "despesa_mes",
    "calculo_fechamento",
    "resumo_estoque_financeiro",
]

# Offline erstellbare Tabellen: ausstehende lokale Zeilen überleben den Pull
OFFLINE_PRESERVED_TABLES = frozenset({"material"})

# Aggregate mit höchstens einer Zeile
SINGLETON_TABLES = frozenset({"resumo_estoque_financeiro"})
