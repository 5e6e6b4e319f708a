from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, insert, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reciclagem.crud import crud_settings
from reciclagem.crud.crud_outbox import build_entry
from reciclagem.models.local_models import LOCAL_ONLY_COLUMNS, LOCAL_TABLES
from reciclagem.models.schemas import ComandaItemIn, OperationType
from reciclagem.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "CrudLocal"

BOOKKEEPING_COLUMNS = ("data_sync", "origem_offline")


def get_local_table(table_name: str):
    table = LOCAL_TABLES.get(table_name)
    if table is None:
        raise KeyError(f"Unknown local table '{table_name}'")
    return table


def column_names(table) -> List[str]:
    return [c.name for c in table.columns]


def has_bookkeeping(table) -> bool:
    names = set(column_names(table))
    return all(col in names for col in BOOKKEEPING_COLUMNS)


def select_rows(db: Session, table_name: str) -> List[Dict[str, Any]]:
    table = get_local_table(table_name)
    return [dict(row._mapping) for row in db.execute(table.select()).all()]


def record_local_write(
    db: Session,
    table_name: str,
    values: Dict[str, Any],
    operation: OperationType = OperationType.INSERT,
    outbox_table: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Tuple[Optional[int], int]:
    """
    Schreibt eine lokale Mutation und den passenden Outbox-Eintrag in einer
    Transaktion. Lokale Zeilen werden mit origem_offline = 1 markiert.

    INSERT: legt die Zeile an, record_id ist die neue lokale id.
    UPDATE/DELETE: ``values["id"]`` identifiziert die Zeile.

    Gibt (lokale Zeilen-id, Outbox-id) zurück.
    """
    op = OperationType(operation)
    table = get_local_table(table_name)
    row_values = {k: v for k, v in values.items() if k in set(column_names(table))}
    if has_bookkeeping(table) and op != OperationType.DELETE:
        row_values["origem_offline"] = 1

    try:
        if op == OperationType.INSERT:
            row_values.pop("id", None)
            result = db.execute(insert(table).values(**row_values))
            row_id = result.inserted_primary_key[0] if result.inserted_primary_key else None
        else:
            row_id = values.get("id")
            if row_id is None:
                raise ValueError(f"{op.value} on '{table_name}' requires an id")
            if op == OperationType.UPDATE:
                changes = {k: v for k, v in row_values.items() if k != "id"}
                db.execute(update(table).where(table.c.id == row_id).values(**changes))
            else:
                db.execute(delete(table).where(table.c.id == row_id))

        if payload is None:
            payload = {k: v for k, v in values.items() if k not in BOOKKEEPING_COLUMNS}
            if row_id is not None and op != OperationType.DELETE:
                payload["id"] = row_id

        entry = build_entry(outbox_table or table_name, op, row_id, payload)
        db.add(entry)
        db.commit()
        debugLog(MODULE_NAME, f"Local {op.value} on '{table_name}' recorded", details={
            "row_id": row_id, "outbox_id": entry.id
        })
        return row_id, entry.id
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Error recording local {op.value} on '{table_name}'", details={"error": str(e)})
        raise


def mark_local_row_synced(
    db: Session,
    table_name: str,
    record_id: Optional[str] = None,
    natural_key: Optional[str] = None,
    natural_value: Any = None,
    synced_at: Optional[str] = None,
) -> int:
    """
    Setzt origem_offline = 0 und data_sync für die lokale Zeile. Ohne record_id
    wird über den natürlichen Schlüssel unter den Offline-Zeilen gesucht.

    Committet nicht; wird innerhalb von crud_outbox.complete_entry aufgerufen.
    """
    table = LOCAL_TABLES.get(table_name)
    if table is None or not has_bookkeeping(table):
        return 0

    now = synced_at or datetime.now(timezone.utc).isoformat()
    stmt = update(table).values(origem_offline=0, data_sync=now)
    if record_id not in (None, ""):
        stmt = stmt.where(table.c.id == record_id)
    elif natural_key and natural_value is not None and natural_key in table.c:
        stmt = stmt.where(table.c[natural_key] == natural_value).where(table.c.origem_offline == 1)
    else:
        return 0

    result = db.execute(stmt)
    return result.rowcount or 0


def _prepare_pulled_rows(table, rows: Iterable[Dict[str, Any]], table_name: str) -> List[Dict[str, Any]]:
    known = set(column_names(table)) - LOCAL_ONLY_COLUMNS
    prepared = []
    now = datetime.now(timezone.utc).isoformat()
    for row in rows:
        unknown = set(row.keys()) - known
        if unknown:
            debugLog(MODULE_NAME, f"Ignoring unknown columns for '{table_name}'", details={"columns": sorted(unknown)})
        clean = {k: v for k, v in row.items() if k in known}
        if not clean:
            continue
        if "origem_offline" in known:
            clean["origem_offline"] = 0
        if "data_sync" in known and clean.get("data_sync") is None:
            clean["data_sync"] = now
        prepared.append(clean)
    return prepared


def replace_table_rows(
    db: Session,
    table_name: str,
    rows: Sequence[Dict[str, Any]],
    preserve_offline: bool = False,
    singleton: bool = False,
) -> int:
    """
    Ersetzt den lokalen Inhalt einer Tabelle durch den Remote-Snapshot in einer
    Transaktion. Bei Fehlern bleibt der vorherige Inhalt erhalten.

    preserve_offline: nur Zeilen mit origem_offline = 0 löschen, Konflikte ignorieren.
    singleton: höchstens eine Zeile (die erste) mit updated_at = jetzt.
    """
    table = get_local_table(table_name)
    prepared = _prepare_pulled_rows(table, rows, table_name)
    if singleton:
        prepared = prepared[:1]
        if prepared and "updated_at" in table.c:
            prepared[0]["updated_at"] = datetime.now(timezone.utc).isoformat()

    try:
        if preserve_offline and "origem_offline" in table.c:
            db.execute(delete(table).where(table.c.origem_offline == 0))
        else:
            db.execute(delete(table))

        for row in prepared:
            if preserve_offline:
                db.execute(sqlite_insert(table).values(**row).on_conflict_do_nothing())
            else:
                db.execute(insert(table).values(**row))
        db.commit()
        infoLog(MODULE_NAME, f"Replaced local table '{table_name}'", details={"rows": len(prepared)})
        return len(prepared)
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Replace failed for local table '{table_name}'", details={"error": str(e)})
        raise


def enqueue_comanda(
    db: Session,
    tipo: str,
    itens: List[ComandaItemIn],
    total: float,
    criado_por: str,
    atualizado_por: str = "local-user",
    observacoes: Optional[str] = None,
    data: Optional[str] = None,
) -> str:
    """
    Reiht eine offline erfasste Comanda samt Items in die Outbox ein und
    vergibt den Code aus Präfix und Sequenz. Items verweisen über den Code
    auf die Comanda, die Remote-id wird beim Push aufgelöst.
    """
    now = data or datetime.now(timezone.utc).isoformat()
    try:
        prefix = crud_settings.get_comanda_prefix(db)
        seq = crud_settings.next_comanda_sequence(db, prefix, commit=False)
        codigo = crud_settings.build_comanda_codigo(prefix, seq)
        local_comanda_id = int(datetime.now(timezone.utc).timestamp() * 1000)

        db.add(build_entry("comanda", OperationType.INSERT, local_comanda_id, {
            "data": now,
            "codigo": codigo,
            "tipo": tipo,
            "observacoes": observacoes,
            "total": total,
            "criado_por": criado_por,
            "atualizado_por": atualizado_por,
        }))
        for item in itens:
            db.add(build_entry("item", OperationType.INSERT, "", {
                "data": item.data or now,
                "codigo": codigo,
                "material": item.material_id,
                "material_nome": item.material_nome,
                "categoria": item.categoria,
                "preco_kg": item.preco_kg,
                "kg_total": item.kg_total,
                "valor_total": item.valor_total,
                "criado_por": criado_por,
                "atualizado_por": atualizado_por,
            }))
        db.commit()
        infoLog(MODULE_NAME, f"Comanda {codigo} enqueued", details={"itens": len(itens), "tipo": tipo})
        return codigo
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, "Error enqueuing comanda", details={"tipo": tipo, "error": str(e)})
        raise
