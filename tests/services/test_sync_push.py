import asyncio
import json

from sqlalchemy.exc import OperationalError

from reciclagem.crud import crud_local, crud_outbox, crud_settings
from reciclagem.models.local_models import Material, SyncDeadLetter, SyncQueueEntry, ValeFalse
from reciclagem.models.schemas import ComandaItemIn, OperationType
from reciclagem.services.remote_client import RemoteError


def _pending(session_factory):
    db = session_factory()
    try:
        return [(e.table_name, e.operation, e.record_id, e.attempts, e.last_error) for e in crud_outbox.list_pending(db)]
    finally:
        db.close()


def _material_row(nome, origem_offline=1):
    return Material(
        data="2025-01-01", nome=nome, categoria="Papel", preco_compra=0.5, preco_venda=1.0,
        criado_por="caixa", atualizado_por="caixa", origem_offline=origem_offline,
    )


def test_material_insert_with_empty_record_id(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    db.add(_material_row("Papelão"))
    db.commit()
    crud_outbox.enqueue(db, "material", OperationType.INSERT, "", {"nome": "Papelão", "preco_compra": 0.5, "preco_venda": 1.0})

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.writes() == [("upsert", "material", {"nome": "Papelão", "preco_compra": 0.5, "preco_venda": 1.0})]
    assert fake_remote.tables["material"][0]["id"] is not None
    assert _pending(session_factory) == []

    check = session_factory()
    material = check.query(Material).filter(Material.nome == "Papelão").one()
    assert material.origem_offline == 0
    assert material.data_sync is not None
    check.close()


def test_pushing_same_entry_twice_leaves_one_remote_row(with_credentials, sync_engine, fake_remote):
    db = with_credentials
    payload = {"nome": "Cobre", "preco_compra": 30.0, "preco_venda": 35.0}
    crud_outbox.enqueue(db, "material", OperationType.INSERT, "", payload)
    asyncio.run(sync_engine.push_pending())

    # Wiederholte Zustellung nach einem Absturz vor dem Löschen
    crud_outbox.enqueue(db, "material", OperationType.INSERT, "", payload)
    asyncio.run(sync_engine.push_pending())

    cobre = [r for r in fake_remote.tables["material"] if r["nome"] == "Cobre"]
    assert len(cobre) == 1


def test_fifo_with_deferred_middle_entry(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    crud_outbox.enqueue(db, "material", OperationType.INSERT, "", {"nome": "Cobre"})
    crud_outbox.enqueue(db, "item", OperationType.INSERT, "", {"codigo": "TR-9", "material": None, "material_nome": "Cobre", "kg_total": 1.0})
    crud_outbox.enqueue(db, "vale_false", OperationType.INSERT, "5", {"id": 5, "status": 0, "nome": "Joana", "valor": 10.0})

    asyncio.run(sync_engine.push_pending())

    assert [(c[0], c[1]) for c in fake_remote.calls] == [
        ("upsert", "material"),
        ("find_one", "comanda"),
        ("upsert", "vale"),
    ]
    assert [p[0] for p in _pending(session_factory)] == ["item"]
    assert sync_engine.get_status().pending_count == 1


def test_item_deferred_until_parent_comanda_exists(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    crud_outbox.enqueue(db, "item", OperationType.INSERT, "", {
        "codigo": "TR-7", "material": None, "material_nome": "Cobre", "preco_kg": 30.0, "kg_total": 2.0, "valor_total": 60.0,
    })

    asyncio.run(sync_engine.push_pending())

    assert [p[0] for p in _pending(session_factory)] == ["item"]
    assert not any(c[0] == "insert" and c[1] == "item" for c in fake_remote.calls)
    # zurückgestellt ist kein Fehlversuch
    assert _pending(session_factory)[0][3] == 0


def test_comanda_and_items_resolve_in_one_cycle(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    fake_remote.tables["material"] = [{"id": 7, "nome": "Cobre"}]
    crud_settings.set_comanda_prefix(db, "TR")
    codigo = crud_local.enqueue_comanda(
        db, "compra",
        [ComandaItemIn(material_nome="Cobre", preco_kg=30.0, kg_total=2.0, valor_total=60.0)],
        total=60.0, criado_por="Caixa 1",
    )

    asyncio.run(sync_engine.push_pending())

    assert _pending(session_factory) == []
    comanda = fake_remote.tables["comanda"][0]
    assert comanda["codigo"] == codigo
    item = fake_remote.tables["item"][0]
    assert item["comanda"] == comanda["id"]
    assert item["material"] == 7
    assert "codigo" not in item
    assert "material_nome" not in item


def test_remote_failure_keeps_entry_and_counts_attempt(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    fake_remote.fail[("upsert", "vale")] = RemoteError("vale", "upsert", "HTTP 500")
    crud_outbox.enqueue(db, "vale_false", OperationType.INSERT, "1", {"id": 1, "status": 1, "nome": "Ana", "valor": 5.0})
    crud_outbox.enqueue(db, "despesa", OperationType.INSERT, "2", {"id": 2, "descricao": "Luz", "valor": 90.0})

    asyncio.run(sync_engine.push_pending())

    pending = _pending(session_factory)
    assert [p[0] for p in pending] == ["vale_false"]
    assert pending[0][3] == 1
    assert "HTTP 500" in pending[0][4]
    assert fake_remote.tables["despesa"][0]["descricao"] == "Luz"


def test_remote_timeout_is_a_transient_failure(with_credentials, make_engine, fake_remote, session_factory):
    db = with_credentials
    fake_remote.delay = 0.2
    engine = make_engine(remote_timeout=0.05)
    crud_outbox.enqueue(db, "despesa", OperationType.INSERT, "2", {"id": 2, "descricao": "Luz", "valor": 90.0})

    asyncio.run(engine.push_pending())

    pending = _pending(session_factory)
    assert len(pending) == 1
    assert pending[0][3] == 1


def test_malformed_payload_is_quarantined_after_limit(with_credentials, make_engine, fake_remote, session_factory):
    db = with_credentials
    engine = make_engine(poison_max_attempts=2)
    db.add(SyncQueueEntry(table_name="material", operation="INSERT", record_id="", payload="{not json", created_at="2025-01-01T00:00:00+00:00"))
    db.commit()

    asyncio.run(engine.push_pending())
    assert _pending(session_factory)[0][3] == 1

    asyncio.run(engine.push_pending())
    assert _pending(session_factory) == []

    check = session_factory()
    dead = check.query(SyncDeadLetter).one()
    assert dead.payload == "{not json"
    assert dead.attempts == 2
    check.close()
    assert fake_remote.writes() == []


def test_delete_without_record_id_is_skipped(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    crud_outbox.enqueue(db, "vale_false", OperationType.DELETE, "", {})

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.writes() == []
    assert len(_pending(session_factory)) == 1


def test_delete_uses_remote_table(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    fake_remote.tables["pendencia"] = [{"id": 3, "nome": "Carlos"}]
    crud_outbox.enqueue(db, "pendencia_false", OperationType.DELETE, "3", {"id": 3})

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.writes() == [("delete", "pendencia", {"id": "3"})]
    assert fake_remote.tables["pendencia"] == []
    assert _pending(session_factory) == []


def test_local_only_entries_are_finalised_without_remote_call(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    crud_outbox.enqueue(db, "ultimas_20", OperationType.INSERT, "1", {"id": 1})

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.calls == []
    assert _pending(session_factory) == []


def test_update_marks_local_row_by_record_id(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    row_id, _ = crud_local.record_local_write(db, "vale_false", {
        "data": "2025-01-01", "status": 0, "nome": "Ana", "valor": 5.0, "criado_por": "c", "atualizado_por": "c",
    })
    crud_local.record_local_write(db, "vale_false", {"id": row_id, "status": 1}, operation=OperationType.UPDATE)

    asyncio.run(sync_engine.push_pending())

    writes = fake_remote.writes()
    assert [(w[0], w[1]) for w in writes] == [("upsert", "vale"), ("upsert", "vale")]
    assert writes[0][2]["id"] == row_id
    assert writes[1][2]["id"] == row_id

    # INSERT und UPDATE treffen dieselbe Remote-Zeile
    assert len(fake_remote.tables["vale"]) == 1
    remote = fake_remote.tables["vale"][0]
    assert remote["id"] == row_id
    assert remote["nome"] == "Ana"
    assert remote["status"] is True

    check = session_factory()
    vale = check.query(ValeFalse).filter(ValeFalse.id == row_id).one()
    assert vale.origem_offline == 0
    check.close()


def test_push_skipped_without_credentials(sync_engine, fake_remote, db_session):
    crud_outbox.enqueue(db_session, "despesa", OperationType.INSERT, "2", {"id": 2})

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.calls == []
    assert crud_outbox.count_pending(db_session) == 1


def test_delivered_leftovers_are_not_pushed_again(with_credentials, sync_engine, fake_remote, session_factory):
    db = with_credentials
    entry_id = crud_outbox.enqueue(db, "despesa", OperationType.INSERT, "2", {"id": 2, "descricao": "Luz"})
    crud_outbox.mark_synced(db, entry_id)

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.calls == []
    check = session_factory()
    assert check.query(SyncQueueEntry).count() == 0
    check.close()


def test_unknown_table_is_pushed_passthrough(with_credentials, sync_engine, fake_remote):
    db = with_credentials
    crud_outbox.enqueue(db, "cliente", OperationType.INSERT, "", {"nome": "Loja X", "origem_offline": 1})

    asyncio.run(sync_engine.push_pending())

    assert fake_remote.writes() == [("insert", "cliente", {"nome": "Loja X"})]


def test_payload_is_sent_as_enqueued(with_credentials, sync_engine, fake_remote):
    db = with_credentials
    crud_outbox.enqueue(db, "fechamento", OperationType.INSERT, "fech_1700000000", {"id": "fech_1700000000", "lucro": 12.5})

    asyncio.run(sync_engine.push_pending())

    sent = fake_remote.writes()[0][2]
    assert json.dumps(sent, sort_keys=True) == json.dumps({"id": "fech_1700000000", "lucro": 12.5}, sort_keys=True)


def test_local_outbox_error_does_not_block_later_entries(with_credentials, sync_engine, fake_remote, session_factory, monkeypatch):
    db = with_credentials
    fake_remote.fail[("upsert", "vale")] = RemoteError("vale", "upsert", "HTTP 500")
    crud_outbox.enqueue(db, "vale_false", OperationType.INSERT, "1", {"id": 1, "status": 0, "nome": "Ana", "valor": 5.0})
    crud_outbox.enqueue(db, "despesa", OperationType.INSERT, "2", {"id": 2, "descricao": "Luz", "valor": 90.0})

    def locked(*args, **kwargs):
        raise OperationalError("UPDATE sync_queue", {}, Exception("database is locked"))

    monkeypatch.setattr(crud_outbox, "record_failure", locked)

    asyncio.run(sync_engine.push_pending())

    pending = _pending(session_factory)
    assert [p[0] for p in pending] == ["vale_false"]
    assert pending[0][3] == 0
    assert [r["id"] for r in fake_remote.tables["despesa"]] == [2]
