from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from reciclagem.db.database import create_db_and_tables, get_db
from reciclagem.models.local_models import LOCAL_TABLES


def test_create_db_and_tables_creates_local_schema():
    """
    create_db_and_tables() auf einer eigenen In-Memory-Engine statt der Produktions-Datenbank.
    """
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    create_db_and_tables(bind=engine)

    table_names = set(inspect(engine).get_table_names())
    assert set(LOCAL_TABLES) <= table_names
    assert {"sync_queue", "sync_dead_letter", "app_settings"} <= table_names
    engine.dispose()


def test_sync_queue_columns(db_engine):
    columns = {c["name"] for c in inspect(db_engine).get_columns("sync_queue")}
    assert columns == {"id", "table_name", "operation", "record_id", "payload", "created_at", "synced", "attempts", "last_error"}


def test_report_views_have_surrogate_key(db_engine):
    inspector = inspect(db_engine)
    assert inspector.get_pk_constraint("estoque")["constrained_columns"] == ["local_rowid"]
    assert inspector.get_pk_constraint("material")["constrained_columns"] == ["id"]


def test_get_db_closes_session():
    generator = get_db()
    session = next(generator)
    assert session.is_active
    generator.close()
