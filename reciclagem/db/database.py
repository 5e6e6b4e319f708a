from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from ..config import LOCAL_DATABASE_URL
from ..utils.logger import infoLog, errorLog
from ..models.local_models import LocalBase

MODULE_NAME = "db.database"

engine = create_engine(
    LOCAL_DATABASE_URL, connect_args={"check_same_thread": False}
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_db_and_tables(bind=None):
    """Legt alle lokalen Tabellen an (Entity-Spiegel, Outbox, Dead-Letter, Settings)."""
    target = bind if bind is not None else engine
    try:
        LocalBase.metadata.create_all(bind=target)
        infoLog(MODULE_NAME, "Local tables created (if missing)", {"db_url": str(target.url)})
    except Exception as e:
        errorLog(MODULE_NAME, f"Failed to create local tables: {str(e)}", {"error": str(e)})
        raise


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


if __name__ == "__main__":
    print(f"Datenbank wird erstellt unter: {LOCAL_DATABASE_URL}")
    create_db_and_tables()
    print("Lokale Datenbank und Tabellen erfolgreich erstellt (falls nicht vorhanden).")
