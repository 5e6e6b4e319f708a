from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reciclagem.models.local_models import AppSetting
from reciclagem.utils.logger import debugLog, errorLog, infoLog

MODULE_NAME = "CrudSettings"

KEY_SUPABASE_URL = "supabase.url"
KEY_SUPABASE_ANON_KEY = "supabase.anonKey"
KEY_LAST_SYNC_AT = "sync.lastSyncAt"
KEY_COMANDA_PREFIX = "comanda.prefix"
COMANDA_COUNTER_PREFIX = "comanda.counter."


def get_setting(db: Session, key: str) -> Optional[str]:
    row = db.query(AppSetting).filter(AppSetting.key == key).first()
    return row.value if row else None


def set_setting(db: Session, key: str, value: Optional[str], commit: bool = True) -> None:
    """Upsert eines Settings-Werts."""
    try:
        row = db.query(AppSetting).filter(AppSetting.key == key).first()
        if row is None:
            row = AppSetting(key=key, value=value)
            db.add(row)
        else:
            row.value = value
            row.updated_at = datetime.now(timezone.utc)
        if commit:
            db.commit()
        else:
            db.flush()
        debugLog(MODULE_NAME, f"Setting '{key}' gespeichert")
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Fehler beim Speichern von Setting '{key}'", details={"error": str(e)})
        raise


def delete_setting(db: Session, key: str) -> None:
    try:
        db.query(AppSetting).filter(AppSetting.key == key).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        errorLog(MODULE_NAME, f"Fehler beim Löschen von Setting '{key}'", details={"error": str(e)})
        raise


# Remote-Zugangsdaten
def get_remote_settings(db: Session) -> Dict[str, Optional[str]]:
    return {
        "url": get_setting(db, KEY_SUPABASE_URL),
        "anon_key": get_setting(db, KEY_SUPABASE_ANON_KEY),
    }


def has_remote_credentials(db: Session) -> bool:
    creds = get_remote_settings(db)
    return bool(creds["url"]) and bool(creds["anon_key"])


def save_remote_settings(db: Session, url: str, anon_key: str) -> None:
    set_setting(db, KEY_SUPABASE_URL, (url or "").strip(), commit=False)
    set_setting(db, KEY_SUPABASE_ANON_KEY, (anon_key or "").strip(), commit=False)
    db.commit()
    infoLog(MODULE_NAME, "Remote-Zugangsdaten gespeichert")


def clear_remote_settings(db: Session) -> None:
    delete_setting(db, KEY_SUPABASE_URL)
    delete_setting(db, KEY_SUPABASE_ANON_KEY)
    infoLog(MODULE_NAME, "Remote-Zugangsdaten entfernt")


# Letzte Synchronisation
def get_last_sync_at(db: Session) -> Optional[str]:
    return get_setting(db, KEY_LAST_SYNC_AT)


def set_last_sync_at(db: Session, iso: str) -> None:
    set_setting(db, KEY_LAST_SYNC_AT, iso)


# Comanda-Codes
def get_comanda_prefix(db: Session) -> str:
    return get_setting(db, KEY_COMANDA_PREFIX) or ""


def set_comanda_prefix(db: Session, prefix: str) -> str:
    normalized = (prefix or "").strip().upper()
    set_setting(db, KEY_COMANDA_PREFIX, normalized)
    return normalized


def _counter_key(prefix: str) -> str:
    return f"{COMANDA_COUNTER_PREFIX}{prefix or ''}"


def peek_comanda_sequence(db: Session, prefix: str) -> int:
    """Zuletzt vergebene Sequenznummer für den Präfix (0 = noch keine)."""
    raw = get_setting(db, _counter_key(prefix))
    try:
        current = int(raw) if raw else 0
    except ValueError:
        return 0
    return current if current > 0 else 0


def next_comanda_sequence(db: Session, prefix: str, commit: bool = True) -> int:
    seq = peek_comanda_sequence(db, prefix) + 1
    set_setting(db, _counter_key(prefix), str(seq), commit=commit)
    return seq


def build_comanda_codigo(prefix: str, seq: int) -> str:
    return f"{prefix}-{seq}" if prefix else str(seq)
