import os
from dotenv import load_dotenv

# Basisverzeichnis des Projekts (enthält main.py und .env)
PROJECT_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Umgebungsvariablen aus der .env-Datei im Projekt-Root laden
dotenv_path = os.path.join(PROJECT_BASE_DIR, ".env")
load_dotenv(dotenv_path)

# Lokale SQLite-Datenbank (Spiegel des Remote-Backends + Outbox)
LOCAL_DB_NAME = os.getenv("LOCAL_DB_NAME", "reciclagem.db")
LOCAL_DB_DIR = os.getenv("LOCAL_DB_DIR", os.path.join(PROJECT_BASE_DIR, "data", "db"))
os.makedirs(LOCAL_DB_DIR, exist_ok=True)

LOCAL_DATABASE_URL = os.getenv(
    "LOCAL_DATABASE_URL", f"sqlite:///{os.path.join(LOCAL_DB_DIR, LOCAL_DB_NAME)}"
)

# Sync-Einstellungen
SYNC_REMOTE_TIMEOUT_SECONDS = float(os.getenv("SYNC_REMOTE_TIMEOUT_SECONDS", "30"))
SYNC_POISON_MAX_ATTEMPTS = int(os.getenv("SYNC_POISON_MAX_ATTEMPTS", "5"))
SYNC_RECONNECT_TRIGGER = os.getenv("SYNC_RECONNECT_TRIGGER", "false").lower() in ("1", "true", "yes")
SYNC_RECONNECT_MIN_INTERVAL_SECONDS = float(os.getenv("SYNC_RECONNECT_MIN_INTERVAL_SECONDS", "30"))

# Header, mit dem sich die App gegenüber dem Remote-Backend ausweist
REMOTE_APP_NAME = os.getenv("REMOTE_APP_NAME", "reciclagem-app")

# Erreichbarkeitsprüfung (nur wenn kein Plattform-Netzwerkmonitor vorhanden ist)
CONNECTIVITY_PROBE_HOST = os.getenv("CONNECTIVITY_PROBE_HOST", "1.1.1.1")
CONNECTIVITY_PROBE_PORT = int(os.getenv("CONNECTIVITY_PROBE_PORT", "443"))
CONNECTIVITY_PROBE_TIMEOUT_SECONDS = float(os.getenv("CONNECTIVITY_PROBE_TIMEOUT_SECONDS", "3"))

# Loglevel
LOGLEVEL = os.getenv("LOGLEVEL", "WARNING")

# Log-Pfad
LOG_PATH = os.getenv("LOG_PATH", os.path.join(PROJECT_BASE_DIR, "logs"))

# CORS Origins - kommagetrennte Liste von erlaubten Origins
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
CORS_ORIGINS = [origin.strip() for origin in CORS_ORIGINS]

if __name__ == "__main__":
    print(f"Project Base Directory: {PROJECT_BASE_DIR}")
    print(f"Local Database URL: {LOCAL_DATABASE_URL}")
    print(f"Remote Timeout: {SYNC_REMOTE_TIMEOUT_SECONDS}s")
    print(f"Log Path: {LOG_PATH}")
    print(f"CORS Origins: {CORS_ORIGINS}")
