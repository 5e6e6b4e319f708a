import logging
import os
import json
import enum
from datetime import datetime
from logging.handlers import RotatingFileHandler
# config.py zuerst laden, damit dotenv initialisiert ist
from ..config import LOG_PATH, LOGLEVEL

# --- Konfiguration ---
LOG_FILE_NAME = "reciclagem.log"
LOG_FILE_PATH = os.path.join(LOG_PATH, LOG_FILE_NAME)
ROOT_LOGGER_NAME = "reciclagem"

# Log-Format
LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger():
    """Konfiguriert den Logger für die gesamte Anwendung."""
    numeric_level = getattr(logging, LOGLEVEL.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False

    if not logger.handlers:
        try:
            os.makedirs(LOG_PATH, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE_PATH, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8'
            )
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"FEHLER: Konnte FileHandler für Logger nicht erstellen: {e}", flush=True)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


_logger_instance = setup_logger()


def json_default(obj):
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    try:
        return str(obj)
    except Exception:
        return f"<unserializable_object_type_{type(obj).__name__}>"


def _log(level: int, module_name: str, message: str, details: object = None):
    """Interne Log-Funktion, die Nachrichten formatiert und an den Logger sendet."""
    module_specific_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")
    if not module_specific_logger.isEnabledFor(level):
        return

    log_message = message
    if details is not None:
        try:
            details_str = json.dumps(details, ensure_ascii=False, default=json_default)
            log_message = f"{message} | Details: {details_str}"
        except (TypeError, ValueError) as e:
            _logger_instance.error(f"Failed to serialize log details for module {module_name}: {e}")
            log_message = f"{message} | Details (nicht serialisierbar)"

    module_specific_logger.log(level, log_message)


def debugLog(module_name: str, message: str, details: object = None):
    _log(logging.DEBUG, module_name, message, details)


def infoLog(module_name: str, message: str, details: object = None):
    _log(logging.INFO, module_name, message, details)


def warnLog(module_name: str, message: str, details: object = None):
    _log(logging.WARNING, module_name, message, details)


def errorLog(module_name: str, message: str, details: object = None):
    _log(logging.ERROR, module_name, message, details)
