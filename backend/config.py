import logging
import os


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Settings read from the environment once, at import time."""

    DATABASE_URL = os.environ.get("STUDYTOOL_DATABASE_URL", "sqlite:///db.sqlite3")
    SQL_ECHO = _flag("STUDYTOOL_SQL_ECHO")
    LOG_LEVEL = os.environ.get("STUDYTOOL_LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS = [
        o.strip() for o in os.environ.get("STUDYTOOL_CORS_ORIGINS", "*").split(",") if o.strip()
    ]
    MAX_IMPORT_CARDS = int(os.environ.get("STUDYTOOL_MAX_IMPORT_CARDS", "10"))


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger(__name__).info("Logging configured at %s", level)
