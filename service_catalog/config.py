# service_catalog/config.py
import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n",
)

logger = logging.getLogger("catalog_editor")

# --- Editor tunables ---
AUTOSAVE_DEBOUNCE_MS    = int(os.getenv("AUTOSAVE_DEBOUNCE_MS", "2000"))
AUTOSAVE_MAX_RETRIES    = int(os.getenv("AUTOSAVE_MAX_RETRIES", "3"))
AUTOSAVE_RETRY_DELAY_MS = int(os.getenv("AUTOSAVE_RETRY_DELAY_MS", "1000"))
SYNC_INTERVAL_MS        = int(os.getenv("SYNC_INTERVAL_MS", "30000"))
MAX_TREE_DEPTH          = int(os.getenv("MAX_TREE_DEPTH", "3"))
COMMAND_HISTORY_LIMIT   = int(os.getenv("COMMAND_HISTORY_LIMIT", "50"))

# --- Storage ---
DB_HOST     = os.environ.get("DB_HOST", "localhost")
DB_PORT     = int(os.environ.get("DB_PORT", "5432"))
DB_NAME     = os.environ.get("DB_NAME", "service_catalog")
DB_USER     = os.environ.get("DB_USER", "postgres")
DB_PASSWORD = os.environ.get("DB_PASSWORD", "")

IS_LOCAL_DB = (DB_HOST == "localhost")


def get_database_url() -> str:
    """
    DATABASE_URL wins when set. Otherwise a local SQLite file is used for
    localhost, and a pg8000 Postgres URL is built for any other host.
    """
    url = os.getenv("DATABASE_URL", "")
    if url:
        return url
    if IS_LOCAL_DB:
        return "sqlite:///service_catalog.db"
    return f"postgresql+pg8000://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
