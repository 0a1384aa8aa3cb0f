import os

# --- CATALOG TRANSPORT CONSTANTS ---
CATALOG_URL = os.getenv("ELIM_CATALOG_URL", "").strip()
CATALOG_PATH = os.getenv("ELIM_CATALOG_PATH", "").strip()
CATALOG_API_KEY = os.getenv("ELIM_CATALOG_API_KEY", "").strip()
CATALOG_TIMEOUT_SEC = int(os.getenv("ELIM_CATALOG_TIMEOUT", "15"))
CATALOG_MAX_RETRIES = int(os.getenv("ELIM_CATALOG_RETRIES", "2"))
CATALOG_RETRY_BACKOFF_SEC = float(os.getenv("ELIM_CATALOG_RETRY_BACKOFF", "1.0"))
CATALOG_DEBUG = os.getenv("ELIM_CATALOG_DEBUG", "0") == "1"

OUTCOME_LOG_PATH = os.getenv("ELIM_OUTCOME_LOG", os.path.join("data", "session_outcomes.jsonl"))
