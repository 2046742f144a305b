import os

DB = {
    "host": os.getenv("DREAM_DB_HOST", "localhost"),
    "port": int(os.getenv("DREAM_DB_PORT", "5432")),
    "dbname": os.getenv("DREAM_DB_NAME", "dream_journal"),
    "user": os.getenv("DREAM_DB_USER", "dream"),
    "password": os.getenv("DREAM_DB_PASSWORD", "dreampassword"),
}

API_TITLE = "DreamLink API"
API_VERSION = "0.1.0"

OPENAI_URL = os.getenv("OPENAI_URL", "https://api.openai.com/v1/chat/completions")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini-2024-07-18")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "500"))
OPENAI_TIMEOUT_SEC = float(os.getenv("OPENAI_TIMEOUT_SEC", "60"))
LLM_SLOW_MS = int(os.getenv("LLM_SLOW_MS", "8000"))

EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "logs/events.log")
LOG_ID_SALT = os.getenv("LOG_ID_SALT", "")

POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "30"))
POLL_INTERVAL_MS = int(os.getenv("POLL_INTERVAL_MS", "2000"))
