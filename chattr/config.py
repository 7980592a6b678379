import os
import logging

from dotenv import load_dotenv

# ---------------------
# Env & constants
# ---------------------
load_dotenv()
MONGODB_URI = os.getenv("MONGODB_URI")
MONGODB_DB = os.getenv("MONGODB_DB", "chattr")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
BOT_MODEL = os.getenv("BOT_MODEL", "gpt-4o-mini")
ENABLE_BOT = os.getenv("ENABLE_BOT", "false").lower() == "true"
BOT_REPLY_DELAY = float(os.getenv("BOT_REPLY_DELAY", "1.0"))
PUBLIC_UI_API_KEY = os.getenv("PUBLIC_UI_API_KEY", "")
SESSION_TTL_MIN = int(os.getenv("SESSION_TTL_MIN", "4320"))  # 3 days
SEED_CATALOG = os.getenv("SEED_CATALOG", "true").lower() == "true"
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

ROOM_PAGE_SIZE = 100
DM_PAGE_SIZE = 200
BOT_HISTORY_LIMIT = 10
MIN_PASSWORD_LENGTH = 6

if not MONGODB_URI:
    raise RuntimeError("MONGODB_URI missing")


def setup_logging():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
