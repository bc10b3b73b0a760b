# config.py
# Environment driven settings. Values can live in a local .env file.

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

APP_NAME = "QuickBid API"
APP_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATA_DIR = Path(os.getenv("QUICKBID_DATA_DIR", str(BASE_DIR / "data")))

# defaults for the runtime cloud panel; saved values take precedence
CLOUD_URL = os.getenv("QUICKBID_CLOUD_URL", "")
CLOUD_KEY = os.getenv("QUICKBID_CLOUD_KEY", "")
HTTP_TIMEOUT = float(os.getenv("QUICKBID_HTTP_TIMEOUT", "10"))

OPENAI_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

DEFAULT_CURRENCY = "CNY"
PROTECTED_USER_ID = "admin"
