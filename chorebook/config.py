import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

API_BASE_URL = (os.getenv("API_BASE_URL") or "http://localhost:4000/api").rstrip("/")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS") or "3.0")

# Payment reconciliation: 12 attempts * 5s ~ 60 seconds
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS") or "5")
MAX_POLL_ATTEMPTS = int(os.getenv("MAX_POLL_ATTEMPTS") or "12")
REFUND_COOLDOWN_SECONDS = int(os.getenv("REFUND_COOLDOWN_SECONDS") or "300")  # 5 minutes

SUBMIT_TIMEOUT_SECONDS = float(os.getenv("SUBMIT_TIMEOUT_SECONDS") or "30")

# optional; session markers stay in-process when unset
REDIS_URL = os.getenv("REDIS_URL")
MARKER_TTL_SECONDS = int(os.getenv("MARKER_TTL_SECONDS") or "86400")

# reference server only
JWT_SECRET = os.getenv("JWT_SECRET") or "dev-secret-change-me"
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"
ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS") or "900")

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
