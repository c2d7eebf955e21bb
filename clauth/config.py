from dotenv import load_dotenv
from functools import lru_cache
from typing import List, Optional
from pydantic import BaseModel
import os

# Load environment variables from a .env file
load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Retrieve parts of the database URL from environment variables
DB_USER = os.getenv("DB_USERNAME", "root")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
DB_PORT = os.getenv("DB_PORT", "3306")
DB_NAME = os.getenv("DB_NAME", "clauth")

# Token configuration
SECRET_KEY = os.getenv("SECRET_KEY", "secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

# Daily challenge competition
CHALLENGE_TIMEZONE = os.getenv("CHALLENGE_TIMEZONE", "America/New_York")
COMPETITION_ROOM_CAPACITY = int(os.getenv("COMPETITION_ROOM_CAPACITY", 30))
ELIGIBILITY_UPVOTES = int(os.getenv("ELIGIBILITY_UPVOTES", 3))

# Razorpay configuration
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
CHECKOUT_CURRENCY = os.getenv("CHECKOUT_CURRENCY", "USD")
PREORDER_UNIT_PRICE = int(os.getenv("PREORDER_UNIT_PRICE", 5499))  # minor units
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 10))
REFUND_RESTORES_PLEDGED = _flag("REFUND_RESTORES_PLEDGED")

# Firebase configuration
FIREBASE_CREDENTIALS_JSON = os.getenv("FIREBASE_CREDENTIALS_JSON")

MAINTENANCE_MODE = _flag("MAINTENANCE_MODE")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",")]

# Build the database URL
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)


class Settings(BaseModel):
    """Runtime configuration handed to the competition and payment services.

    Built once from the module constants above and injected through
    ``get_settings`` so request handlers never read the environment directly.
    """
    challenge_timezone: str = CHALLENGE_TIMEZONE
    room_capacity: int = COMPETITION_ROOM_CAPACITY
    eligibility_upvotes: int = ELIGIBILITY_UPVOTES

    razorpay_key_id: str = RAZORPAY_KEY_ID
    razorpay_key_secret: str = RAZORPAY_KEY_SECRET
    razorpay_webhook_secret: str = RAZORPAY_WEBHOOK_SECRET
    checkout_currency: str = CHECKOUT_CURRENCY
    preorder_unit_price: int = PREORDER_UNIT_PRICE
    gateway_timeout_seconds: float = GATEWAY_TIMEOUT_SECONDS
    refund_restores_pledged: bool = REFUND_RESTORES_PLEDGED

    firebase_credentials_json: Optional[str] = FIREBASE_CREDENTIALS_JSON
    maintenance_mode: bool = MAINTENANCE_MODE
    cors_origins: List[str] = CORS_ORIGINS


@lru_cache
def get_settings() -> Settings:
    return Settings()
