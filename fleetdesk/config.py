import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # MongoDB connection string (server-level URI)
    # Example: mongodb://localhost:27017
    MONGO_URI = os.environ.get("MONGO_URI", "mongodb://127.0.0.1:27017")

    # Single database holding vehicles/contracts/service notes/parts/purchases
    MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME") or os.environ.get("MONGO_DB") or "fleetdesk"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # "remember me" sessions live 7 days, plain sessions 24 hours
    SESSION_TIMEOUT = timedelta(days=int(os.environ.get("SESSION_TIMEOUT_DAYS", "7")))
    SESSION_DEFAULT_TIMEOUT = timedelta(hours=int(os.environ.get("SESSION_DEFAULT_TIMEOUT_HOURS", "24")))
    PERMANENT_SESSION_LIFETIME = SESSION_TIMEOUT

    # signature images are stored elsewhere; only their URL is kept
    MAX_CONTENT_LENGTH = 4 * 1024 * 1024


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    MONGO_DB_NAME = "fleetdesk_test"
    LOG_LEVEL = "DEBUG"
