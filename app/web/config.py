"""
Application configuration, read from the environment (.env supported).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("SQLALCHEMY_DATABASE_URI", "sqlite:///compliance.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    TESTING = _bool(os.environ.get("TESTING", "false"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Completion service
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o")
    COMPLETION_TIMEOUT_SECONDS = float(os.environ.get("COMPLETION_TIMEOUT_SECONDS", "30"))

    # Classification
    KEYWORD_FAST_PATH_PRIORITY = int(os.environ.get("KEYWORD_FAST_PATH_PRIORITY", "100"))
    BULK_CLASSIFY_PAUSE_EVERY = int(os.environ.get("BULK_CLASSIFY_PAUSE_EVERY", "10"))
    BULK_CLASSIFY_PAUSE_SECONDS = float(os.environ.get("BULK_CLASSIFY_PAUSE_SECONDS", "1.0"))

    # COA uploads
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", str(10 * 1024 * 1024)))
