import os  # lets us read environment variables (from the OS)
from functools import (
    lru_cache,  # tiny built-in cache; we use it to reuse one Settings object
)

from dotenv import load_dotenv  # loads variables from a local .env file
from fastapi import Request  # for the per-app settings dependency
from pydantic import BaseModel  # Pydantic gives us a typed, validated settings class

load_dotenv()  # read .env and put those key=value pairs into environment variables


class Settings(BaseModel):  # our typed container for config values
    # signs the session cookie; change effect: every user is logged out
    secret_key: str = os.getenv("SECRET_KEY", "dev-secret-change")

    # database connection string; default is a SQLite file in the project folder
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./travel_ledger.db")

    # the cookie name used to store the session in the browser
    session_cookie: str = os.getenv("SESSION_COOKIE_NAME", "tl_session")

    # seconds a login stays valid (default 7 days)
    session_max_age: int = int(os.getenv("SESSION_MAX_AGE", str(7 * 24 * 3600)))

    # currency written on expenses that don't name one
    default_currency: str = os.getenv("DEFAULT_CURRENCY", "CNY")

    # where receipt images live on disk
    attachments_dir: str = os.getenv(
        "ATTACHMENTS_DIR", "./uploads/expense_attachments"
    )

    # upper bound for workbook and receipt uploads
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # how long an enabled preview link stays open
    preview_days: int = int(os.getenv("PREVIEW_DAYS", "30"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache  # make sure Settings() is created once and reused (fast + consistent)
def get_settings() -> Settings:
    return Settings()  # build from env (already loaded by load_dotenv())


def get_app_settings(request: Request) -> Settings:
    """FastAPI dependency: the Settings the running app was built with."""
    return request.app.state.settings
