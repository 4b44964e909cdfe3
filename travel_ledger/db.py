from __future__ import annotations

import logging
from typing import Generator

from fastapi import Request
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

import travel_ledger.models as _models  # noqa: F401  # registers tables on SQLModel.metadata
from travel_ledger.normalize import LEGACY_PAY_CHANNEL_ALIASES

logger = logging.getLogger("db")

# Columns added after the first release. Each entry is checked on startup and
# added with ALTER TABLE if missing; nothing is ever dropped or retyped.
ADDITIVE_COLUMNS: dict[str, list[tuple[str, str]]] = {
    "travel_book": [("summary", "TEXT")],
    "expense_item": [
        ("discount_amount", "FLOAT DEFAULT 0"),
        ("discount_note", "TEXT"),
    ],
    "book_preview": [
        ("show_receipts", "BOOLEAN DEFAULT 0"),
        ("secret", "VARCHAR"),
    ],
    "expense_attachment": [
        ("original_name", "VARCHAR"),
        ("mime_type", "VARCHAR"),
        ("size_bytes", "INTEGER DEFAULT 0"),
    ],
}


def build_engine(database_url: str) -> Engine:
    # SQLite needs a special connect arg; others (e.g., Postgres) don't.
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    engine = create_engine(
        database_url,
        echo=False,  # set True to see SQL in console
        connect_args=connect_args,
    )
    logger.info("DB URL in use: %s", engine.url)
    return engine


def get_session(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency: yields a session bound to the app's engine and closes it afterwards."""
    with Session(request.app.state.engine) as session:
        yield session


def ensure_columns(engine: Engine) -> list[str]:
    """Add any missing columns from ADDITIVE_COLUMNS. Returns 'table.column' for each one added."""
    added: list[str] = []
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())
    with engine.begin() as conn:
        for table, columns in ADDITIVE_COLUMNS.items():
            if table not in existing_tables:
                continue
            present = {col["name"] for col in inspector.get_columns(table)}
            for name, ddl in columns:
                if name in present:
                    continue
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
                added.append(f"{table}.{name}")
    for item in added:
        logger.info("Added column %s", item)
    return added


def normalize_legacy_pay_channels(engine: Engine) -> None:
    """
    Rewrite short legacy channel codes (MEITUAN, DOUYIN) to their current form,
    on expense rows and on user channel rows, in one transaction.
    A user who already owns the long code loses the duplicate short row.
    """
    with engine.begin() as conn:
        for legacy, current in LEGACY_PAY_CHANNEL_ALIASES.items():
            conn.execute(
                text(
                    "UPDATE expense_item SET pay_channel = :current "
                    "WHERE UPPER(TRIM(pay_channel)) = :legacy"
                ),
                {"current": current, "legacy": legacy},
            )
            conn.execute(
                text(
                    "DELETE FROM payment_channel WHERE value = :legacy AND user_id IN "
                    "(SELECT user_id FROM payment_channel WHERE value = :current)"
                ),
                {"current": current, "legacy": legacy},
            )
            conn.execute(
                text("UPDATE payment_channel SET value = :current WHERE value = :legacy"),
                {"current": current, "legacy": legacy},
            )


def init_db(engine: Engine) -> None:
    """Create tables, apply additive column checks, fix legacy data. Safe to run on every start."""
    SQLModel.metadata.create_all(engine)
    ensure_columns(engine)
    normalize_legacy_pay_channels(engine)
