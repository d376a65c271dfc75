# db.py
# Engine/session setup for the Supabase Postgres database that backs feedback data.

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlmodel import Session, SQLModel, create_engine

logger = logging.getLogger(__name__)

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

SUPABASE_HOST_SUFFIXES = (".supabase.co", ".supabase.com")


def normalize_database_url(raw_url: str) -> URL:
    """Parse the connection string; Supabase hosts only take TLS, so default sslmode=require."""
    try:
        url = make_url(raw_url)
    except ArgumentError as exc:
        raise RuntimeError(f"DATABASE_URL is not a valid connection string: {exc}") from exc

    host = (url.host or "").lower()
    if (
        url.get_backend_name() == "postgresql"
        and host.endswith(SUPABASE_HOST_SUFFIXES)
        and "sslmode" not in url.query
    ):
        url = url.update_query_dict({"sslmode": "require"})
    return url


def _engine_options(url: URL) -> dict[str, object]:
    if url.get_backend_name() == "sqlite":
        # TestClient and the threadpool share the connection across threads.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


_raw_database_url = os.getenv("DATABASE_URL")
if not _raw_database_url:
    raise RuntimeError(
        "DATABASE_URL is not set. Point it at the Supabase Postgres connection string "
        "(or a sqlite:/// file for local runs) before starting the API.",
    )

DATABASE_URL = normalize_database_url(_raw_database_url)
engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))


def create_db_and_tables() -> None:
    # Import registers the table metadata.
    import models  # noqa: F401

    logger.info("Ensuring feedback tables exist (dialect=%s)", engine.dialect.name)
    SQLModel.metadata.create_all(engine)


def get_session():
    """Provide a scoped SQLModel session for each request."""
    with Session(engine) as session:
        yield session
