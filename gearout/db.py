# gearout/db.py
from __future__ import annotations

from typing import Optional

import streamlit as st
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from .config import get_settings


# ---------------------------------------------------------------------
# Engine factory (cached across reruns & sessions)
# ---------------------------------------------------------------------
@st.cache_resource(show_spinner=False)
def get_engine(db_url: Optional[str] = None, timeout: Optional[float] = None):
    """
    Create (or return cached) SQLAlchemy/SQLModel engine.

    - Cached with st.cache_resource so it's shared across reruns/sessions.
    - Every connection carries a timeout so a locked database surfaces an
      error instead of hanging the checkout screen.
    - For SQLite: sets journal_mode=WAL, busy_timeout, foreign_keys=ON on
      each new connection.
    """
    settings = get_settings() if (db_url is None or timeout is None) else None
    url = db_url or settings.db_url
    timeout = timeout if timeout is not None else settings.db_timeout

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout},
            pool_pre_ping=True,
        )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            cur.execute(f"PRAGMA busy_timeout={int(timeout * 1000)};")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()
    else:
        engine = create_engine(
            url,
            connect_args={"connect_timeout": int(timeout)},
            pool_pre_ping=True,
            pool_timeout=timeout,
        )
    return engine


# ---------------------------------------------------------------------
# One-off schema creation (dev / first run)
# ---------------------------------------------------------------------
def create_db_and_tables(db_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
    """
    Create all tables defined in SQLModel metadata.

    Call this once on first run or manage schema via Alembic migrations.
    """
    # NOTE: importing actual models to register metadata
    from . import db_models  # noqa: F401

    SQLModel.metadata.create_all(get_engine(db_url, timeout))
