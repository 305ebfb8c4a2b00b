"""
SQLAlchemy/SQLModel engine and session factory.

The engine is built once by the process entry point (litgraph.runtime) from
the configured URL and passed to the store; nothing here is a module-level
singleton. Relative sqlite:/// paths resolve against the project root, so
switching to PostgreSQL stays a single configuration change.
"""

from __future__ import annotations

import os
from pathlib import Path
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _make_absolute_sqlite_url(url: str) -> str:
    if not url.startswith("sqlite:///") or url == "sqlite:///:memory:":
        return url
    rel_path = url[len("sqlite:///"):]
    if os.path.isabs(rel_path):
        Path(rel_path).parent.mkdir(parents=True, exist_ok=True)
        return url
    abs_path = (_PROJECT_ROOT / rel_path).resolve()
    abs_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{abs_path}"


def create_db_engine(url: str, echo: bool = False) -> Engine:
    db_url = _make_absolute_sqlite_url(url)
    is_sqlite = db_url.startswith("sqlite")
    kwargs = {}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(db_url, echo=echo, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return engine


def init_db(engine: Engine) -> None:
    """Create all tables that are not yet present."""
    from litgraph.db import models as _models  # noqa: F401  registers the tables

    SQLModel.metadata.create_all(engine)
