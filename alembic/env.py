from __future__ import annotations

import sys
from pathlib import Path
from logging.config import fileConfig

from sqlmodel import SQLModel

from alembic import context

# Ensure project root is on sys.path so litgraph / config import.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# Alembic Config object — provides access to values in alembic.ini.
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Import all SQLModel models so their metadata is registered.
import litgraph.db.models as _models  # noqa: F401, E402
from config.settings import load_settings  # noqa: E402
from litgraph.db.engine import _make_absolute_sqlite_url, create_db_engine  # noqa: E402

target_metadata = SQLModel.metadata


def _get_url() -> str:
    """alembic.ini override if set, otherwise the configured database url."""
    ini_url = config.get_main_option("sqlalchemy.url", default="")
    if not ini_url or ini_url.startswith("driver://"):
        ini_url = load_settings().database.url
    return _make_absolute_sqlite_url(ini_url)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (generates SQL scripts)."""
    context.configure(
        url=_get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # required for SQLite ALTER TABLE support
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (applies directly to the DB)."""
    connectable = create_db_engine(_get_url())

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
