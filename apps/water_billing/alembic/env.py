"""Alembic environment for the water billing schema."""

from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path
from typing import Any

from alembic import context
from sqlalchemy import MetaData, engine_from_config, pool

APP_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = APP_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _target_metadata() -> MetaData:
    from water_billing.db.base import Base, import_orm_models

    import_orm_models()
    return Base.metadata


def _database_url() -> str:
    """Settings read DATABASE_URL from the environment or .env."""

    from water_billing.core.settings import get_settings

    return get_settings().database_url


target_metadata = _target_metadata()
config.set_main_option("sqlalchemy.url", _database_url())

CONFIGURE_OPTIONS: dict[str, Any] = {
    "target_metadata": target_metadata,
    "compare_type": True,
    "compare_server_default": True,
    "transaction_per_migration": True,
}


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(connection=connection, **CONFIGURE_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
