"""
Alembic env.py — resolves the database URL through the application settings.

Credential resolution (LOCAL_DB_* in development, DB_* or AWS Secrets Manager
otherwise) lives in invoicing.core.config; this file only picks the sync
psycopg2 URL from it.

Usage:
  # Development (local Docker Compose):
  ENVIRONMENT=development alembic upgrade head

  # Production (credentials from Secrets Manager):
  ENVIRONMENT=production alembic upgrade head
"""
import logging
import sys

from alembic import context
from sqlalchemy import engine_from_config, pool

from invoicing.core.config import get_settings

logger = logging.getLogger("alembic.env")

config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    import logging.config
    logging.config.fileConfig(config.config_file_name)

try:
    config.set_main_option("sqlalchemy.url", get_settings().database_url_sync)
except RuntimeError as exc:
    logger.error("%s", exc)
    sys.exit(1)

target_metadata = None  # We use raw SQL migrations, no SQLAlchemy models here


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (generate SQL script without DB connection)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live DB connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
