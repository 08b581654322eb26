"""
Alembic environment for the notification tables.

The database URL comes from app settings (.env is loaded there), so the app
and migrations always target the same database. Migrations run through the
async engine the app uses.
"""
import asyncio
import logging
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from app.core.database import Base, get_database_url
from app.models.admin import Admin  # noqa: F401
from app.models.project import Project, ProjectAssignedStaff  # noqa: F401
from app.models.push_token import PushToken  # noqa: F401
from app.models.staff import Staff, StaffClient  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

database_url = get_database_url()
target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting (alembic upgrade --sql)."""
    _configure(url=database_url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = async_engine_from_config(
        {"sqlalchemy.url": database_url},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync_migrations)
    finally:
        await engine.dispose()


logger.info("Running migrations against %s", database_url.split("@")[-1])
if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
