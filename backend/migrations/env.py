from __future__ import annotations
import asyncio
from logging.config import fileConfig
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context
from app.config import settings
from app.db import Base
# register every table on Base.metadata
import app.models.participant  # noqa: F401
import app.models.completion  # noqa: F401
import app.models.vote  # noqa: F401
import app.models.comment  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
VIEWS = {"gallery_entries"}

def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or settings.database_url

def include_object(obj, name, type_, reflected, compare_to):
    # views are managed by hand in the revisions
    return not (type_ == "table" and name in VIEWS)

def _configure(**kwargs):
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        include_object=include_object,
        **kwargs,
    )

def run_migrations_offline():
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()

def do_run_migrations(connection: Connection):
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()

async def run_migrations_online():
    connectable = create_async_engine(_database_url(), poolclass=pool.NullPool, future=True)
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()

if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
