"""Alembic environment for the pixel canvas schema.

Learn: Alembic runs this file for every command. Two things are specific
to this project:

1. The database URL comes from PIXELMAP_DATABASE_URL (via Settings), and
   can be overridden per command: `alembic -x database_url=... upgrade head`.
2. Autogenerate only compares the tables our models declare. The canvas
   often shares a database with other apps; their tables must never show
   up as drop_table() in a generated revision.

The NOTIFY function and trigger on `pixels` are raw SQL in the initial
revision. Autogenerate can't see them, so any migration touching the
pixels table has to keep the trigger in mind by hand.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from pixelmap.config import Settings
from pixelmap.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("database_url")
    return override or Settings().database_url


config.set_main_option("sqlalchemy.url", _database_url())


def include_object(obj, name, type_, reflected, compare_to):
    """Skip reflected tables (and their indexes) that no model declares."""
    if type_ == "table" and reflected and compare_to is None:
        return False
    if type_ == "index" and reflected and obj.table.name not in target_metadata.tables:
        return False
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting (`alembic upgrade head --sql`)."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
