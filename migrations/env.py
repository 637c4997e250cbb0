"""Alembic environment configuration for inkpipe.

Uses the database URL from ``inkpipe.config.settings`` (unless
``sqlalchemy.url`` is set in alembic.ini) and ``Base.metadata`` so that
autogenerate sees every model.

An existing connection can be passed via ``config.attributes["connection"]``
for programmatic runs against in-memory SQLite.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from inkpipe.database import Base
from inkpipe.models import ApiToken, FileRecord, ProcessingLog, UserUsage  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _get_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from inkpipe.config import settings

    return settings.database_url


def run_migrations_offline() -> None:
    """Emit SQL to the script output instead of running it."""
    context.configure(
        url=_get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = config.attributes.get("connection", None)

    if connectable is not None:
        context.configure(connection=connectable, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
        return

    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = _get_url()
    connectable = engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
