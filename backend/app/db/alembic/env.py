"""Alembic environment for the lost & found schema."""

from logging.config import fileConfig

from alembic import context
from pgvector.sqlalchemy import Vector
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import Connection

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from backend.app.config import get_settings  # noqa: E402
from backend.app.db.models import Base  # noqa: E402

target_metadata = Base.metadata


def sync_database_url() -> str:
    """Application URL rewritten for a sync driver (Alembic does not run async)."""
    settings = get_settings()
    url = settings.database_url or settings.postgres_url
    for async_prefix, sync_prefix in (
        ("sqlite+aiosqlite://", "sqlite://"),
        ("postgresql+asyncpg://", "postgresql://"),
    ):
        if url.startswith(async_prefix):
            return url.replace(async_prefix, sync_prefix, 1)
    return url


config.set_main_option("sqlalchemy.url", sync_database_url())


def _configure(connection: Connection | None = None, **kwargs: object) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        # Embedding dimension changes must show up in autogenerate
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=connection is not None and connection.dialect.name == "sqlite",
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit migration SQL without a live connection."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a connection from the configured URL."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        # Let autogenerate reflect pgvector columns as Vector instead of NullType
        connection.dialect.ischema_names["vector"] = Vector
        _configure(connection)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
