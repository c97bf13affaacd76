"""Alembic environment: migrations run over the application's async engine."""
import asyncio
import logging
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from app.config import get_settings
from app.database import Base, create_engine
from app.models import Transaction, QueueCheckpoint  # noqa: F401 register tables

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

get_settings.cache_clear()
settings = get_settings()
if not settings.database_url:
    raise ValueError("Invalid database configuration. DATABASE_URL must be set.")
logger.info(f"Running migrations against ...@{settings.database_url.split('@')[-1]}")

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL to the script output; no DBAPI is needed."""
    context.configure(
        url=settings.database_url_sync,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_engine(settings.database_url)
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
