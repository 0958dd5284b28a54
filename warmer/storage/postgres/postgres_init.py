from typing import Optional

from loguru import logger
from tortoise import Tortoise

from warmer.utils.db_utils import resolve_database_url, to_asyncpg_dsn


async def init_postgres(database_url: Optional[str] = None) -> None:
    """
    Connect Tortoise to the queue database and create the queue table if missing.
    """
    db_url = to_asyncpg_dsn(resolve_database_url(database_url))

    logger.info("Initializing PostgreSQL and ORM models...")

    await Tortoise.init(
        db_url=db_url,
        modules={"models": ["warmer.storage.models.queue_model"]},
    )

    await Tortoise.generate_schemas(safe=True)
    logger.info("PostgreSQL tables created or verified.")


async def close_postgres() -> None:
    await Tortoise.close_connections()
