"""Utility helpers for database connection strings.

The queue talks to PostgreSQL twice: through ``asyncpg`` for the lease queries
and through Tortoise ORM (``asyncpg://`` scheme) when the schema is created.
Both take the same configured URL, normalized here.
"""

from __future__ import annotations

import os
from typing import Optional


def to_postgres_dsn(url: str) -> str:
    """Normalize a SQLAlchemy or Tortoise style URL into a plain PostgreSQL DSN.

    ``postgresql+psycopg2://`` loses its driver part and ``asyncpg://`` is
    turned back into ``postgresql://`` so that ``asyncpg.create_pool`` accepts it.
    """

    if url.startswith("postgresql+"):
        return "postgresql://" + url.split("://", 1)[1]
    if url.startswith("asyncpg://"):
        return "postgresql://" + url[len("asyncpg://") :]
    return url


def to_asyncpg_dsn(url: str) -> str:
    """Convert a PostgreSQL DSN to the ``asyncpg://`` scheme used by Tortoise."""

    url = to_postgres_dsn(url)
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    return url


def resolve_database_url(configured: Optional[str] = None) -> str:
    """Pick the queue database URL.

    Precedence: explicit value, ``WARMUP_DATABASE_URL``, ``DATABASE_URL``, then
    a URL assembled from the ``POSTGRES_*`` variables.
    """

    url = configured or os.getenv("WARMUP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url:
        return to_postgres_dsn(url)

    user = os.getenv("POSTGRES_USER", "warmer")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "warmup")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"
