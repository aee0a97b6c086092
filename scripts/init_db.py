"""Script to create the scheduling tables without running migrations.

Intended for local development and throwaway SQLite databases; use
``scripts/migrate.py`` for PostgreSQL deployments.
"""

import asyncio

from sqlalchemy import text

from app.config import settings
from app.database import engine
from app.models import metadata


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        if settings.is_postgres:
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Created tables: {', '.join(sorted(metadata.tables))}")


if __name__ == "__main__":
    asyncio.run(init_db())
