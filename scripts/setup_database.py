#!/usr/bin/env python3
"""
Database setup script for the monitoring backend.

This script:
- Creates the PostgreSQL database if it doesn't exist
- Creates all tables
- Reports how many devices are registered
"""

import asyncio
import sys
from pathlib import Path
from urllib.parse import urlparse

import asyncpg
from sqlalchemy import func, select

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import get_settings
from mikromon.storage.database import create_engine, create_session_factory, init_db
from mikromon.storage.models import Device


def parse_database_url(url: str) -> dict:
    """Parse a postgresql+asyncpg URL into connection arguments."""
    parsed = urlparse(url.replace("+asyncpg", ""))
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": parsed.username or "postgres",
        "password": parsed.password or "postgres",
        "database": parsed.path.lstrip("/") or "mikromon",
    }


async def create_database_if_not_exists(
    host: str,
    port: int,
    user: str,
    password: str,
    database: str,
) -> bool:
    """Create the database if it doesn't exist. Returns True if created."""
    conn = await asyncpg.connect(
        host=host, port=port, user=user, password=password, database="postgres"
    )
    try:
        exists = await conn.fetchval(
            "SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)",
            database,
        )
        if exists:
            print(f"Database already exists: {database}")
            return False
        await conn.execute(f'CREATE DATABASE "{database}"')
        print(f"Created database: {database}")
        return True
    finally:
        await conn.close()


async def main() -> None:
    print("=" * 60)
    print("MikroTik Monitor - Database Setup")
    print("=" * 60)

    settings = get_settings()

    if settings.database.is_sqlite:
        print(f"\nDatabase: {settings.database.url}")
    else:
        db_config = parse_database_url(settings.database.url)
        print(f"\nDatabase: {db_config['database']}@{db_config['host']}:{db_config['port']}")
        print("\nStep 1: Creating database...")
        await create_database_if_not_exists(**db_config)

    print("\nStep 2: Creating tables...")
    engine = create_engine(settings.database)
    try:
        await init_db(engine)

        print("\nStep 3: Checking registered devices...")
        async with create_session_factory(engine)() as session:
            count = await session.scalar(select(func.count()).select_from(Device))
        if count:
            print(f"{count} device(s) registered")
        else:
            print("No devices registered - add one through POST /api/devices")
    finally:
        await engine.dispose()

    print("\n" + "=" * 60)
    print("Database setup complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
