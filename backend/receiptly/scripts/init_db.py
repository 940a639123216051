"""Create the receipts tables for the configured database.

Run from the backend directory::

    python -m receiptly.scripts.init_db
"""

import asyncio

from receiptly.core.config import resolve_database_url, settings
from receiptly.core.database import build_engine, init_db


async def main():
    engine = build_engine(resolve_database_url(settings))
    print("Initializing database tables...")
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    print("Database initialization complete!")


if __name__ == "__main__":
    asyncio.run(main())
