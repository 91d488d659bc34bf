"""Quick database check script: lists commission engine tables and row counts."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func, select

from commission_engine.db import engine
from commission_engine.models import Base


async def check():
    print(f"Connecting to {engine.url.render_as_string(hide_password=True)}...")

    async with engine.connect() as conn:
        print(f"\nTables: {len(Base.metadata.sorted_tables)}")
        for table in Base.metadata.sorted_tables:
            count = await conn.scalar(select(func.count()).select_from(table))
            print(f"  - {table.name}: {count} rows")

    await engine.dispose()
    print("\nDatabase connection OK!")


if __name__ == "__main__":
    asyncio.run(check())
