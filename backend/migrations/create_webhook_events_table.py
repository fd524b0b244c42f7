"""
Database Migration: Create Webhook Events Table

Creates the durable idempotency table for inbound webhooks from the
WebhookEventDB model. The unique index on idempotency_key backs the
dispatcher's insert-if-absent.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.connection import Base, get_engine
from database.webhook_models import WebhookEventDB


TABLES = [WebhookEventDB.__table__]


def create_webhook_tables(sync_conn):
    """Create missing tables and their indexes; existing ones are left alone."""
    Base.metadata.create_all(sync_conn, tables=TABLES, checkfirst=True)


async def create_tables():
    """Create the webhook_events table."""
    print("Creating webhook_events table...")

    async with get_engine().begin() as conn:
        await conn.run_sync(create_webhook_tables)
        for table in TABLES:
            print(f"  {table.name}: {len(table.indexes)} indexes")

    print("\nwebhook_events table ready")


if __name__ == "__main__":
    asyncio.run(create_tables())
