from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from tray_tracker.models import MigrationRun
from tray_tracker.store import MongoDocumentStore


def get_motor_client(mongodb_uri: str) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(mongodb_uri)


def get_store(client: AsyncIOMotorClient, database: str, page_size: int = 500) -> MongoDocumentStore:
    return MongoDocumentStore(client, database, page_size=page_size)


async def init_odm(mongodb_uri: str, database: str) -> AsyncIOMotorClient:
    client = AsyncIOMotorClient(mongodb_uri)
    await init_beanie(
        database=client[database],
        document_models=[MigrationRun],
    )
    return client
