import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

from quizrush.config import get_settings

logger = logging.getLogger(__name__)

client: Optional[AsyncIOMotorClient] = None


async def connect_db():
    global client
    settings = get_settings()
    if not settings.mongo_connection_string:
        logger.info("No MongoDB connection string configured, games are kept in memory")
        return
    client = AsyncIOMotorClient(settings.mongo_connection_string)
    await client.server_info()
    logger.info("Database Connected")


async def close_db():
    global client
    if client:
        client.close()
        client = None
        logger.info("Database Disconnected")


def _database():
    return client[get_settings().mongo_database]


def get_game_collection() -> Optional[AsyncIOMotorCollection]:
    if client is None:
        return None
    return _database().games


def get_quiz_collection() -> Optional[AsyncIOMotorCollection]:
    if client is None:
        return None
    return _database().quizzes
