import logging
import os

from beanie import init_beanie
from models import Url, User
from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Url, User]


async def connect_to_mongo():
    MONGODB_URI = os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
    MONGO_DB = os.environ.get("MONGO_DB", "urlshortener")

    client = AsyncIOMotorClient(MONGODB_URI)
    database = client[MONGO_DB]

    try:
        await database.command("ping")
        logger.info("Connected to MongoDB", extra={"database": MONGO_DB})
        await init_beanie(database=database, document_models=DOCUMENT_MODELS)
        logger.info("Beanie ODM initialized.")
        return client, database
    except Exception:
        logger.exception("MongoDB connection failed")
        client.close()
        raise


async def close_mongo_connection(client: AsyncIOMotorClient):
    client.close()
    logger.info("Disconnected from MongoDB.")
