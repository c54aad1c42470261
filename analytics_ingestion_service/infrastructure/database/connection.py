from analytics_ingestion_service.app.config import settings
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional

logger = logging.getLogger(__name__)

# Global client and db variables, managed by connect/close functions
client: Optional[AsyncIOMotorClient] = None
db: Optional[AsyncIOMotorDatabase] = None

async def connect_to_mongo() -> AsyncIOMotorDatabase:
    global client, db
    if client is not None and db is not None:
        logger.info("MongoDB connection already established.")
        return db

    try:
        logger.info(f"Attempting to connect to MongoDB at {settings.MONGO_DETAILS}...")
        client = AsyncIOMotorClient(
            settings.MONGO_DETAILS,
            serverSelectionTimeoutMS=settings.STORE_REQUEST_TIMEOUT_MS,
            socketTimeoutMS=settings.STORE_REQUEST_TIMEOUT_MS,
        )
        # Verify connection by pinging the admin database
        await client.admin.command('ping')
        db = client[settings.DB_NAME]
        logger.info(f"Successfully connected to MongoDB and database '{settings.DB_NAME}' is set.")
        return db
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}", exc_info=True)
        if client is not None:
            client.close()
        client = None
        db = None
        raise ConnectionError(f"Failed to connect to MongoDB: {e}")

def close_mongo_connection():
    global client, db
    if client:
        client.close()
        client = None
        db = None
        logger.info("MongoDB connection closed.")
