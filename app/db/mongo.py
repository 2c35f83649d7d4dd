import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    # Create indexes
    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Client indexes
    await db["clients"].create_index("name")
    await db["clients"].create_index("status")

    # Debt indexes
    await db["debts"].create_index("debt_number", unique=True)
    await db["debts"].create_index([("client_id", 1), ("status", 1)])
    await db["debts"].create_index([("due_date", 1), ("balance_cents", 1)])
    await db["debts"].create_index([("created_at", -1), ("debt_number", -1)])

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
