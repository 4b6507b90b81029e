import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel, ASCENDING, DESCENDING
from config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient = None
_db_instance = None


class _DbProxy:
    """
    Transparent proxy to the Motor database.
    Lets services do `from database import db` before connect_db() runs;
    db.collection is resolved against _db_instance at call time.
    """
    def __getattr__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return getattr(_db_instance, name)

    def __getitem__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return _db_instance[name]


db = _DbProxy()


def get_db():
    return _db_instance


def use_database(instance) -> None:
    """Point the proxy at an already opened database (scripts, tests)."""
    global _db_instance
    _db_instance = instance


async def connect_db():
    global client, _db_instance
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
    )
    _db_instance = client[settings.DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.DB_NAME}")
    try:
        await create_indexes()
    except Exception as e:
        logger.warning(f"Could not create indexes (non-blocking): {e}")


async def close_db():
    global client
    if client:
        client.close()
        logger.info("MongoDB connection closed")


async def create_indexes():
    collections_to_index = {
        "users": [
            IndexModel([("user_id", ASCENDING)], unique=True),
            IndexModel([("role", ASCENDING)]),
        ],
        "coupons": [
            IndexModel([("coupon_id", ASCENDING)], unique=True),
            IndexModel([("code", ASCENDING)], unique=True),
            IndexModel([
                ("is_active", ASCENDING),
                ("valid_from", ASCENDING),
                ("valid_until", ASCENDING),
            ]),
            IndexModel([("created_by", ASCENDING)]),
            IndexModel([("created_at", DESCENDING)]),
            IndexModel([("used_by.user_id", ASCENDING)]),
        ],
        "orders": [
            IndexModel([("order_id", ASCENDING)], unique=True),
            IndexModel([("user_id", ASCENDING)]),
            IndexModel([("status", ASCENDING)]),
        ],
    }

    for collection_name, index_models in collections_to_index.items():
        try:
            await _db_instance[collection_name].create_indexes(index_models)
            logger.info(f"Indexes created for collection: {collection_name}")
        except Exception as e:
            logger.error(f"Failed to create indexes for collection {collection_name}: {e}")

    logger.info("All MongoDB indexes creation attempts completed.")
