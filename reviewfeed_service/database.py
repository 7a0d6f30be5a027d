"""
MongoDB database connection and utilities
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from typing import Optional
import logging

from .config import settings

logger = logging.getLogger(__name__)


class MongoDB:
    """MongoDB connection manager"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None
        self.reviews_collection: Optional[AsyncIOMotorCollection] = None
        self.restaurants_collection: Optional[AsyncIOMotorCollection] = None
        self.menu_items_collection: Optional[AsyncIOMotorCollection] = None

    async def connect(self):
        """Connect to MongoDB"""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        self.db = self.client[settings.MONGODB_DATABASE]
        self.reviews_collection = self.db[settings.MONGODB_REVIEWS_COLLECTION]
        self.restaurants_collection = self.db[settings.MONGODB_RESTAURANTS_COLLECTION]
        self.menu_items_collection = self.db[settings.MONGODB_MENU_ITEMS_COLLECTION]

        # Create indexes
        await self.create_indexes()

        logger.info(f"Connected to MongoDB at {settings.MONGODB_URL}, database {settings.MONGODB_DATABASE}")

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    async def create_indexes(self):
        """Create indexes backing the feed queries"""
        # Feed order
        await self.reviews_collection.create_index([("createdAt", -1), ("_id", -1)])

        # A user's own reviews, newest first
        await self.reviews_collection.create_index([("userId", 1), ("createdAt", -1)])

        # All reviews of a restaurant, for quality scoring
        await self.reviews_collection.create_index("restaurantId")

        logger.info("MongoDB indexes created")


# Global MongoDB instance
mongodb = MongoDB()
