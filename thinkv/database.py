import logging

from motor.motor_asyncio import AsyncIOMotorClient

from thinkv.config import settings

logger = logging.getLogger(__name__)


class Database:
    client: AsyncIOMotorClient = None
    db = None
    channels = None
    datapoints = None

    async def connect_to_mongodb(self, mongo_uri: str = None):
        mongo_uri = mongo_uri or settings.mongo_uri
        if not mongo_uri:
            raise ValueError("MONGO_URI environment variable not set.")
        logger.info("Connecting to MongoDB...")
        # tz_aware so timestamps come back comparable with the live readings
        self.client = AsyncIOMotorClient(mongo_uri, tz_aware=True)

        # Database name comes from the URI (e.g. mongodb://host/thinkv)
        self.db = self.client.get_default_database()

        self.channels = self.db.channels
        self.datapoints = self.db.datapoints
        await self.db.command("ping")
        await self.channels.create_index("user_id")
        await self.datapoints.create_index([("channel_id", 1), ("timestamp", 1)])
        logger.info("MongoDB connected successfully.")

    async def close_mongodb_connection(self):
        if self.client:
            logger.info("Closing MongoDB connection...")
            self.client.close()
            self.client = None
            logger.info("MongoDB connection closed.")


db = Database()
