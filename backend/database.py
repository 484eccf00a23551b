from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from dotenv import load_dotenv
from typing import Optional
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

from services.form_config_store import FormConfigStore, StoreFault

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

DEFAULT_MONGODB_URI = "mongodb://localhost:27017/authentik"
DEFAULT_DB_NAME = "authentik"


def resolve_mongo_uri(mongo_uri: Optional[str] = None) -> str:
    return mongo_uri or os.environ.get("MONGODB_URI") or DEFAULT_MONGODB_URI


class Database:
    """Connection to the document store, opened at startup and closed at shutdown."""

    def __init__(self, mongo_uri: Optional[str] = None, db_name: Optional[str] = None):
        self.mongo_uri = resolve_mongo_uri(mongo_uri)
        self.db_name = db_name or os.environ.get("DB_NAME")
        self.client: Optional[AsyncIOMotorClient] = None
        self.db = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(self.mongo_uri)
            # Database named in the URI unless DB_NAME overrides it
            if self.db_name:
                self.db = self.client[self.db_name]
            else:
                self.db = self.client.get_default_database(DEFAULT_DB_NAME)
                self.db_name = self.db.name
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {self.db_name}")

            await self._create_indexes()
        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            self.close()
            raise StoreFault(f"Could not connect to MongoDB: {e}") from e

    def close(self):
        if self.client:
            self.client.close()
            self.client = None
            logger.info("MongoDB connection closed")

    def get_db(self):
        if self.db is None:
            raise StoreFault("Database is not connected")
        return self.db

    async def _create_indexes(self):
        """Create the indexes the form configuration store relies on."""
        await FormConfigStore(self.db).ensure_indexes()
        logger.info("MongoDB indexes created/verified")


@asynccontextmanager
async def get_db_context(mongo_uri: Optional[str] = None, db_name: Optional[str] = None):
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context() as db:
            store = FormConfigStore(db)
    """
    database = Database(mongo_uri, db_name)
    try:
        await database.connect()
        yield database.get_db()
    finally:
        database.close()
