"""
This module handles the connection to the MongoDB database.
It reads the connection settings from the environment and provides
a lazily connected store that hands out the movies collection.
moviemaster.db.py
"""
import asyncio
import logging
import os
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pymongo import AsyncMongoClient
from pymongo.server_api import ServerApi

load_dotenv()

logger = logging.getLogger(__name__)

DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS")
DB_HOST = os.getenv("DB_HOST")
DB_NAME = os.getenv("DB_NAME", "movieMasterDB")
COLLECTION_NAME = os.getenv("COLLECTION_NAME", "movies")


def build_mongo_uri():
    uri = os.getenv("MONGO_URI")
    if uri:
        return uri
    if not DB_USER or not DB_PASS or not DB_HOST:
        return None
    return (
        f"mongodb+srv://{quote_plus(DB_USER)}:{quote_plus(DB_PASS)}@{DB_HOST}/{DB_NAME}"
        "?retryWrites=true&w=majority"
    )


class MongoStore:
    """Owns the MongoDB client and connects on first use.

    Concurrent first callers wait on the same lock, so only one client is
    ever created; later calls return the cached collection.
    """

    def __init__(self, uri, db_name: str, collection_name: str, client_factory=AsyncMongoClient):
        self.uri = uri
        self.db_name = db_name
        self.collection_name = collection_name
        self._client_factory = client_factory
        self._client = None
        self._collection = None
        self._lock = asyncio.Lock()

    async def get_collection(self):
        if self._collection is not None:
            return self._collection

        async with self._lock:
            if self._collection is None:
                if not self.uri:
                    raise RuntimeError("DB credentials missing")
                client = self._client_factory(
                    self.uri,
                    server_api=ServerApi("1", strict=True, deprecation_errors=True),
                )
                try:
                    await client.admin.command("ping")
                except Exception:
                    await client.close()
                    raise
                self._client = client
                self._collection = client[self.db_name][self.collection_name]
                logger.info("MongoDB connected: %s.%s", self.db_name, self.collection_name)
        return self._collection

    async def ping(self):
        await self.get_collection()
        await self._client.admin.command("ping")

    async def close(self):
        if self._client is not None:
            await self._client.close()
            logger.info("MongoDB connection closed")
        self._client = None
        self._collection = None


_store = MongoStore(build_mongo_uri(), DB_NAME, COLLECTION_NAME)


def get_store():
    return _store
