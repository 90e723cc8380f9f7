"""MongoDB initialization for the sanction engine."""

import os
from typing import Optional

from beanie import init_beanie
from dotenv import load_dotenv
from pymongo import AsyncMongoClient

from sanction_models import Notification, SanctionedRegion, Seller

load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("MONGODB_DB", "sanctions")


_client: Optional[AsyncMongoClient] = None


async def init_db():
    """Connect to MongoDB and register Beanie document models."""
    global _client
    _client = AsyncMongoClient(MONGODB_URI)
    await init_beanie(database=_client[DB_NAME], document_models=[Seller, SanctionedRegion, Notification])


async def close_db():
    """Close the MongoDB connection."""
    global _client
    if _client:
        await _client.close()
        _client = None


def seller_collection():
    """Raw pymongo collection behind Seller, for bulk writes."""
    return Seller.get_pymongo_collection()
