"""MongoDB connection setup."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .config import Config

logger = logging.getLogger(__name__)

_TIMEOUT_MS = 10_000


def connect(config: Config) -> tuple[Any, Callable[[], None]]:
    """Connect to MongoDB, check the primary answers, and return the database and a closer."""
    try:
        client: MongoClient = MongoClient(
            config.mongo_uri,
            serverSelectionTimeoutMS=_TIMEOUT_MS,
            connectTimeoutMS=_TIMEOUT_MS,
        )
    except PyMongoError as exc:
        raise ConnectionError(f"could not connect to MongoDB: {exc}") from exc

    try:
        client.admin.command("ping")
    except PyMongoError as exc:
        client.close()
        raise ConnectionError(f"could not ping MongoDB: {exc}") from exc

    database = client.get_database(config.mongo_db_name)

    def close() -> None:
        logger.info("Closing MongoDB connection...")
        try:
            client.close()
        except PyMongoError as exc:
            logger.error("Error on disconnecting from MongoDB: %s", exc)

    return database, close