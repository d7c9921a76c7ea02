"""MongoDB connection handling for the migrator.

Wraps motor's AsyncIOMotorClient. Only connections opened here are closed
by the migrator; database handles passed in by the caller stay theirs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConfigurationError as PyMongoConfigurationError

from mgdb_migrator.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionSettings:
    """Where to connect.

    Attributes:
        url: MongoDB connection string
        database_name: Database to use; defaults to the one named in url
        driver_options: Extra keyword arguments for AsyncIOMotorClient
    """

    url: str
    database_name: Optional[str] = None
    driver_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("Connection url cannot be empty")


class MongoConnection:
    """An open client plus the database the migrator works on."""

    def __init__(self, client: AsyncIOMotorClient, db: AsyncIOMotorDatabase) -> None:
        self.client = client
        self.db = db

    @classmethod
    def open(cls, settings: ConnectionSettings) -> "MongoConnection":
        """Create a client for settings and resolve the database.

        Raises:
            ConfigurationError: If no database name is given or in the URL
        """
        client = AsyncIOMotorClient(settings.url, **settings.driver_options)
        try:
            if settings.database_name:
                db = client[settings.database_name]
            else:
                db = client.get_default_database()
        except PyMongoConfigurationError as e:
            client.close()
            raise ConfigurationError(
                "No database name given and none found in the connection url"
            ) from e

        logger.info("Connected to MongoDB database %s", db.name)
        return cls(client, db)

    def close(self) -> None:
        self.client.close()
        logger.info("Closed MongoDB connection")
