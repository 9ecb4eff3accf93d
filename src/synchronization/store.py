"""
MongoDB store accessor.

Owns the single motor client shared by the scanner, listener and sink.
Only the orchestrator connects or closes it.
"""

import logging
from typing import Any, Callable, Optional
from urllib.parse import unquote, urlsplit

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from utils.retry import is_retryable_mongo_exception, retry_with_backoff

from .exceptions import ConfigurationError, NotConnectedError

logger = logging.getLogger(__name__)

URI_SCHEMES = ("mongodb", "mongodb+srv")


def database_name_from_uri(uri: str) -> str:
    """
    Extract the database name from a connection string path.

    Examples:
        mongodb://localhost:27017/shop -> shop
        mongodb+srv://u:p@cluster.example.net/shop?retryWrites=true -> shop

    Raises:
        ConfigurationError: If the URI is missing, not a MongoDB URI, or names no database
    """
    if not uri:
        raise ConfigurationError("Database URI is required")

    parts = urlsplit(uri)
    if parts.scheme not in URI_SCHEMES:
        raise ConfigurationError(
            f"Database URI must use one of the schemes: {', '.join(URI_SCHEMES)}"
        )

    name = unquote(parts.path.lstrip("/"))
    if not name:
        raise ConfigurationError("Database URI must include a database name, e.g. mongodb://host:27017/shop")
    return name


class MongoStore:
    """
    Lazily connected handle on the source and target collections.

    Example:
        >>> store = MongoStore("mongodb://localhost:27017/shop", "customers", "customers_anonymised")
        >>> await store.connect()
        >>> source = store.source_collection()
    """

    def __init__(
        self,
        uri: str,
        source_collection: str,
        target_collection: str,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
        connect_retries: int = 3,
        retry_base_delay: float = 1.0,
        **client_options: Any,
    ):
        """
        Initialize store accessor

        Args:
            uri: MongoDB connection string including the database name
            source_collection: Name of the collection to read from
            target_collection: Name of the anonymized mirror
            client_factory: Callable creating the client (motor by default)
            connect_retries: Retries of the initial ping on transient driver errors
            retry_base_delay: Initial backoff delay in seconds
            **client_options: Extra keyword arguments for the client

        Raises:
            ConfigurationError: If the URI is invalid
        """
        self.uri = uri
        self.database_name = database_name_from_uri(uri)
        self.source_name = source_collection
        self.target_name = target_collection
        self.client_factory = client_factory
        self.connect_retries = connect_retries
        self.retry_base_delay = retry_base_delay
        self.client_options = client_options
        self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """
        Create the client and verify the server responds to ping.

        Raises:
            ConnectionFailure: If the server is unreachable after all retries
        """
        if self._client is not None:
            logger.debug("Store already connected")
            return

        client = self.client_factory(self.uri, **self.client_options)

        @retry_with_backoff(
            max_retries=self.connect_retries,
            base_delay=self.retry_base_delay,
            retryable_exceptions=(PyMongoError,),
            retry_if=is_retryable_mongo_exception,
        )
        async def ping():
            await client.admin.command("ping")

        try:
            await ping()
        except Exception:
            client.close()
            raise

        self._client = client
        logger.info(
            f"Connected to database '{self.database_name}' "
            f"(source={self.source_name}, target={self.target_name})"
        )

    async def close(self) -> None:
        """Close the client; a no-op when not connected."""
        if self._client is None:
            return
        self._client.close()
        self._client = None
        logger.info("Database connection closed")

    def _database(self):
        if self._client is None:
            raise NotConnectedError("Store is not connected; call connect() first")
        return self._client[self.database_name]

    def source_collection(self):
        return self._database()[self.source_name]

    def target_collection(self):
        return self._database()[self.target_name]

    async def start_session(self):
        """Start a client session for a transaction."""
        if self._client is None:
            raise NotConnectedError("Store is not connected; call connect() first")
        return await self._client.start_session()
