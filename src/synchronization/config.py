"""
Configuration for the synchronization service.

Values come from the process environment. A ``.env`` file is loaded first
with python-dotenv but never overrides variables that are already set.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

from dotenv import load_dotenv

from transformation.transformers.pii import HashingTransformer
from transformation.transformers.rules import ANONYMIZERS

from .exceptions import ConfigurationError
from .store import database_name_from_uri

logger = logging.getLogger(__name__)

PAGINATION_MODES = ("skip", "keyset")


def _env_int(environ, name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from None


@dataclass(frozen=True)
class SyncConfig:
    """
    Runtime settings of one source -> target synchronization.

    Raises:
        ConfigurationError: On construction, if any value is invalid
    """

    db_uri: str
    source_collection: str = "customers"
    target_collection: str = "customers_anonymised"
    bunch_size: int = 1000
    flush_interval_ms: int = 1000
    scan_page_size: int = 10000
    scan_pagination: str = "skip"
    feed_resubscribe_attempts: int = 0
    anonymizer: str = "customer"
    filler_size: int = 8
    hash_salt: Optional[str] = None

    def __post_init__(self):
        if not self.db_uri:
            raise ConfigurationError("DB_URI is required")
        # Raises ConfigurationError when the URI names no database
        database_name_from_uri(self.db_uri)

        if not self.source_collection or not self.target_collection:
            raise ConfigurationError("Source and target collection names must be non-empty")
        if self.source_collection == self.target_collection:
            raise ConfigurationError("Source and target collections must differ")

        for name in ("bunch_size", "flush_interval_ms", "scan_page_size", "filler_size"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")

        if self.feed_resubscribe_attempts < 0:
            raise ConfigurationError("feed_resubscribe_attempts must be >= 0")
        if self.scan_pagination not in PAGINATION_MODES:
            raise ConfigurationError(
                f"scan_pagination must be one of {', '.join(PAGINATION_MODES)}, "
                f"got '{self.scan_pagination}'"
            )
        if self.anonymizer not in ANONYMIZERS:
            raise ConfigurationError(
                f"anonymizer must be one of {', '.join(ANONYMIZERS)}, got '{self.anonymizer}'"
            )
        if self.hash_salt is not None and len(self.hash_salt) < HashingTransformer.MIN_SALT_LENGTH:
            raise ConfigurationError(
                f"ANONYMIZER_SALT must be at least {HashingTransformer.MIN_SALT_LENGTH} characters long"
            )

    @property
    def database_name(self) -> str:
        return database_name_from_uri(self.db_uri)

    @property
    def flush_interval(self) -> float:
        """Flush interval in seconds."""
        return self.flush_interval_ms / 1000.0

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        environ: Optional[dict[str, str]] = None,
    ) -> "SyncConfig":
        """
        Build configuration from environment variables.

        Args:
            env_file: Path of a dotenv file (default: ``.env`` lookup)
            environ: Mapping to read instead of ``os.environ`` (no dotenv load)

        Returns:
            Validated SyncConfig
        """
        if environ is None:
            if env_file and not os.path.isfile(env_file):
                raise ConfigurationError(f"Environment file not found: {env_file}")
            load_dotenv(dotenv_path=env_file, override=False)
            environ = os.environ

        config = cls(
            db_uri=environ.get("DB_URI", ""),
            source_collection=environ.get("SOURCE_COLLECTION", "customers"),
            target_collection=environ.get("TARGET_COLLECTION", "customers_anonymised"),
            bunch_size=_env_int(environ, "BUNCH_SIZE", 1000),
            flush_interval_ms=_env_int(environ, "FLUSH_INTERVAL_MS", 1000),
            scan_page_size=_env_int(environ, "SCAN_PAGE_SIZE", 10000),
            scan_pagination=environ.get("SCAN_PAGINATION", "skip").lower(),
            feed_resubscribe_attempts=_env_int(environ, "FEED_RESUBSCRIBE_ATTEMPTS", 0),
            anonymizer=environ.get("ANONYMIZER", "customer").lower(),
            filler_size=_env_int(environ, "ANONYMIZER_FILLER_SIZE", 8),
            hash_salt=environ.get("ANONYMIZER_SALT") or None,
        )
        logger.debug(f"Loaded configuration: {config.describe()}")
        return config

    def with_overrides(self, **overrides: Any) -> "SyncConfig":
        """Return a copy with the non-None overrides applied (validated again)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def describe(self) -> dict[str, Any]:
        """Settings safe to log: the URI and salt are left out."""
        return {
            "database": self.database_name,
            "source_collection": self.source_collection,
            "target_collection": self.target_collection,
            "bunch_size": self.bunch_size,
            "flush_interval_ms": self.flush_interval_ms,
            "scan_page_size": self.scan_page_size,
            "scan_pagination": self.scan_pagination,
            "feed_resubscribe_attempts": self.feed_resubscribe_attempts,
            "anonymizer": self.anonymizer,
        }
