"""
Base transformer classes and shared metrics.

Two levels of transformation exist:
- Transformer: maps one field value to an anonymized value
- DocumentTransformer: maps one record to an anonymized record with the
  same identity; this is the only contract the sync pipeline depends on
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

IDENTITY_FIELD = "_id"


# Metrics
TRANSFORMATIONS_APPLIED = Counter(
    "transformations_applied_total",
    "Total field transformations applied",
    ["transformer_type"],
)

TRANSFORMATION_TIME = Histogram(
    "transformation_seconds",
    "Time to transform one record",
    ["transformer_type"],
    buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1],
)

TRANSFORMATION_ERRORS = Counter(
    "transformation_errors_total",
    "Transformation errors",
    ["transformer_type", "error_type"],
)


class TransformationError(Exception):
    """Raised when a record cannot be anonymized; never recovered locally."""

    pass


class Transformer(ABC):
    """Base class for field-level transformers."""

    @abstractmethod
    def transform(self, value: Any, context: dict[str, Any]) -> Any:
        """
        Transform a single value.

        Args:
            value: Value to transform
            context: Transformation context (field_name, field_path, record)

        Returns:
            Transformed value
        """

    def get_type(self) -> str:
        """Get transformer type for metrics."""
        return self.__class__.__name__


class DocumentTransformer(ABC):
    """
    Record-level transform contract.

    Implementations must be pure (no I/O, no shared mutable state), must
    not mutate their input, and must return a record whose identity field
    equals the input's.
    """

    @abstractmethod
    def transform(self, record: dict[str, Any]) -> dict[str, Any]:
        """Return the anonymized copy of ``record``."""

    def transform_many(self, records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        return [self.transform(record) for record in records]

    def get_type(self) -> str:
        return self.__class__.__name__
