"""
Record-level transformation pipeline.

Applies field transformers to every field whose dotted path matches a
registered pattern, recursing into nested documents.
"""

import logging
import re
from typing import Any, Pattern

from opentelemetry import trace

from utils.tracing import trace_operation

from .base import (
    IDENTITY_FIELD,
    TRANSFORMATION_ERRORS,
    TRANSFORMATION_TIME,
    TRANSFORMATIONS_APPLIED,
    DocumentTransformer,
    TransformationError,
    Transformer,
)

logger = logging.getLogger(__name__)


class TransformationPipeline(DocumentTransformer):
    """
    Chain field transformers by dotted path pattern.

    Patterns are full-matched against paths such as ``email`` or
    ``address.line1``. The root identity field is never transformed.
    """

    def __init__(self, name: str = "pipeline"):
        self.name = name
        self.field_transformers: dict[str, list[Transformer]] = {}
        self.compiled_patterns: dict[str, Pattern] = {}

    def add_transformer(
        self,
        field_pattern: str,
        transformer: Transformer,
        case_sensitive: bool = False,
    ) -> "TransformationPipeline":
        """
        Add transformer for field paths matching pattern.

        Args:
            field_pattern: Regex full-matched against the dotted field path
            transformer: Transformer to apply
            case_sensitive: Whether pattern matching is case sensitive

        Returns:
            The pipeline, for chaining
        """
        self.field_transformers.setdefault(field_pattern, []).append(transformer)

        flags = 0 if case_sensitive else re.IGNORECASE
        self.compiled_patterns[field_pattern] = re.compile(field_pattern, flags)

        logger.debug(f"Added {transformer.get_type()} for pattern '{field_pattern}'")
        return self

    def transform(self, record: dict[str, Any]) -> dict[str, Any]:
        """
        Return an anonymized copy of ``record``.

        Raises:
            TransformationError: If any field transformer fails
        """
        with TRANSFORMATION_TIME.labels(transformer_type=self.name).time():
            transformed = self._transform_mapping(record, prefix="", root=record)

        if IDENTITY_FIELD in record:
            transformed[IDENTITY_FIELD] = record[IDENTITY_FIELD]
        return transformed

    def transform_many(self, records):
        records = list(records)
        with trace_operation(
            "transform_records",
            kind=trace.SpanKind.INTERNAL,
            pipeline=self.name,
            record_count=len(records),
        ):
            return [self.transform(record) for record in records]

    def _transform_mapping(self, mapping: dict[str, Any], prefix: str, root: dict[str, Any]) -> dict[str, Any]:
        transformed = {}

        for field_name, value in mapping.items():
            path = f"{prefix}{field_name}"

            if not prefix and field_name == IDENTITY_FIELD:
                transformed[field_name] = value
            elif isinstance(value, dict):
                transformed[field_name] = self._transform_mapping(value, f"{path}.", root)
            else:
                transformed[field_name] = self._transform_value(path, field_name, value, root)

        return transformed

    def _transform_value(self, path: str, field_name: str, value: Any, root: dict[str, Any]) -> Any:
        for pattern_str, transformers in self.field_transformers.items():
            if not self.compiled_patterns[pattern_str].fullmatch(path):
                continue

            for transformer in transformers:
                context = {"field_name": field_name, "field_path": path, "record": root}
                try:
                    value = transformer.transform(value, context)
                except Exception as e:
                    TRANSFORMATION_ERRORS.labels(
                        transformer_type=transformer.get_type(),
                        error_type=type(e).__name__,
                    ).inc()
                    # Field values are PII; only the path goes into the message
                    raise TransformationError(
                        f"{transformer.get_type()} failed on field '{path}': {type(e).__name__}"
                    ) from e

                TRANSFORMATIONS_APPLIED.labels(transformer_type=transformer.get_type()).inc()

        return value

    def get_transformer_count(self) -> int:
        """Get total number of registered transformers."""
        return sum(len(transformers) for transformers in self.field_transformers.values())

    def get_patterns(self) -> list[str]:
        return list(self.field_transformers.keys())
