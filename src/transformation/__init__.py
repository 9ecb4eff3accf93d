"""
Record anonymization for the sync service.

Provides the record-level transform contract and the customer and PII
anonymizers built on it.
"""

from transformation.transformers import (
    DocumentTransformer,
    EmailFillerTransformer,
    HashingTransformer,
    LetterFillerTransformer,
    PIIMaskingTransformer,
    TransformationError,
    TransformationPipeline,
    Transformer,
    create_anonymizer,
    create_customer_anonymizer,
    create_pii_pipeline,
)

__all__ = [
    "Transformer",
    "DocumentTransformer",
    "TransformationError",
    "LetterFillerTransformer",
    "EmailFillerTransformer",
    "PIIMaskingTransformer",
    "HashingTransformer",
    "TransformationPipeline",
    "create_customer_anonymizer",
    "create_pii_pipeline",
    "create_anonymizer",
]
