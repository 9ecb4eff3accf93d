"""
Record anonymization framework for the sync service.

Supports:
- Random letter replacement of names and address lines
- Email local-part replacement (domain preserved)
- Format-preserving masking (email, phone)
- Salted hashing for pseudonymization
- Configurable pipelines over dotted field paths
"""

from .base import DocumentTransformer, TransformationError, Transformer
from .pii import (
    EmailFillerTransformer,
    HashingTransformer,
    LetterFillerTransformer,
    PIIMaskingTransformer,
)
from .rules import create_anonymizer, create_customer_anonymizer, create_pii_pipeline
from .types import TransformationPipeline

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
