"""
Anonymization rules and pipeline factories.

Provides pre-configured pipelines for the customer documents mirrored by
the sync service and a selector used by configuration.
"""

import logging

from .base import DocumentTransformer
from .pii import (
    DEFAULT_FILLER_SIZE,
    EmailFillerTransformer,
    HashingTransformer,
    LetterFillerTransformer,
    PIIMaskingTransformer,
)
from .types import TransformationPipeline

logger = logging.getLogger(__name__)

# Customer fields replaced with random letters
CUSTOMER_FILLER_FIELDS = (
    r"firstName",
    r"lastName",
    r"address\.line1",
    r"address\.line2",
    r"address\.postcode",
)


def create_customer_anonymizer(filler_size: int = DEFAULT_FILLER_SIZE) -> TransformationPipeline:
    """
    Create the customer anonymizer.

    Names and the street part of the address are replaced with random
    letters; the email keeps its domain. City, state, country and
    timestamps are left intact.

    Args:
        filler_size: Length of the random letter filler

    Returns:
        Configured TransformationPipeline
    """
    filler = LetterFillerTransformer(filler_size)
    pipeline = TransformationPipeline(name="customer")

    for field_pattern in CUSTOMER_FILLER_FIELDS:
        pipeline.add_transformer(field_pattern, filler, case_sensitive=True)
    pipeline.add_transformer(r"email", EmailFillerTransformer(filler_size), case_sensitive=True)

    logger.info(f"Created customer anonymizer with {pipeline.get_transformer_count()} transformers")
    logger.debug(f"Customer anonymizer field patterns: {pipeline.get_patterns()}")
    return pipeline


def create_pii_pipeline(salt: str | None = None) -> TransformationPipeline:
    """
    Create a generic PII pipeline: masking for contact data, hashing for names.

    Args:
        salt: Salt for hashing. If None, a random salt is generated and
            pseudonyms are not stable across runs.

    Returns:
        Configured TransformationPipeline

    Raises:
        ValueError: If salt is provided but is less than 8 characters
    """
    pipeline = TransformationPipeline(name="pii")

    masker = PIIMaskingTransformer()
    pipeline.add_transformer(r"(.*\.)?.*email.*", masker)
    pipeline.add_transformer(r"(.*\.)?.*(phone|mobile).*", masker)
    pipeline.add_transformer(r"(.*\.)?(line1|line2|postcode)", masker)

    hasher = HashingTransformer(algorithm="sha256", salt=salt, truncate=16)
    pipeline.add_transformer(r"(.*\.)?.*name", hasher)

    logger.info(f"Created PII pipeline with {pipeline.get_transformer_count()} transformers")
    logger.debug(f"PII pipeline field patterns: {pipeline.get_patterns()}")
    return pipeline


ANONYMIZERS = ("customer", "pii")


def create_anonymizer(
    name: str = "customer",
    filler_size: int = DEFAULT_FILLER_SIZE,
    salt: str | None = None,
) -> DocumentTransformer:
    """
    Build the anonymizer selected by configuration.

    Args:
        name: "customer" or "pii"
        filler_size: Filler length for the customer anonymizer
        salt: Hash salt for the PII pipeline

    Raises:
        ValueError: If the name is unknown
    """
    if name == "customer":
        return create_customer_anonymizer(filler_size)
    if name == "pii":
        return create_pii_pipeline(salt)
    raise ValueError(f"Unknown anonymizer '{name}'. Expected one of: {', '.join(ANONYMIZERS)}")
