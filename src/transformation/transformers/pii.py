"""
PII replacement, masking and hashing transformers.

Provides field-level transformers that replace personal data with random
letters, mask it while keeping its format, or pseudonymize it with a
salted one-way hash.
"""

import hashlib
import json
import logging
import re
import secrets
import string
from typing import Any

from .base import Transformer

logger = logging.getLogger(__name__)

DEFAULT_FILLER_SIZE = 8


def random_letters(size: int) -> str:
    """Return ``size`` random ASCII letters (mixed case)."""
    return "".join(secrets.choice(string.ascii_letters) for _ in range(size))


class LetterFillerTransformer(Transformer):
    """
    Replace a value with random letters of a fixed length.

    The output length is independent of the input, so the original value
    length is not leaked. ``None`` is kept as ``None``.
    """

    def __init__(self, filler_size: int = DEFAULT_FILLER_SIZE):
        if filler_size <= 0:
            raise ValueError("filler_size must be positive")
        self.filler_size = filler_size

    def transform(self, value: Any, context: dict[str, Any]) -> Any:
        if value is None:
            return None
        return random_letters(self.filler_size)


class EmailFillerTransformer(LetterFillerTransformer):
    """
    Replace the local part of an email address with random letters.

    Examples:
        john.doe@company.com -> QwErTyUi@company.com
        not-an-email         -> QwErTyUi
    """

    def transform(self, value: Any, context: dict[str, Any]) -> Any:
        if value is None:
            return None

        filler = random_letters(self.filler_size)
        if not isinstance(value, str) or "@" not in value:
            return filler

        domain = value.rsplit("@", 1)[1]
        return f"{filler}@{domain}" if domain else filler


class PIIMaskingTransformer(Transformer):
    """
    Mask emails and phone numbers while preserving their shape.

    The kind of value is inferred from the last segment of the field path.
    Other strings are fully masked.
    """

    def __init__(self, mask_char: str = "*", email_preserve_domain: bool = True):
        """
        Initialize PII masking transformer.

        Args:
            mask_char: Character to use for masking
            email_preserve_domain: Keep email domain visible
        """
        self.mask_char = mask_char
        self.email_preserve_domain = email_preserve_domain

    def transform(self, value: Any, context: dict[str, Any]) -> Any:
        if not isinstance(value, str):
            return value

        field_name = context.get("field_name", "").lower()

        if "email" in field_name:
            return self._mask_email(value)
        if "phone" in field_name or "mobile" in field_name:
            return self._mask_phone(value)
        return self.mask_char * len(value)

    def _mask_email(self, email: str) -> str:
        """
        Mask email address keeping the first character.

        Examples:
            user@example.com -> u***@example.com
            user@@example.com -> *****************
        """
        local, _, domain = email.partition("@")

        if not local or not domain or "@" in domain:
            return self.mask_char * len(email)

        masked_local = local[0] + self.mask_char * (len(local) - 1)
        if not self.email_preserve_domain:
            domain = self.mask_char * len(domain)
        return f"{masked_local}@{domain}"

    def _mask_phone(self, phone: str) -> str:
        """
        Mask phone number keeping the last 4 digits and the punctuation.

        Examples:
            (123) 456-7890 -> (***) ***-7890
        """
        digits = re.sub(r"\D", "", phone)
        if len(digits) < 4:
            return self.mask_char * len(phone)

        to_mask = len(digits) - 4
        chars = []
        for char in phone:
            if char.isdigit() and to_mask > 0:
                chars.append(self.mask_char)
                to_mask -= 1
            else:
                chars.append(char)
        return "".join(chars)


class HashingTransformer(Transformer):
    """
    Salted one-way hash for pseudonymization.

    The same input and salt always produce the same output, so joins on a
    pseudonymized field keep working in the target collection.
    """

    ALLOWED_ALGORITHMS = frozenset({"sha256", "sha384", "sha512", "blake2b", "blake2s"})
    MIN_SALT_LENGTH = 8

    def __init__(
        self,
        algorithm: str = "sha256",
        salt: str | None = None,
        truncate: int | None = None,
    ):
        """
        Initialize hashing transformer.

        Args:
            algorithm: Hash algorithm (sha256, sha384, sha512, blake2b, blake2s)
            salt: Salt prepended before hashing. If None, a random salt is
                generated and hashes are only stable for this process.
            truncate: Optional truncation length for hash output

        Raises:
            ValueError: If algorithm is insecure or salt is too short
        """
        if algorithm.lower() not in self.ALLOWED_ALGORITHMS:
            raise ValueError(
                f"Insecure hash algorithm: {algorithm}. "
                f"Allowed algorithms: {', '.join(sorted(self.ALLOWED_ALGORITHMS))}"
            )

        if salt is None:
            salt = secrets.token_hex(16)
            logger.warning(
                "No salt provided to HashingTransformer. Generated random salt; "
                "pseudonyms will differ between runs."
            )
        elif len(salt) < self.MIN_SALT_LENGTH:
            raise ValueError(f"Salt must be at least {self.MIN_SALT_LENGTH} characters long")

        self.algorithm = algorithm.lower()
        self.salt = salt
        self.truncate = truncate

    def transform(self, value: Any, context: dict[str, Any]) -> Any:
        if value is None:
            return None

        if isinstance(value, float):
            str_value = repr(value)
        elif isinstance(value, (dict, list)):
            str_value = json.dumps(value, sort_keys=True, default=str)
        else:
            str_value = str(value)

        hasher = hashlib.new(self.algorithm)
        hasher.update(f"{self.salt}{str_value}".encode())
        hash_value = hasher.hexdigest()

        if self.truncate:
            hash_value = hash_value[: self.truncate]
        return hash_value
