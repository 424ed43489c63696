"""Masks personal data in prompts before they leave for a vendor"""

import re
from enum import Enum
from typing import Tuple


class PIIType(str, Enum):
    EMAIL = "EMAIL"
    CARD = "CARD"
    ID_NUMBER = "ID_NUMBER"
    PHONE = "PHONE"


# Longer digit runs first so a card or ID number is not half-matched as a phone
_PII_PATTERNS = [
    (PIIType.EMAIL, re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    (PIIType.CARD, re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b")),
    (PIIType.ID_NUMBER, re.compile(r"\b(?:\d{13}|\d{3}-\d{2}-\d{4})\b")),
    (PIIType.PHONE, re.compile(r"(?<![\w+])(?:\+\d{1,3}[-.\s]?)?\(?\d{2,3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")),
]


def redact_pii(text: str) -> Tuple[str, int]:
    """Replace emails, card numbers, ID numbers and phone numbers with placeholders

    Returns:
        The redacted text and the number of replacements made
    """
    if not text:
        return text, 0

    total = 0
    for pii_type, pattern in _PII_PATTERNS:
        text, count = pattern.subn(f"[{pii_type.value}_REDACTED]", text)
        total += count
    return text, total
