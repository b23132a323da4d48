"""Header and snippet normalization.

Objective:
    Turn raw Gmail header values and snippets into compact, safe plain
    text, and derive the sender key used to group emails.

Responsibilities:
    - Extract a normalized sender key from a ``From`` header.
    - Decode HTML entities in Gmail snippets and compress whitespace.
    - Provide small helpers for address inspection (domain extraction).

High-level call tree:
    - :func:`normalize_sender` (grouping key)
    - :func:`clean_snippet`
        - :func:`clean_text`
    - :func:`extract_sender_domain` (group display)

Privacy notes:
    Only headers and the Gmail snippet ever pass through here; message
    bodies are never fetched.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup

UNKNOWN_SENDER = "(unknown)"

_ANGLE_ADDRESS_RE = re.compile(r"<([^>]+)>")


def normalize_sender(from_header: Optional[str]) -> str:
    """Derive the grouping key for a ``From`` header.

    Rules, in order:
        - ``"Name <addr@x.com>"`` -> ``addr@x.com`` (lowercased, trimmed)
        - any other non-blank value -> the trimmed, lowercased value
        - blank / missing -> :data:`UNKNOWN_SENDER`

    The function is idempotent: normalizing its own output returns the
    same value.

    Args:
        from_header: Raw ``From`` header.

    Returns:
        str: Normalized sender key.
    """
    raw = from_header or ""
    match = _ANGLE_ADDRESS_RE.search(raw)
    if match:
        address = match.group(1).strip().lower()
        if address:
            return address

    return raw.strip().lower() or UNKNOWN_SENDER


def clean_text(text: str) -> str:
    """Normalize and compact plain text.

    Removes:
    - Zero-width and non-breaking space characters
    - Repeated whitespace and newlines

    Args:
        text: Raw text to clean.

    Returns:
        str: Cleaned text.
    """
    if not text:
        return ""

    # Zero-width joiners and similar are common in marketing snippets
    text = re.sub(r"[\u200b-\u200f\u2060\ufeff\u034f]", "", text)
    text = text.replace("\xa0", " ")
    text = re.sub(r"\s+", " ", text)

    return text.strip()


def clean_snippet(snippet: Optional[str], max_length: int = 500) -> str:
    """Convert a Gmail snippet to plain text.

    Gmail returns snippets HTML-escaped (``&#39;``, ``&amp;``). They are
    decoded with BeautifulSoup so the model and the page see readable text.

    Args:
        snippet: Raw snippet from the Gmail API.
        max_length: Truncation limit.

    Returns:
        str: Plain-text snippet.
    """
    if not snippet:
        return ""

    text = BeautifulSoup(snippet, "html.parser").get_text(separator=" ")
    cleaned = clean_text(text)

    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + "..."

    return cleaned


def extract_sender_domain(email_address: str) -> Optional[str]:
    """Extract the domain part from an email address.

    Args:
        email_address: Email address string.

    Returns:
        Optional[str]: Domain part of email, or None if invalid.
    """
    if not email_address or "@" not in email_address:
        return None

    parts = email_address.lower().split("@")
    if len(parts) == 2 and parts[1]:
        return parts[1]
    return None
