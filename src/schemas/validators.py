"""
Shared validation functions for bookmark input.

The predicates here are pure and side-effect free; they are used both by the
Pydantic schemas and by the mutation gateway, which reports failures as
field-level validation errors rather than raising.
"""
from urllib.parse import urlsplit

from core.config import get_settings


def is_valid_url(value: str | None) -> bool:
    """
    Check that a string is an absolute URL.

    Returns True only when the trimmed value parses and carries both a scheme
    and a host (e.g. 'https://example.com'). Empty or whitespace-only input,
    relative references ('example.com', '/path') and anything urlsplit rejects
    are invalid.
    """
    if value is None:
        return False
    candidate = value.strip()
    if not candidate:
        return False
    try:
        parsed = urlsplit(candidate)
        # Accessing hostname/port validates the netloc (e.g. bad IPv6 literals, ports)
        hostname = parsed.hostname
        _ = parsed.port
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    return bool(hostname)


def is_valid_title(value: str | None) -> bool:
    """A title is valid when it is non-empty after trimming whitespace."""
    return bool(value and value.strip())


def normalize_collection(value: str | None) -> str | None:
    """Trim a collection label; blank labels mean 'unassigned' (None)."""
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def validate_title_length(title: str | None) -> str | None:
    """Validate that title doesn't exceed maximum length."""
    settings = get_settings()
    if title is not None and len(title) > settings.max_title_length:
        raise ValueError(
            f"Title exceeds maximum length of {settings.max_title_length:,} characters "
            f"(got {len(title):,} characters).",
        )
    return title


def validate_url_length(url: str | None) -> str | None:
    """Validate that url doesn't exceed maximum length."""
    settings = get_settings()
    if url is not None and len(url) > settings.max_url_length:
        raise ValueError(
            f"URL exceeds maximum length of {settings.max_url_length:,} characters "
            f"(got {len(url):,} characters).",
        )
    return url


def validate_collection_length(collection: str | None) -> str | None:
    """Validate that a collection label doesn't exceed maximum length."""
    settings = get_settings()
    if collection is not None and len(collection) > settings.max_collection_length:
        raise ValueError(
            f"Collection exceeds maximum length of {settings.max_collection_length:,} "
            f"characters (got {len(collection):,} characters).",
        )
    return collection
