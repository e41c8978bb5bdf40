"""
Common utility functions and helpers.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse
import hashlib
import hmac
import re


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HANDLER_DQ_RE = re.compile(r"\son\w+=\"[^\"]*\"", re.IGNORECASE)
_HANDLER_SQ_RE = re.compile(r"\son\w+='[^']*'", re.IGNORECASE)


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return _WS_RE.sub(" ", text).strip()


def strip_html(html: str) -> str:
    """
    Remove tags and collapse whitespace.

    Args:
        html: HTML fragment

    Returns:
        Plain text
    """
    return collapse_whitespace(_TAG_RE.sub(" ", html or ""))


def sanitize_html(html: str) -> str:
    """Drop <script> elements and inline on* event handlers."""
    sanitized = _SCRIPT_RE.sub("", html)
    sanitized = _HANDLER_DQ_RE.sub("", sanitized)
    return _HANDLER_SQ_RE.sub("", sanitized)


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def generate_subject_line(title: str, max_length: int = 60) -> str:
    """
    Derive an e-mail subject from a title.

    Titles within ``max_length`` are returned unchanged. Longer titles are cut
    at the last space when that space sits past 70% of the limit, otherwise
    hard-cut at the limit; either way ``...`` is appended.
    """
    if len(title) <= max_length:
        return title
    truncated = title[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.7:
        return truncated[:last_space] + "..."
    return truncated + "..."


def mask_secret(value: Optional[str], visible: int = 4) -> Optional[str]:
    """Show only the first few characters of a stored credential."""
    if not value:
        return None
    return value[:visible] + "…"


# ---------------------------------------------------------------------------
# Hashing / signing
# ---------------------------------------------------------------------------

def generate_hash(text: str) -> str:
    """
    Generate SHA256 hash of text.

    Args:
        text: Text to hash

    Returns:
        Hex digest of hash
    """
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def sign_payload(body: str, secret: str) -> str:
    """HMAC-SHA256 hex signature of a webhook body."""
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(body: str, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign_payload(body, secret), signature or "")


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------

def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Cosine similarity score (0-1)
    """
    if len(vec1) != len(vec2):
        raise ValueError("Vectors must have the same length")

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = sum(a * a for a in vec1) ** 0.5
    magnitude2 = sum(b * b for b in vec2) ** 0.5

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return float(dot_product / (magnitude1 * magnitude2))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is zero.

    Args:
        numerator: Numerator
        denominator: Denominator
        default: Default value if division fails

    Returns:
        Result of division or default
    """
    return numerator / denominator if denominator != 0 else default


def percentage(part: int, whole: int) -> float:
    """Percentage rounded to two decimals; 0 when ``whole`` is 0."""
    return round(safe_divide(part, whole) * 100, 2)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Plans and rate limits
# ---------------------------------------------------------------------------

TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"max_sources": 10, "max_newsletters": 5, "max_ai_generations": 50, "price": 0},
    "creator": {"max_sources": 50, "max_newsletters": 25, "max_ai_generations": 250, "price": 39},
    "pro": {"max_sources": 200, "max_newsletters": 100, "max_ai_generations": 1000, "price": 99},
    "business": {"max_sources": 1000, "max_newsletters": 500, "max_ai_generations": 5000, "price": 249},
}

RATE_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"minute": 10, "hour": 100, "day": 500},
    "starter": {"minute": 30, "hour": 500, "day": 5000},
    "professional": {"minute": 100, "hour": 2000, "day": 20000},
    "enterprise": {"minute": 1000, "hour": 10000, "day": 100000},
}


def is_rate_limited(tier: str, counts: Dict[str, int]) -> Dict[str, object]:
    """
    Check per-minute, per-hour and per-day request counts against a tier.

    A count equal to the quota is already limited. Windows are checked from
    the shortest to the longest and the first one exceeded is reported.
    """
    limits = RATE_LIMITS.get(tier)
    if limits is None:
        return {"limited": True, "reason": "Invalid tier"}

    for window, label in (("minute", "Minute"), ("hour", "Hour"), ("day", "Day")):
        if counts.get(window, 0) >= limits[window]:
            return {"limited": True, "reason": f"{label} limit exceeded"}
    return {"limited": False}


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

def is_valid_webhook_url(url: str) -> bool:
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return False
    return parsed.scheme == "https" and bool(parsed.netloc)


def calculate_retry_delay(attempt: int, base_delay: int = 1000) -> int:
    """Exponential backoff in milliseconds, capped at one hour."""
    return min(base_delay * 2 ** (attempt - 1), 3_600_000)


def should_retry(status_code: int, attempt: int, max_attempts: int = 5) -> bool:
    """Retry server errors and timeouts until ``max_attempts`` is reached."""
    if attempt >= max_attempts:
        return False
    return status_code >= 500 or status_code == 408


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

def unique(items: List[str]) -> List[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
