"""Confirmation token helpers: extraction from URLs, lifetime and expiry"""

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import unquote

from ...config import CONFIRMATION_TOKEN_TTL_HOURS

DEFAULT_TOKEN_TTL_HOURS = 48
MAX_TOKEN_TTL_HOURS = 24 * 30

_TOKEN_RUN = re.compile(r"[0-9A-Za-z-]{20,}")
_NOT_TOKEN_CHARS = re.compile(r"[^A-Za-z0-9-]")


def get_token_ttl_hours(raw: Optional[str] = CONFIRMATION_TOKEN_TTL_HOURS) -> int:
    try:
        hours = int(str(raw).strip())
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_TTL_HOURS
    if hours <= 0:
        return DEFAULT_TOKEN_TTL_HOURS
    return min(hours, MAX_TOKEN_TTL_HOURS)


def extract_confirmation_token(raw: Optional[str]) -> str:
    """
    Normalise a token taken from a link.

    Messaging apps and mail clients wrap or re-encode links, so the path
    segment can arrive as ``%7B<uuid>%7D`` or with trailing punctuation.
    The first run of 20+ token characters wins; otherwise the whole value
    is kept with anything outside ``[A-Za-z0-9-]`` removed.
    """
    raw = raw or ""
    try:
        decoded = unquote(raw, errors="strict")
    except UnicodeDecodeError:
        decoded = raw

    match = _TOKEN_RUN.search(decoded)
    candidate = match.group(0) if match else decoded
    return _NOT_TOKEN_CHARS.sub("", candidate.strip())


def build_token_expiry(from_time: Optional[datetime] = None, ttl_hours: Optional[int] = None) -> datetime:
    """Naive UTC expiry timestamp"""
    start = from_time or datetime.now(timezone.utc)
    if start.tzinfo is not None:
        start = start.astimezone(timezone.utc).replace(tzinfo=None)
    return start + timedelta(hours=ttl_hours or get_token_ttl_hours())


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return expires_at <= now


def generate_token() -> str:
    return str(uuid.uuid4())
