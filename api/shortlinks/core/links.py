from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from urllib.parse import urlparse

from dateutil import parser as date_parser

ROOT_KEY = "_root"
MAX_KEY_LENGTH = 190
MAX_URL_LENGTH = 32000

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*$")
_HEADER_STRIP_RE = re.compile(r"[\W_]+")
_WHITESPACE_RE = re.compile(r"\s+")
_LINK_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_header(value: str) -> str:
    """Fold a CSV header to a comparable form: "Short Link" == "short_link"."""
    folded = unicodedata.normalize("NFKC", value.lstrip("\ufeff")).lower()
    return _HEADER_STRIP_RE.sub("", folded)


def normalize_string(value: str) -> str:
    folded = unicodedata.normalize("NFKC", value.lstrip("\ufeff"))
    return _WHITESPACE_RE.sub(" ", folded).strip()


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    scheme = parsed.scheme.lower()
    if not scheme or not _SCHEME_RE.match(scheme):
        return False
    if scheme in {"http", "https"}:
        try:
            return bool(parsed.hostname)
        except ValueError:
            return False
    return bool(parsed.netloc or parsed.path)


def split_link(value: str) -> tuple[str, str]:
    """Split "example.com/a/b" into ("example.com", "a/b"); no path means the root key."""
    stripped = _LINK_SCHEME_RE.sub("", value.strip())
    domain, _, key = stripped.partition("/")
    return domain.lower(), key or ROOT_KEY


def short_link(domain: str, key: str) -> str:
    if key == ROOT_KEY:
        return f"https://{domain}"
    return f"https://{domain}/{key}"


def parse_datetime(value: str) -> datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.isdigit() and len(raw) >= 9:
        return _parse_epoch(int(raw))
    try:
        parsed = date_parser.parse(raw)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_epoch(value: int) -> datetime | None:
    # Millisecond timestamps are 13 digits for any date after 2001.
    seconds = value / 1000 if value >= 10**12 else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
