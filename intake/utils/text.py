"""Text helpers: slugs, topic keys, label cleanup, URL normalization, hashing."""

from __future__ import annotations

import hashlib
import re
from typing import Callable
from urllib.parse import urlsplit, urlunsplit

_SLUG_STRIP = re.compile(r"[^a-z0-9\s-]")
_SLUG_COLLAPSE = re.compile(r"[\s-]+")
_TOPIC_SEPARATORS = re.compile(r"[\W_]+", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")
_DEFAULT_PORTS = {"http": 80, "https": 443}

TOPIC_KEY_MAX_LENGTH = 64


def slugify(value: str | None) -> str:
    if not value or not value.strip():
        return ""
    slug = _SLUG_STRIP.sub("", value.lower())
    return _SLUG_COLLAPSE.sub("-", slug).strip("-")


def unique_slug(value: str, exists: Callable[[str], bool], *, fallback: str = "item") -> str:
    """Return `slugify(value)`, suffixed -2, -3, ... until `exists` says it is free."""
    base = slugify(value) or fallback
    candidate = base
    suffix = 2
    while exists(candidate):
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def topic_key(topic: str | None) -> str:
    if not topic or not topic.strip():
        return "unknown"
    key = _TOPIC_SEPARATORS.sub("-", topic.strip().lower()).strip("-")
    key = key[:TOPIC_KEY_MAX_LENGTH]
    return key or "unknown"


def clean_label(label: str | None) -> str:
    """Lowercase a raw tag/theme label and drop sentiment markers (+/-) at either end."""
    text = (label or "").strip().lower()
    text = text.strip("+-").strip()
    text = text.replace("_", " ")
    return _WHITESPACE.sub(" ", text)


def sentiment_marker(label: str | None) -> str:
    """The "+" or "-" a label carries at its end (or, failing that, its start); "" when unmarked."""
    text = (label or "").strip()
    for marker in (text[-1:], text[:1]):
        if marker in ("+", "-"):
            return marker
    return ""


def normalize_url(url: str | None) -> str:
    if not url or not url.strip():
        return ""
    raw = url.strip()
    if "://" not in raw:
        raw = "https://" + raw
    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    netloc = host
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    path = parts.path.rstrip("/") or ""
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()
