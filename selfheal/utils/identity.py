from __future__ import annotations

import hashlib


def selector_id(locator: str, page_url: str) -> str:
    """Stable identity for a locator on a given page."""

    digest = hashlib.md5(f"{locator}:{page_url}".encode("utf-8")).hexdigest()
    return digest[:16]


def sanitize_selector(locator: str, limit: int = 100) -> str:
    if len(locator) <= limit:
        return locator
    return locator[: limit - 3] + "..."
