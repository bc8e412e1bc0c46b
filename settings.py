"""
Centralized configuration for shop scoping and Shopify access.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SHOP_ID: str = os.getenv("DEFAULT_SHOP_ID") or "demo-shop"

# Shopify Admin API access (custom-app token; OAuth lives outside this service)
SHOPIFY_SHOP_DOMAIN: str = os.getenv("SHOPIFY_SHOP_DOMAIN", "")
SHOPIFY_ACCESS_TOKEN: str = os.getenv("SHOPIFY_ACCESS_TOKEN", "")
SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION", "2024-10")
SHOPIFY_API_SECRET: Optional[str] = os.getenv("SHOPIFY_API_SECRET") or None
SHOPIFY_APP_URL: Optional[str] = os.getenv("SHOPIFY_APP_URL") or None
SHOPIFY_TIMEOUT_SECONDS: float = float(os.getenv("SHOPIFY_TIMEOUT_SECONDS", "20"))

# Shared-state slot read by the checkout function
METAFIELD_NAMESPACE: str = os.getenv("METAFIELD_NAMESPACE", "bundle_app")
METAFIELD_KEY: str = os.getenv("METAFIELD_KEY", "rules")

COLLECTION_GID_PREFIX = "gid://shopify/Collection/"


def sanitize_shop_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw IDs (strip whitespace, lower-case domains)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip()
    if not text:
        return None
    return text.lower()


def resolve_shop_id(*candidates: Optional[Any]) -> str:
    """
    Pick the first usable shop identifier from candidates, otherwise fall back to DEFAULT_SHOP_ID.
    """
    for candidate in candidates:
        normalized = sanitize_shop_id(candidate)
        if normalized:
            return normalized
    return DEFAULT_SHOP_ID


def normalize_collection_gid(collection_id: Optional[Any]) -> str:
    """Accept either a numeric collection id or a full GID and return the GID form."""
    text = str(collection_id or "").strip()
    if not text or text.startswith(COLLECTION_GID_PREFIX):
        return text
    return f"{COLLECTION_GID_PREFIX}{text}"
