"""
Async Shopify Admin API client.

Implements the three remote contracts the bundle services consume:
- coupon service: ``create_code`` / ``delete_code`` (discountCodeBasic*)
- shared-state slot: ``set_snapshot`` (metafieldsSet on the shop)
- catalog helpers: ``list_collections`` / ``list_products`` / ``verify_access_token``

No retries happen here; callers decide what a failure means.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

import settings
from services.errors import RemoteRejected, RemoteTransportError

logger = logging.getLogger(__name__)

CREATE_CODE_MUTATION = """
mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
  discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
    codeDiscountNode { id }
    userErrors { field message }
  }
}
"""

DELETE_CODE_MUTATION = """
mutation discountCodeBasicDelete($id: ID!) {
  discountCodeBasicDelete(id: $id) {
    deletedDiscountCodeBasicId
    userErrors { field message }
  }
}
"""

SHOP_ID_QUERY = """
query { shop { id } }
"""

METAFIELDS_SET_MUTATION = """
mutation UpdateShopMetafield($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    userErrors { field message }
  }
}
"""


def _format_user_errors(errors: List[Dict[str, Any]]) -> str:
    return "; ".join(str(err.get("message") or err) for err in errors)


class ShopifyAdminClient:
    """Thin async wrapper over the Admin GraphQL and REST endpoints."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop_domain = (shop_domain or "").lower().strip()
        self.access_token = (access_token or "").strip()
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout if timeout is not None else settings.SHOPIFY_TIMEOUT_SECONDS
        self._transport = transport
        self._shop_gid: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.shop_domain and self.access_token)

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    # ---------------------------------------------------------
    # Low-level request handler
    # ---------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.configured:
            raise RemoteTransportError("Shopify credentials are not configured")

        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, json=json)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteTransportError(
                f"Shopify {method} {path} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteTransportError(f"Shopify {method} {path} failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteTransportError(f"Shopify {method} {path} returned invalid JSON") from e

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a GraphQL document and return its ``data`` block."""
        payload = await self._request("POST", "/graphql.json", json={"query": query, "variables": variables or {}})
        if payload.get("errors"):
            raise RemoteRejected(f"Shopify GraphQL errors: {_format_user_errors(payload['errors'])}")
        return payload.get("data") or {}

    # ---------------------------------------------------------
    # Coupon service
    # ---------------------------------------------------------
    async def create_code(
        self,
        collection_gid: str,
        code: str,
        threshold_qty: int,
        percentage_off: float,
        *,
        usage_limit: int = 1,
        title: Optional[str] = None,
        starts_at: Optional[str] = None,
    ) -> str:
        """Create a basic code discount locked to one collection; returns the discount node GID."""
        discount_input = {
            "title": title or code,
            "code": code,
            "startsAt": starts_at or datetime.now(timezone.utc).isoformat(),
            "usageLimit": usage_limit,
            "customerSelection": {"all": True},
            "customerGets": {
                "value": {"percentage": float(percentage_off) / 100},
                "items": {"collections": {"add": [collection_gid]}},
            },
            "minimumRequirement": {
                "quantity": {"greaterThanOrEqualToQuantity": str(int(threshold_qty))},
            },
        }
        data = await self.graphql(CREATE_CODE_MUTATION, {"basicCodeDiscount": discount_input})
        result = data.get("discountCodeBasicCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise RemoteRejected(f"Discount rejected: {_format_user_errors(user_errors)}")

        node = result.get("codeDiscountNode") or {}
        if not node.get("id"):
            raise RemoteRejected("Discount creation returned no discount node")
        logger.info("[shopify] Created discount code=%s node=%s", code, node["id"])
        return node["id"]

    async def delete_code(self, remote_id: str) -> None:
        data = await self.graphql(DELETE_CODE_MUTATION, {"id": remote_id})
        result = data.get("discountCodeBasicDelete") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise RemoteRejected(f"Discount delete rejected: {_format_user_errors(user_errors)}")
        logger.info("[shopify] Deleted discount node=%s", remote_id)

    # ---------------------------------------------------------
    # Shared-state slot
    # ---------------------------------------------------------
    async def get_shop_gid(self) -> str:
        if self._shop_gid is None:
            data = await self.graphql(SHOP_ID_QUERY)
            shop_gid = (data.get("shop") or {}).get("id")
            if not shop_gid:
                raise RemoteRejected("Shop query returned no id")
            self._shop_gid = shop_gid
        return self._shop_gid

    async def set_snapshot(self, key: str, value: str, *, namespace: Optional[str] = None) -> None:
        owner_id = await self.get_shop_gid()
        data = await self.graphql(
            METAFIELDS_SET_MUTATION,
            {
                "metafields": [
                    {
                        "namespace": namespace or settings.METAFIELD_NAMESPACE,
                        "key": key,
                        "type": "json",
                        "value": value,
                        "ownerId": owner_id,
                    }
                ]
            },
        )
        user_errors = (data.get("metafieldsSet") or {}).get("userErrors") or []
        if user_errors:
            raise RemoteRejected(f"Metafield rejected: {_format_user_errors(user_errors)}")

    # ---------------------------------------------------------
    # Catalog helpers
    # ---------------------------------------------------------
    async def verify_access_token(self) -> Dict[str, Any]:
        return await self._request("GET", "/shop.json")

    async def list_collections(self) -> List[Dict[str, str]]:
        """Custom + smart collections, fetched in parallel; a failing half is logged and skipped."""
        custom, smart = await asyncio.gather(
            self._request("GET", "/custom_collections.json", params={"limit": 250}),
            self._request("GET", "/smart_collections.json", params={"limit": 250}),
            return_exceptions=True,
        )

        collections: List[Dict[str, str]] = []
        for label, payload in (("custom_collections", custom), ("smart_collections", smart)):
            if isinstance(payload, Exception):
                logger.warning("[shopify] Failed to fetch %s: %s", label, payload)
                continue
            for item in payload.get(label) or []:
                collections.append(
                    {
                        "id": str(item.get("id")),
                        "title": item.get("title") or "",
                        "handle": item.get("handle") or "",
                    }
                )
        return collections

    async def list_products(self) -> List[Dict[str, Any]]:
        """Product summaries; ``inventory`` is the sum of variant inventory quantities."""
        payload = await self._request("GET", "/products.json")
        return [_product_summary(item) for item in payload.get("products") or []]


def _product_summary(product: Dict[str, Any]) -> Dict[str, Any]:
    inventory = 0
    for variant in product.get("variants") or []:
        try:
            inventory += int(variant.get("inventory_quantity") or 0)
        except (TypeError, ValueError):
            continue
    images = product.get("images") or []
    image = (product.get("image") or {}).get("src") or (images[0].get("src") if images else None)
    return {
        "id": product.get("id"),
        "title": product.get("title"),
        "handle": product.get("handle"),
        "status": product.get("status"),
        "inventory": inventory,
        "image": image,
    }


def client_from_settings() -> ShopifyAdminClient:
    return ShopifyAdminClient(settings.SHOPIFY_SHOP_DOMAIN, settings.SHOPIFY_ACCESS_TOKEN)
