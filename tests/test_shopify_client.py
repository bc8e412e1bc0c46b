import asyncio
import json

import httpx
import pytest

from services.errors import RemoteRejected, RemoteTransportError
from services.shopify_client import ShopifyAdminClient


def _client(handler):
    return ShopifyAdminClient(
        "Test-Shop.myshopify.com",
        "shpat_test",
        api_version="2024-10",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def test_create_code_builds_collection_locked_discount():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["token"] = request.headers["X-Shopify-Access-Token"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"data": {"discountCodeBasicCreate": {"codeDiscountNode": {"id": "gid://shopify/DiscountCodeNode/42"}, "userErrors": []}}},
        )

    remote_id = asyncio.run(
        _client(handler).create_code(
            "gid://shopify/Collection/123", "GOLD_000001", 10, 25, usage_limit=1, title="Gold Bundle Discount"
        )
    )

    assert remote_id == "gid://shopify/DiscountCodeNode/42"
    assert seen["path"] == "/admin/api/2024-10/graphql.json"
    assert seen["token"] == "shpat_test"
    discount = seen["body"]["variables"]["basicCodeDiscount"]
    assert discount["code"] == "GOLD_000001"
    assert discount["title"] == "Gold Bundle Discount"
    assert discount["usageLimit"] == 1
    assert discount["customerGets"]["value"]["percentage"] == 0.25
    assert discount["customerGets"]["items"]["collections"]["add"] == ["gid://shopify/Collection/123"]
    assert discount["minimumRequirement"]["quantity"]["greaterThanOrEqualToQuantity"] == "10"
    assert discount["startsAt"]


def test_user_errors_are_remote_rejected():
    def handler(request):
        return httpx.Response(
            200,
            json={"data": {"discountCodeBasicCreate": {"codeDiscountNode": None, "userErrors": [{"field": ["code"], "message": "Code must be unique"}]}}},
        )

    with pytest.raises(RemoteRejected) as excinfo:
        asyncio.run(_client(handler).create_code("gid://shopify/Collection/1", "DUP_1", 2, 10))
    assert "Code must be unique" in excinfo.value.detail


def test_graphql_top_level_errors_are_remote_rejected():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Access denied"}]})

    with pytest.raises(RemoteRejected):
        asyncio.run(_client(handler).delete_code("gid://shopify/DiscountCodeNode/1"))


def test_http_failure_is_transport_error():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    with pytest.raises(RemoteTransportError) as excinfo:
        asyncio.run(_client(handler).delete_code("gid://shopify/DiscountCodeNode/1"))
    assert "503" in excinfo.value.detail


def test_connection_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteTransportError):
        asyncio.run(_client(handler).verify_access_token())


def test_unconfigured_client_never_calls_out():
    client = ShopifyAdminClient("", "", transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    assert client.configured is False
    with pytest.raises(RemoteTransportError):
        asyncio.run(client.delete_code("gid://shopify/DiscountCodeNode/1"))


def test_set_snapshot_targets_shop_metafield_and_caches_shop_id():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if "shop { id }" in body["query"]:
            return httpx.Response(200, json={"data": {"shop": {"id": "gid://shopify/Shop/9"}}})
        return httpx.Response(200, json={"data": {"metafieldsSet": {"userErrors": []}}})

    client = _client(handler)

    async def scenario():
        await client.set_snapshot("rules", '{"bundles": []}')
        await client.set_snapshot("rules", '{"bundles": []}', namespace="custom_ns")

    asyncio.run(scenario())

    assert len(bodies) == 3
    first = bodies[1]["variables"]["metafields"][0]
    assert first["ownerId"] == "gid://shopify/Shop/9"
    assert first["namespace"] == "bundle_app"
    assert first["key"] == "rules"
    assert first["type"] == "json"
    assert bodies[2]["variables"]["metafields"][0]["namespace"] == "custom_ns"


def test_list_collections_skips_failing_half():
    def handler(request):
        if request.url.path.endswith("/custom_collections.json"):
            return httpx.Response(200, json={"custom_collections": [{"id": 1, "title": "Summer", "handle": "summer"}]})
        return httpx.Response(500)

    collections = asyncio.run(_client(handler).list_collections())

    assert collections == [{"id": "1", "title": "Summer", "handle": "summer"}]


def test_list_products_sums_variant_inventory():
    def handler(request):
        assert request.url.path == "/admin/api/2024-10/products.json"
        return httpx.Response(
            200,
            json={
                "products": [
                    {
                        "id": 1,
                        "title": "Tee",
                        "handle": "tee",
                        "status": "active",
                        "variants": [{"inventory_quantity": 3}, {"inventory_quantity": None}, {"inventory_quantity": "4"}],
                        "image": {"src": "https://cdn.example.com/tee.png"},
                    },
                    {
                        "id": 2,
                        "title": "Cap",
                        "handle": "cap",
                        "images": [{"src": "https://cdn.example.com/cap.png"}],
                    },
                ]
            },
        )

    products = asyncio.run(_client(handler).list_products())

    assert products[0] == {
        "id": 1,
        "title": "Tee",
        "handle": "tee",
        "status": "active",
        "inventory": 7,
        "image": "https://cdn.example.com/tee.png",
    }
    assert products[1]["status"] is None
    assert products[1]["inventory"] == 0
    assert products[1]["image"] == "https://cdn.example.com/cap.png"
