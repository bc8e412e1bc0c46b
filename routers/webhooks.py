"""
Shopify webhooks
carts/create + carts/update: compute the best matching bundle tier for diagnostics.
The discount itself is applied at checkout by the function reading the metafield snapshot.
"""
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from starlette.responses import JSONResponse
import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

from routers.bundles import get_store
from schemas.bundle_schemas import CartUpdatePayload
from services.obs.metrics import metrics_collector
from services.storage import StorageService
from services.tier_matcher import match_cart
import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def verify_webhook_hmac(body: bytes, header_value: Optional[str], secret: Optional[str]) -> bool:
    """Shopify signs the raw body with the app secret (base64 HMAC-SHA256)."""
    if not secret:
        return True
    if not header_value:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    # bytes comparison; str compare_digest rejects non-ASCII input
    return hmac.compare_digest(expected.encode("utf-8"), header_value.strip().encode("utf-8"))


@router.post("/carts/update")
@router.post("/carts/create")
async def cart_update_webhook(request: Request, store: StorageService = Depends(get_store)):
    raw = await request.body()
    if not verify_webhook_hmac(raw, request.headers.get("X-Shopify-Hmac-Sha256"), settings.SHOPIFY_API_SECRET):
        logger.warning("[webhook] Rejected cart webhook with bad HMAC")
        return JSONResponse(status_code=401, content={"error": "Invalid webhook signature"})

    try:
        payload = CartUpdatePayload.model_validate(json.loads(raw or b"{}"))
    except (ValueError, ValidationError) as e:
        logger.warning(f"[webhook] Malformed cart payload: {e}")
        return JSONResponse(status_code=400, content={"error": "Malformed cart payload"})

    shop = request.headers.get("X-Shopify-Shop-Domain", "-")
    topic = request.headers.get("X-Shopify-Topic", "carts/update")
    logger.info("[webhook] Cart webhook topic=%s shop=%s lines=%d", topic, shop, len(payload.line_items))
    for item in payload.line_items:
        logger.debug("[webhook]   - [ID: %s] %s (Qty: %s) @ %s", item.variant_id, item.title, item.quantity, item.price)

    bundles = await store.list_bundles()
    match = match_cart(bundles, [item.model_dump() for item in payload.line_items])
    metrics_collector.incr("cart_matches" if match else "cart_misses")

    return {"matched": match is not None, "match": match.to_dict() if match else None}
