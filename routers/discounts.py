"""
Create-discount endpoint
Standalone issue endpoint used by the storefront extension; optional shop
credentials in the body take precedence over the configured token.
"""
from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse
import logging

from routers.bundles import build_lifecycle, error_response, get_shopify_client, get_store, issue_payload
from schemas.bundle_schemas import CreateDiscountRequest
from services.errors import BundleServiceError
from services.shopify_client import ShopifyAdminClient
from services.storage import StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/create-discount")
async def create_discount(
    request: CreateDiscountRequest,
    store: StorageService = Depends(get_store),
    configured_client: ShopifyAdminClient = Depends(get_shopify_client),
):
    """Issue (or return the live) code for one rule, revoking lower tiers first."""
    client = configured_client
    if request.shop_domain and request.access_token:
        client = ShopifyAdminClient(request.shop_domain, request.access_token)
        try:
            await client.verify_access_token()
        except BundleServiceError as e:
            logger.warning("[create-discount] Token verification failed shop=%s: %s", request.shop_domain, e.detail)
            return JSONResponse(
                status_code=401,
                content={"success": False, "error": {"kind": "Unauthorized", "detail": "Invalid Shopify access token"}},
            )

    try:
        outcome = await build_lifecycle(store, client).issue_discount(request.bundle_id, request.rule_index)
    except BundleServiceError as e:
        logger.warning(f"[create-discount] failed kind={e.kind} detail={e.detail}")
        return error_response(e)
    return issue_payload(outcome)
