"""
Collections Router
Lists the shop's custom + smart collections for the bundle picker.
"""
from fastapi import APIRouter, Depends
import logging

from routers.bundles import get_shopify_client
from services.errors import BundleServiceError
from services.shopify_client import ShopifyAdminClient

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/collections")
async def get_collections(client: ShopifyAdminClient = Depends(get_shopify_client)):
    """Returns [] rather than an error so the picker can still render"""
    if not client.configured:
        logger.error("No Shopify credentials configured; returning no collections")
        return []
    try:
        return await client.list_collections()
    except BundleServiceError as e:
        logger.error(f"Collections fetch failed kind={e.kind} detail={e.detail}")
        return []
