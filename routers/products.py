"""
Products Router
Product listing (title, status, summed variant inventory, image) for the admin.
"""
from fastapi import APIRouter, Depends
import logging

from routers.bundles import error_response, get_shopify_client
from services.errors import BundleServiceError
from services.shopify_client import ShopifyAdminClient

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/products")
async def get_products(client: ShopifyAdminClient = Depends(get_shopify_client)):
    try:
        return await client.list_products()
    except BundleServiceError as e:
        logger.error(f"Products fetch failed kind={e.kind} detail={e.detail}")
        return error_response(e)
