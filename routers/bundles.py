"""
Bundles Router
Admin surface for tiered bundles: list, and one intent-keyed action endpoint
(create / update / delete / create-discount / revoke-discount).
"""
from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse
from typing import Any, Dict
import json
import logging

from schemas.bundle_schemas import (
    CreateBundleAction,
    DeleteBundleAction,
    DiscountAction,
    UpdateBundleAction,
    parse_admin_action,
)
from services.discount_lifecycle import DiscountLifecycleManager, IssueOutcome
from services.errors import BundleServiceError, ValidationFailed
from services.metafield_sync import MetafieldSync
from services.shopify_client import ShopifyAdminClient, client_from_settings
from services.storage import StorageService, serialize_bundle, storage
import settings

logger = logging.getLogger(__name__)
router = APIRouter()


# ---- dependencies (overridden in tests) ----
def get_store() -> StorageService:
    return storage


def get_shopify_client() -> ShopifyAdminClient:
    return client_from_settings()


def build_lifecycle(store: StorageService, client: Any) -> DiscountLifecycleManager:
    return DiscountLifecycleManager(store, client, MetafieldSync(store, client))


def get_lifecycle(
    store: StorageService = Depends(get_store),
    client: ShopifyAdminClient = Depends(get_shopify_client),
) -> DiscountLifecycleManager:
    return build_lifecycle(store, client)


def error_response(exc: BundleServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


def issue_payload(outcome: IssueOutcome) -> Dict[str, Any]:
    bundle = outcome.bundle
    return {
        "success": True,
        "discountCode": outcome.code,
        "ruleIndex": outcome.rule_index,
        "alreadyActive": outcome.already_active,
        "collectionId": settings.normalize_collection_gid(bundle.collection_id),
        "revoked": [r.to_dict() for r in outcome.revoked],
        "lastStep": outcome.last_step,
        "bundle": serialize_bundle(bundle),
        "message": (
            "Discount already active for this tier"
            if outcome.already_active
            else "Discount created and locked to bundle collection"
        ),
    }


async def read_body(request: Request) -> Dict[str, Any]:
    """JSON or form-encoded body, read once."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationFailed(ValidationFailed.INVALID_FORMAT, "Request body is not valid JSON") from e
        if not isinstance(body, dict):
            raise ValidationFailed(ValidationFailed.INVALID_FORMAT, "Request body must be a JSON object")
        return body
    form = await request.form()
    return {key: value for key, value in form.items()}


@router.get("/bundles")
async def get_bundles(store: StorageService = Depends(get_store)):
    """Get list of bundles, newest first"""
    bundles = await store.list_bundles()
    return [serialize_bundle(bundle) for bundle in bundles]


@router.post("/bundles")
async def bundle_action(request: Request, lifecycle: DiscountLifecycleManager = Depends(get_lifecycle)):
    """Dispatch an admin intent"""
    try:
        action = parse_admin_action(await read_body(request))
        logger.info("Bundle action intent=%s", action.intent)

        if isinstance(action, CreateBundleAction):
            bundle = await lifecycle.create_bundle(
                action.name or "",
                action.collection_id or "",
                action.collection_title or "",
                action.parsed_rules() or [],
            )
            return {
                "success": True,
                "id": bundle.id,
                "bundle": serialize_bundle(bundle),
                "message": "Bundle created successfully",
            }

        if isinstance(action, UpdateBundleAction):
            bundle = await lifecycle.update_bundle(
                action.bundle_id,
                name=action.name if action.intent != "update-rules" else None,
                rules=action.parsed_rules() if action.intent != "update-bundle" else None,
            )
            return {"success": True, "bundle": serialize_bundle(bundle), "message": "Bundle updated successfully"}

        if isinstance(action, DeleteBundleAction):
            outcome = await lifecycle.delete_bundle(action.bundle_id)
            return {
                "success": True,
                "bundleId": outcome.bundle_id,
                "revocations": [r.to_dict() for r in outcome.revocations],
                "message": "Bundle deleted successfully",
            }

        if isinstance(action, DiscountAction):
            if action.intent == "create-discount":
                return issue_payload(await lifecycle.issue_discount(action.bundle_id, action.rule_index))
            bundle, revocation = await lifecycle.revoke_discount(action.bundle_id, action.rule_index)
            return {
                "success": True,
                "bundle": serialize_bundle(bundle),
                "revocation": revocation.to_dict(),
                "message": "Discount revoked",
            }

        raise ValidationFailed(ValidationFailed.INVALID_FORMAT, "Invalid intent")

    except BundleServiceError as e:
        logger.warning(f"Bundle action failed kind={e.kind} detail={e.detail}")
        return error_response(e)
