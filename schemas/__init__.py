"""
Bundle Schemas Package
Typed request DTOs for the admin intents and the cart webhook.
"""

from .bundle_schemas import (
    # Admin intents
    AdminAction,
    CreateBundleAction,
    UpdateBundleAction,
    DeleteBundleAction,
    DiscountAction,
    INTENT_MODELS,
    parse_admin_action,

    # Legacy endpoint + webhook payloads
    CreateDiscountRequest,
    CartLineItem,
    CartUpdatePayload,
)
