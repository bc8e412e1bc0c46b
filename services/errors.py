"""
Error kinds surfaced by the bundle services.

Every error carries a machine-readable ``kind`` plus a human-readable ``detail``;
routers translate them into ``{"success": false, "error": {...}}`` payloads.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class BundleServiceError(Exception):
    kind = "Error"
    status_code = 500

    def __init__(self, detail: str, *, last_step: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        # Last lifecycle step that completed before the failure, if any
        self.last_step = last_step

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "detail": self.detail}
        if self.last_step:
            payload["lastStep"] = self.last_step
        return payload


class ValidationFailed(BundleServiceError):
    """Bad, missing or duplicate input. Never retried."""

    kind = "ValidationFailed"
    status_code = 400

    # Reasons
    MISSING_TIER = "MissingTier"
    INVALID_QUANTITY = "InvalidQuantity"
    INVALID_DISCOUNT = "InvalidDiscount"
    DUPLICATE_NAME = "DuplicateName"
    MISSING_NAME = "MissingName"
    MISSING_RULES = "MissingRules"
    MISSING_FIELD = "MissingField"
    INVALID_FORMAT = "InvalidFormat"

    def __init__(self, reason: str, detail: str):
        super().__init__(detail)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class NotFound(BundleServiceError):
    kind = "NotFound"
    status_code = 404


class BundleNotFound(NotFound):
    def __init__(self, bundle_id: str):
        super().__init__(f"Bundle {bundle_id} not found")
        self.bundle_id = bundle_id


class RuleNotFound(NotFound):
    def __init__(self, bundle_id: str, rule_index: int):
        super().__init__(f"Rule {rule_index} not found in bundle {bundle_id}")
        self.bundle_id = bundle_id
        self.rule_index = rule_index


class RemoteRejected(BundleServiceError):
    """The coupon service declined the request (e.g. invalid percentage)."""

    kind = "RemoteRejected"
    status_code = 422


class RemoteTransportError(BundleServiceError):
    """Network failure, timeout or non-2xx status talking to Shopify."""

    kind = "RemoteTransportError"
    status_code = 502
