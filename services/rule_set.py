"""
Bundle rule model and validation.

Rules are persisted as camelCase JSON inside ``bundles.rules`` so the same
document can be published verbatim to the checkout function's metafield.
"""
from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from services.errors import ValidationFailed


def _as_number(value: Any) -> float:
    """Coerce loosely typed input (form fields, JSON strings) to a number; NaN on junk."""
    if isinstance(value, bool):
        return float("nan")
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return float("nan")
    text = str(value).strip()
    if not text:
        return float("nan")
    try:
        number = float(text)
    except ValueError:
        return float("nan")
    return int(number) if number.is_integer() else number


def _clean_optional(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def generate_rule_id() -> str:
    return f"{int(time.time() * 1000)}{uuid.uuid4().hex[:5]}"


@dataclass
class BundleRule:
    """One quantity-threshold -> percentage-off tier of a bundle."""

    id: str
    tier: str
    total_products: float
    discount_percentage: float
    discount_code: Optional[str] = None
    shopify_price_rule_id: Optional[str] = None
    is_active: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundleRule":
        data = data or {}
        rule = cls(
            id=_clean_optional(data.get("id")) or generate_rule_id(),
            tier=str(data.get("tier") or "").strip(),
            total_products=_as_number(data.get("totalProducts")),
            discount_percentage=_as_number(data.get("discountPercentage")),
            discount_code=_clean_optional(data.get("discountCode")),
            shopify_price_rule_id=_clean_optional(data.get("shopifyPriceRuleId")),
            is_active=bool(data.get("isActive")),
            created_at=_clean_optional(data.get("createdAt")),
        )
        return rule.normalized()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "tier": self.tier,
            "totalProducts": self.total_products,
            "discountPercentage": self.discount_percentage,
            "discountCode": self.discount_code,
            "shopifyPriceRuleId": self.shopify_price_rule_id,
            "isActive": self.is_active,
        }
        if self.created_at:
            payload["createdAt"] = self.created_at
        return payload

    @property
    def state(self) -> str:
        return "Active" if self.is_active else "Inactive"

    def normalized(self) -> "BundleRule":
        """Enforce code/remote-id/active moving together; half-populated triples become Inactive."""
        if self.discount_code and self.shopify_price_rule_id and self.is_active:
            return self
        return self.deactivated()

    def activated(self, code: str, remote_id: str, issued_at: Optional[str] = None) -> "BundleRule":
        return replace(
            self,
            discount_code=code,
            shopify_price_rule_id=remote_id,
            is_active=True,
            created_at=issued_at or datetime.utcnow().isoformat(),
        )

    def deactivated(self) -> "BundleRule":
        return replace(self, discount_code=None, shopify_price_rule_id=None, is_active=False)


@dataclass
class DiscountCodeEntry:
    """Audit-log entry for one issued code."""

    code: str
    rule_index: int
    discount_node_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "used": self.used,
            "ruleIndex": self.rule_index,
            "createdAt": self.created_at,
            "discountNodeId": self.discount_node_id,
        }


def parse_rules(raw_rules: Optional[Iterable[Dict[str, Any]]]) -> List[BundleRule]:
    return [BundleRule.from_dict(item) for item in (raw_rules or [])]


def dump_rules(rules: Iterable[BundleRule]) -> List[Dict[str, Any]]:
    return [rule.to_dict() for rule in rules]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _is_finite(value: Any) -> bool:
    # ints beyond float range (JSON allows them) overflow math.isfinite
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def validate_rule(rule: BundleRule) -> Optional[ValidationFailed]:
    if not rule.tier.strip():
        return ValidationFailed(ValidationFailed.MISSING_TIER, "Discount Name is required")

    qty = rule.total_products
    if not _is_finite(qty) or qty <= 0 or qty != int(qty):
        return ValidationFailed(
            ValidationFailed.INVALID_QUANTITY, "Total Products must be a whole number greater than 0"
        )

    pct = rule.discount_percentage
    if not _is_finite(pct) or pct <= 0:
        return ValidationFailed(
            ValidationFailed.INVALID_DISCOUNT, "Discount Percentage must be greater than 0"
        )
    return None


def normalize_name(name: Optional[str]) -> str:
    return str(name or "").strip().lower()


def validate_bundle_name(
    name: Optional[str],
    all_bundles: Iterable[Any],
    exclude_id: Optional[str] = None,
) -> Optional[ValidationFailed]:
    """Reject empty names and names already used by another bundle (case-insensitive, trimmed)."""
    normalized = normalize_name(name)
    if not normalized:
        return ValidationFailed(ValidationFailed.MISSING_NAME, "Bundle name is required.")

    for bundle in all_bundles:
        if exclude_id and bundle.id == exclude_id:
            continue
        if normalize_name(bundle.name) == normalized:
            return ValidationFailed(
                ValidationFailed.DUPLICATE_NAME,
                "Bundle name already exists. Please use a unique name.",
            )
    return None


def validate_rules(rules: List[BundleRule]) -> Optional[ValidationFailed]:
    if not rules:
        return ValidationFailed(ValidationFailed.MISSING_RULES, "At least one rule is required.")
    for index, rule in enumerate(rules):
        error = validate_rule(rule)
        if error:
            return ValidationFailed(error.reason, f"Rule {index + 1}: {error.detail}")
    return None


def validate_bundle(
    name: Optional[str],
    rules: List[BundleRule],
    all_bundles: Iterable[Any],
    exclude_id: Optional[str] = None,
) -> Optional[ValidationFailed]:
    """First failure wins: name, then rule array in order."""
    return validate_bundle_name(name, all_bundles, exclude_id) or validate_rules(rules)
