"""
Best-tier matching for cart-update notifications.

Pure computation: reads a snapshot of bundles, never mutates rule state and
never calls Shopify. The checkout function applies the actual discount from
the metafield snapshot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

from services.rule_set import BundleRule, parse_rules

logger = logging.getLogger(__name__)


@dataclass
class TierMatch:
    bundle_id: Optional[str]
    bundle_name: str
    tier: str
    threshold: int
    discount_percentage: float
    code: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def eligible_quantity(line_items: Iterable[Dict[str, Any]]) -> int:
    """Total cart quantity across all line items.

    Not restricted to the bundle's collection; see DESIGN.md open questions.
    """
    total = 0
    for item in line_items or []:
        try:
            total += int(item.get("quantity") or 0)
        except (TypeError, ValueError):
            logger.debug("Skipping line item with non-numeric quantity: %r", item)
    return total


def best_rule_for_bundle(rules: List[BundleRule], qty: int) -> Optional[BundleRule]:
    """Highest threshold rule met by ``qty``; ``sorted`` is stable so equal thresholds keep array order."""
    for rule in sorted(rules, key=lambda r: r.total_products, reverse=True):
        if rule.total_products <= qty:
            return rule
    return None


def find_best_match(bundles: Iterable[Any], qty: int) -> Optional[TierMatch]:
    best: Optional[TierMatch] = None
    for bundle in bundles:
        rule = best_rule_for_bundle(parse_rules(bundle.rules), qty)
        if rule is None:
            continue
        logger.debug(
            "Match in bundle %r: tier %r (%s+ items)", bundle.name, rule.tier, rule.total_products
        )
        # Strict '>' keeps the first bundle encountered on ties
        if best is None or rule.total_products > best.threshold:
            best = TierMatch(
                bundle_id=getattr(bundle, "id", None),
                bundle_name=bundle.name,
                tier=rule.tier,
                threshold=int(rule.total_products),
                discount_percentage=rule.discount_percentage,
                code=rule.discount_code,
            )
    return best


def match_cart(bundles: Iterable[Any], line_items: Iterable[Dict[str, Any]]) -> Optional[TierMatch]:
    bundles = list(bundles)
    qty = eligible_quantity(line_items)
    match = find_best_match(bundles, qty)
    if match:
        logger.info(
            "Highest matching bundle=%r tier=%r threshold=%d discount=%s%% code=%s (cart qty=%d)",
            match.bundle_name,
            match.tier,
            match.threshold,
            match.discount_percentage,
            match.code,
            qty,
        )
    else:
        logger.info("No bundle rules matched cart qty=%d across %d bundles", qty, len(bundles))
    return match
