"""
Discount Lifecycle Manager
==========================

Owns the per-rule {discountCode, shopifyPriceRuleId, isActive} state machine and
keeps it in step with Shopify's coupon system:

    Inactive --issue--> Active --revoke / superseded by higher tier--> Inactive

Consistency policy (there is no distributed transaction with Shopify):
- Issuing requires remote success before a rule becomes Active; nothing for the
  target rule is persisted on failure.
- Revoking is best-effort remotely and always succeeds locally.
- Issuing tier k first revokes every Active tier below k and persists that
  before the remote create, so a retried issue resumes instead of re-deleting.
- Snapshot sync runs after every mutation and never fails the mutation.
"""
from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

import settings
from services.errors import (
    BundleServiceError,
    RemoteTransportError,
    RuleNotFound,
    ValidationFailed,
)
from services.obs.metrics import metrics_collector
from services.rule_set import (
    BundleRule,
    DiscountCodeEntry,
    dump_rules,
    parse_rules,
    validate_bundle,
    validate_bundle_name,
    validate_rules,
)

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class IssueStep:
    STARTED = "started"
    LOWER_TIERS_REVOKED = "lower_tiers_revoked"
    REMOTE_CREATED = "remote_created"
    PERSISTED = "persisted"


@dataclass
class RevocationOutcome:
    """Local state always changes; ``remote_deleted`` tells whether Shopify agreed."""

    rule_index: int
    remote_id: Optional[str]
    remote_deleted: bool
    local_changed: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleIndex": self.rule_index,
            "remoteId": self.remote_id,
            "remoteDeleted": self.remote_deleted,
            "localChanged": self.local_changed,
            "error": self.error,
        }


@dataclass
class IssueOutcome:
    bundle: Any
    rule_index: int
    code: str
    remote_id: str
    already_active: bool = False
    revoked: List[RevocationOutcome] = field(default_factory=list)
    last_step: str = IssueStep.PERSISTED


@dataclass
class DeletionOutcome:
    bundle_id: str
    revocations: List[RevocationOutcome] = field(default_factory=list)

    @property
    def remote_failures(self) -> int:
        return sum(1 for r in self.revocations if not r.remote_deleted)


def generate_discount_code(tier: str, now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """TIER_LABEL_<6 digits>: tier upper-cased with whitespace runs replaced by '_'.

    The suffix is the millisecond clock tail plus random jitter; uniqueness is
    best-effort and backed by a local collision check plus Shopify's own
    duplicate-code rejection.
    """
    label = re.sub(r"\s+", "_", str(tier or "").strip().upper()) or "BUNDLE"
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    jitter = (rng or random).randint(0, 999)
    suffix = (now_ms + jitter) % 1_000_000
    return f"{label}_{suffix:06d}"


def merge_rules(existing: Sequence[BundleRule], incoming: Sequence[BundleRule]) -> List[BundleRule]:
    """Carry issued-coupon fields across an edit, matched by rule id.

    Editing tier text / threshold / percentage never implicitly revokes a live
    coupon. Rules with no issued predecessor start Inactive.
    """
    by_id = {rule.id: rule for rule in existing}
    merged: List[BundleRule] = []
    for rule in incoming:
        previous = by_id.get(rule.id)
        # parse_rules normalizes the triple, so a code implies Active here
        if previous is not None and previous.discount_code:
            merged.append(
                rule.activated(
                    previous.discount_code,
                    previous.shopify_price_rule_id,
                    previous.created_at,
                )
            )
        else:
            merged.append(rule.deactivated())
    return merged


class DiscountLifecycleManager:
    def __init__(self, store, coupons, sync=None, *, timeout: Optional[float] = None):
        self.store = store
        self.coupons = coupons
        self.sync = sync
        self.timeout = timeout if timeout is not None else settings.SHOPIFY_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _remote(self, call: Awaitable[Any], operation: str) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RemoteTransportError(f"{operation} timed out after {self.timeout:.0f}s") from e

    async def _publish(self) -> None:
        if self.sync is not None:
            await self.sync.sync()

    async def _revoke_remote(self, bundle_id: str, index: int, rule: BundleRule) -> RevocationOutcome:
        remote_id = rule.shopify_price_rule_id
        if not remote_id:
            return RevocationOutcome(rule_index=index, remote_id=None, remote_deleted=False)
        try:
            await self._remote(self.coupons.delete_code(remote_id), "Discount delete")
        except BundleServiceError as e:
            logger.warning(
                "Remote revoke failed (continuing locally) bundle=%s rule=%d remote=%s kind=%s detail=%s",
                bundle_id, index, remote_id, e.kind, e.detail,
            )
            metrics_collector.record_remote_failure("delete_code", e.kind)
            return RevocationOutcome(index, remote_id, remote_deleted=False, error=e.detail)
        except Exception as e:
            logger.exception(f"Unexpected remote revoke failure bundle={bundle_id} rule={index}: {e}")
            metrics_collector.record_remote_failure("delete_code", type(e).__name__)
            return RevocationOutcome(index, remote_id, remote_deleted=False, error=str(e))

        metrics_collector.incr("codes_revoked")
        return RevocationOutcome(index, remote_id, remote_deleted=True)

    async def _unique_code(self, tier: str) -> str:
        known = set()
        for bundle in await self.store.list_bundles():
            known.update(entry.get("code") for entry in (bundle.discount_codes or []) if entry)
            known.update(rule.get("discountCode") for rule in (bundle.rules or []) if rule)
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_discount_code(tier)
            if code not in known:
                return code
            logger.info("Generated code %s collides with an issued code; regenerating", code)
        # Shopify rejects duplicates, which surfaces as RemoteRejected
        return code

    # ------------------------------------------------------------------
    # bundle CRUD
    # ------------------------------------------------------------------
    async def create_bundle(
        self,
        name: str,
        collection_id: str,
        collection_title: str,
        rules: Sequence[BundleRule],
    ):
        if not str(collection_id or "").strip():
            raise ValidationFailed(ValidationFailed.MISSING_FIELD, "Missing required field: collectionId")
        if not str(collection_title or "").strip():
            raise ValidationFailed(ValidationFailed.MISSING_FIELD, "Missing required field: collectionTitle")

        rules = [rule.deactivated() for rule in rules]
        error = validate_bundle(name, rules, await self.store.list_bundles())
        if error:
            raise error

        bundle = await self.store.create_bundle(
            {
                "name": name.strip(),
                "collection_id": str(collection_id).strip(),
                "collection_title": collection_title.strip(),
                "rules": dump_rules(rules),
                "discount_codes": [],
                "shop_id": settings.SHOPIFY_SHOP_DOMAIN or None,
            }
        )
        metrics_collector.incr("bundles_created")
        await self._publish()
        return bundle

    async def update_bundle(
        self,
        bundle_id: str,
        name: Optional[str] = None,
        rules: Optional[Sequence[BundleRule]] = None,
    ):
        bundle = await self.store.get_bundle(bundle_id)
        changes: Dict[str, Any] = {}

        if name is not None:
            error = validate_bundle_name(name, await self.store.list_bundles(), exclude_id=bundle_id)
            if error:
                raise error
            changes["name"] = name.strip()

        if rules is not None:
            rules = list(rules)
            error = validate_rules(rules)
            if error:
                raise error
            existing = parse_rules(bundle.rules)
            merged = merge_rules(existing, rules)
            kept_ids = {rule.id for rule in merged}
            for index, old in enumerate(existing):
                if old.is_active and old.id not in kept_ids:
                    logger.warning(
                        "Rule %s (index %d) removed from bundle %s while coupon %s is live; remote code left in place",
                        old.id, index, bundle_id, old.discount_code,
                    )
            changes["rules"] = dump_rules(merged)

        if not changes:
            raise ValidationFailed(ValidationFailed.MISSING_FIELD, "Nothing to update: provide name and/or rules")

        bundle = await self.store.update_bundle(bundle_id, **changes)
        metrics_collector.incr("bundles_updated")
        await self._publish()
        return bundle

    async def delete_bundle(self, bundle_id: str) -> DeletionOutcome:
        bundle = await self.store.get_bundle(bundle_id)
        outcome = DeletionOutcome(bundle_id=bundle_id)
        for index, rule in enumerate(parse_rules(bundle.rules)):
            if rule.shopify_price_rule_id:
                outcome.revocations.append(await self._revoke_remote(bundle_id, index, rule))

        await self.store.delete_bundle(bundle_id)
        if outcome.remote_failures:
            logger.warning(
                "Deleted bundle %s with %d remote codes left behind", bundle_id, outcome.remote_failures
            )
        metrics_collector.incr("bundles_deleted")
        await self._publish()
        return outcome

    # ------------------------------------------------------------------
    # discount issue / revoke
    # ------------------------------------------------------------------
    async def issue_discount(self, bundle_id: str, rule_index: int) -> IssueOutcome:
        bundle = await self.store.get_bundle(bundle_id)
        rules = parse_rules(bundle.rules)
        if rule_index < 0 or rule_index >= len(rules):
            raise RuleNotFound(bundle_id, rule_index)

        rule = rules[rule_index]
        if rule.is_active:
            metrics_collector.incr("codes_reused")
            return IssueOutcome(
                bundle=bundle,
                rule_index=rule_index,
                code=rule.discount_code,
                remote_id=rule.shopify_price_rule_id,
                already_active=True,
            )

        step = IssueStep.STARTED

        # Only one tier per bundle may be redeemable below the new one
        revoked: List[RevocationOutcome] = []
        for index in range(rule_index):
            if rules[index].is_active:
                revoked.append(await self._revoke_remote(bundle_id, index, rules[index]))
                rules[index] = rules[index].deactivated()
        if revoked:
            bundle = await self.store.update_bundle(bundle_id, rules=dump_rules(rules))
            step = IssueStep.LOWER_TIERS_REVOKED
            logger.info("Revoked %d lower tiers of bundle %s before issuing rule %d", len(revoked), bundle_id, rule_index)

        code = await self._unique_code(rule.tier)
        try:
            remote_id = await self._remote(
                self.coupons.create_code(
                    settings.normalize_collection_gid(bundle.collection_id),
                    code,
                    int(rule.total_products),
                    rule.discount_percentage,
                    usage_limit=1,
                    title=f"{rule.tier} Bundle Discount",
                ),
                "Discount create",
            )
        except BundleServiceError as e:
            e.last_step = step
            metrics_collector.incr("issue_failures")
            metrics_collector.record_remote_failure("create_code", e.kind)
            logger.warning(
                "Issue failed bundle=%s rule=%d step=%s kind=%s detail=%s",
                bundle_id, rule_index, step, e.kind, e.detail,
            )
            if revoked:
                await self._publish()
            raise
        step = IssueStep.REMOTE_CREATED

        rules[rule_index] = rule.activated(code, remote_id)
        entry = DiscountCodeEntry(code=code, rule_index=rule_index, discount_node_id=remote_id)
        try:
            bundle = await self.store.update_bundle(
                bundle_id,
                rules=dump_rules(rules),
                discount_codes=[*(bundle.discount_codes or []), entry.to_dict()],
            )
        except Exception:
            logger.exception(
                "Persisting issued code %s for bundle %s failed; deleting remote code %s", code, bundle_id, remote_id
            )
            await self._revoke_remote(bundle_id, rule_index, rules[rule_index])
            raise
        step = IssueStep.PERSISTED

        metrics_collector.incr("codes_issued")
        logger.info("Issued code %s for bundle %s rule %d (remote %s)", code, bundle_id, rule_index, remote_id)
        await self._publish()
        return IssueOutcome(
            bundle=bundle,
            rule_index=rule_index,
            code=code,
            remote_id=remote_id,
            revoked=revoked,
            last_step=step,
        )

    async def revoke_discount(self, bundle_id: str, rule_index: int) -> Tuple[Any, RevocationOutcome]:
        """Returns (bundle, RevocationOutcome). Local state always ends Inactive."""
        bundle = await self.store.get_bundle(bundle_id)
        rules = parse_rules(bundle.rules)
        if rule_index < 0 or rule_index >= len(rules):
            raise RuleNotFound(bundle_id, rule_index)

        rule = rules[rule_index]
        if not rule.is_active:
            return bundle, RevocationOutcome(rule_index, None, remote_deleted=False, local_changed=False)

        outcome = await self._revoke_remote(bundle_id, rule_index, rule)
        rules[rule_index] = rule.deactivated()
        bundle = await self.store.update_bundle(bundle_id, rules=dump_rules(rules))
        await self._publish()
        return bundle, outcome
