from types import SimpleNamespace

from services.errors import ValidationFailed
from services.rule_set import (
    BundleRule,
    DiscountCodeEntry,
    parse_rules,
    validate_bundle,
    validate_bundle_name,
    validate_rule,
    validate_rules,
)


def _rule(**overrides):
    data = {"id": "r1", "tier": "Gold", "totalProducts": 5, "discountPercentage": 20}
    data.update(overrides)
    return BundleRule.from_dict(data)


def test_valid_rule_passes():
    assert validate_rule(_rule()) is None


def test_blank_tier_is_missing_tier():
    error = validate_rule(_rule(tier="   "))
    assert error.reason == ValidationFailed.MISSING_TIER
    assert error.detail == "Discount Name is required"


def test_quantity_must_be_positive_whole_number():
    for bad in (0, -2, 2.5, "abc", "", None):
        error = validate_rule(_rule(totalProducts=bad))
        assert error is not None, bad
        assert error.reason == ValidationFailed.INVALID_QUANTITY


def test_numeric_strings_from_forms_are_accepted():
    rule = _rule(totalProducts="10", discountPercentage="12.5")
    assert rule.total_products == 10
    assert rule.discount_percentage == 12.5
    assert validate_rule(rule) is None


def test_discount_must_be_positive():
    for bad in (0, -5, "ten", None):
        error = validate_rule(_rule(discountPercentage=bad))
        assert error.reason == ValidationFailed.INVALID_DISCOUNT


def test_rules_errors_are_prefixed_with_position():
    error = validate_rules([_rule(), _rule(id="r2", totalProducts=0)])
    assert error.reason == ValidationFailed.INVALID_QUANTITY
    assert error.detail.startswith("Rule 2: ")


def test_empty_rules_rejected():
    error = validate_rules([])
    assert error.reason == ValidationFailed.MISSING_RULES


def test_duplicate_name_is_case_and_whitespace_insensitive():
    existing = [SimpleNamespace(id="b1", name="Summer Bundle")]
    error = validate_bundle_name("  SUMMER bundle ", existing)
    assert error.reason == ValidationFailed.DUPLICATE_NAME


def test_rename_to_own_name_allowed():
    existing = [SimpleNamespace(id="b1", name="Summer Bundle")]
    assert validate_bundle_name("summer bundle", existing, exclude_id="b1") is None


def test_blank_name_rejected():
    error = validate_bundle_name("   ", [])
    assert error.reason == ValidationFailed.MISSING_NAME


def test_name_checked_before_rules():
    error = validate_bundle("", [], [])
    assert error.reason == ValidationFailed.MISSING_NAME


def test_half_populated_triple_normalizes_to_inactive():
    rule = _rule(discountCode="GOLD_1", isActive=True)
    assert rule.is_active is False
    assert rule.discount_code is None
    assert rule.shopify_price_rule_id is None
    assert rule.state == "Inactive"


def test_full_triple_is_active_and_round_trips():
    rule = _rule(discountCode="GOLD_1", shopifyPriceRuleId="gid://shopify/DiscountCodeNode/1", isActive=True)
    assert rule.state == "Active"
    assert parse_rules([rule.to_dict()])[0] == rule


def test_missing_rule_id_is_generated():
    rule = BundleRule.from_dict({"tier": "Gold", "totalProducts": 3, "discountPercentage": 10})
    assert rule.id


def test_code_entry_shape():
    entry = DiscountCodeEntry(code="GOLD_1", rule_index=2, discount_node_id="gid://x").to_dict()
    assert entry["code"] == "GOLD_1"
    assert entry["ruleIndex"] == 2
    assert entry["used"] is False
    assert entry["discountNodeId"] == "gid://x"
    assert entry["createdAt"]


def test_huge_integer_quantity_is_invalid_not_a_crash():
    error = validate_rule(_rule(totalProducts=10**400))
    assert error.reason == ValidationFailed.INVALID_QUANTITY


def test_huge_integer_discount_is_invalid_not_a_crash():
    error = validate_rule(_rule(discountPercentage=10**400))
    assert error.reason == ValidationFailed.INVALID_DISCOUNT
