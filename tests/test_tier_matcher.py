import copy
from types import SimpleNamespace

from services.tier_matcher import eligible_quantity, find_best_match, match_cart


def _bundle(bundle_id, name, rules):
    return SimpleNamespace(id=bundle_id, name=name, rules=rules)


def _rule(rule_id, tier, qty, pct, code=None):
    data = {"id": rule_id, "tier": tier, "totalProducts": qty, "discountPercentage": pct}
    if code:
        data.update(discountCode=code, shopifyPriceRuleId=f"gid://shopify/DiscountCodeNode/{rule_id}", isActive=True)
    return data


BUNDLES = [
    _bundle(
        "b1",
        "Summer",
        [_rule("r1", "Bronze", 2, 5), _rule("r2", "Silver", 5, 10), _rule("r3", "Gold", 10, 20, code="GOLD_000001")],
    ),
]


def _cart(*quantities):
    return [{"quantity": q, "title": f"item {i}"} for i, q in enumerate(quantities)]


def test_highest_threshold_met_wins():
    match = match_cart(BUNDLES, _cart(6, 6))
    assert match.tier == "Gold"
    assert match.threshold == 10
    assert match.code == "GOLD_000001"


def test_middle_tier():
    match = match_cart(BUNDLES, _cart(4, 3))
    assert match.tier == "Silver"
    assert match.code is None


def test_below_every_threshold_is_none():
    assert match_cart([_bundle("b1", "Summer", [_rule("r1", "Silver", 5, 10)])], _cart(3)) is None


def test_empty_cart_and_no_bundles():
    assert match_cart(BUNDLES, []) is None
    assert match_cart([], _cart(50)) is None


def test_cross_bundle_tie_keeps_first_bundle():
    bundles = [
        _bundle("b1", "First", [_rule("r1", "A", 5, 10)]),
        _bundle("b2", "Second", [_rule("r2", "B", 5, 30)]),
    ]
    match = find_best_match(bundles, 7)
    assert match.bundle_name == "First"
    assert match.bundle_id == "b1"


def test_equal_thresholds_within_bundle_keep_array_order():
    bundles = [_bundle("b1", "Only", [_rule("r1", "First", 5, 10), _rule("r2", "Second", 5, 15)])]
    assert find_best_match(bundles, 5).tier == "First"


def test_higher_threshold_in_later_bundle_wins():
    bundles = [
        _bundle("b1", "Small", [_rule("r1", "A", 3, 10)]),
        _bundle("b2", "Big", [_rule("r2", "B", 8, 30)]),
    ]
    assert find_best_match(bundles, 9).bundle_name == "Big"


def test_matching_does_not_mutate_bundles():
    before = copy.deepcopy(BUNDLES[0].rules)
    match_cart(BUNDLES, _cart(12))
    assert BUNDLES[0].rules == before


def test_eligible_quantity_skips_junk():
    assert eligible_quantity([{"quantity": 2}, {"quantity": "x"}, {"quantity": None}, {}]) == 2
