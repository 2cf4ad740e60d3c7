"""
Reconciliation engine: money math, discount distribution and the
computed / from-store snapshot split.
"""
from decimal import Decimal

import pytest

from optistore.services.reconciliation import (
    AdvanceInputs,
    DiscountKind,
    LineItem,
    OrderEditSession,
    SnapshotSource,
    classify_item,
    distribute_discount,
    money2,
    reconcile,
    set_discount_amount,
    set_discount_percent,
    to_decimal,
    verify_generated_columns,
)

D = Decimal


# ==============================================================================
# Parsing and rounding
# ==============================================================================

@pytest.mark.parametrize("raw", [None, "", "abc", "NaN", "inf", True, object()])
def test_malformed_numbers_resolve_to_zero(raw):
    assert to_decimal(raw) == D("0")


def test_to_decimal_accepts_form_strings():
    assert to_decimal(" 1,250.50 ") == D("1250.50")
    assert to_decimal(12) == D("12")


def test_money2_rounds_half_up():
    assert money2("2.345") == D("2.35")
    assert money2("2.344") == D("2.34")
    assert money2("-0.005") == D("-0.01")


def test_classify_item_prefers_code_then_name():
    assert classify_item("FRM12", "anything") == "Frames"
    assert classify_item("SUN1", None) == "Sun Glasses"
    assert classify_item("LEN9", None) == "Lens"
    assert classify_item("", "Contact lens solution") == "Lens"
    assert classify_item(None, "Metal frame") == "Frames"
    assert classify_item(None, "Cleaning cloth") == "Other"


def test_line_item_amount_includes_tax_minus_discount():
    item = LineItem(item_name="Lens", rate="200", qty=2, tax_percent="5", discount_amount="20")
    assert item.base_total == D("400")
    assert item.tax_amount == D("20")
    assert item.amount == D("400.00")


# ==============================================================================
# Computed snapshots
# ==============================================================================

def test_scenario_two_items_with_advances(two_items, advances):
    snap = reconcile(two_items, advances)

    assert snap.source is SnapshotSource.COMPUTED
    assert snap.subtotal == D("900.00")
    assert snap.tax_amount == D("20.00")
    assert snap.payment_estimate == D("920.00")
    assert snap.final_amount == D("920.00")
    assert snap.total_advance == D("150.00")
    assert snap.balance == D("770.00")


@pytest.mark.parametrize(
    "rows, cash",
    [
        ([("99.99", 3, "12"), ("0.335", 7, "18")], "0"),
        ([("1499", 1, "0"), ("349.50", 2, "5")], "5000"),
        ([("10.005", 1, "2.5")], "3.33"),
        ([], "10"),
    ],
)
def test_estimate_and_balance_formulas_hold(rows, cash):
    items = [LineItem(item_name=f"item {i}", rate=r, qty=q, tax_percent=t) for i, (r, q, t) in enumerate(rows)]
    snap = reconcile(items, AdvanceInputs(cash=cash))

    expected_estimate = money2(sum((i.rate * i.qty for i in items), D("0"))) + money2(
        sum((i.rate * i.qty * i.tax_percent / 100 for i in items), D("0"))
    )
    assert snap.payment_estimate == expected_estimate
    assert snap.balance == max(D("0"), snap.final_amount - snap.total_advance)


def test_balance_never_negative_when_overpaid(two_items):
    snap = reconcile(two_items, AdvanceInputs(cash="2000"))
    assert snap.balance == D("0.00")


def test_schedule_amount_defaults_to_discount(two_items):
    items = [set_discount_amount(two_items[0], "50"), two_items[1]]
    assert reconcile(items).schedule_amount == D("50.00")
    assert reconcile(items, schedule_amount="75").schedule_amount == D("75.00")


# ==============================================================================
# Discounts
# ==============================================================================

def test_pro_rata_flat_discount_follows_tax_inclusive_share():
    items = [LineItem(item_name="a", rate="100"), LineItem(item_name="b", rate="300")]
    result = distribute_discount(items, "40")
    assert [i.discount_amount for i in result] == [D("10.00"), D("30.00")]
    assert [i.discount_percent for i in result] == [D("10.00"), D("10.00")]


def test_percentage_discount_applies_to_overall_total():
    items = [LineItem(item_name="a", rate="100"), LineItem(item_name="b", rate="300")]
    result = distribute_discount(items, "10", DiscountKind.PERCENTAGE)
    assert [i.discount_amount for i in result] == [D("10.00"), D("30.00")]


def test_rounding_residue_keeps_total_exact():
    items = [LineItem(item_name=n, rate="100") for n in ("a", "b", "c")]
    result = distribute_discount(items, "100")
    shares = [i.discount_amount for i in result]
    assert sum(shares) == D("100.00")
    assert sorted(shares) == [D("33.33"), D("33.33"), D("33.34")]


def test_zero_total_item_gets_no_discount():
    items = [LineItem(item_name="free case", rate="0"), LineItem(item_name="frame", rate="400")]
    result = distribute_discount(items, "40")
    assert result[0].discount_amount == D("0")
    assert result[1].discount_amount == D("40.00")


def test_fixed_discount_capped_at_total():
    items = [LineItem(item_name="a", rate="100")]
    assert distribute_discount(items, "500")[0].discount_amount == D("100.00")


def test_percent_and_amount_stay_consistent():
    item = LineItem(item_name="Lens", rate="200", qty=2, tax_percent="5")  # 400 before tax

    by_percent = set_discount_percent(item, "10")
    assert by_percent.discount_amount == D("40.00")
    assert by_percent.amount == D("380.00")

    by_amount = set_discount_amount(item, "20")
    assert by_amount.discount_percent == D("5.00")

    clamped = set_discount_amount(item, "9999")
    assert clamped.discount_amount == D("400.00")
    assert clamped.discount_percent == D("100.00")

    assert set_discount_percent(item, "150").discount_percent == D("100.00")
    assert set_discount_percent(LineItem(item_name="free"), "10").discount_amount == D("0")


def test_item_discount_ignores_tax():
    item = LineItem(item_name="Frame", rate="100", tax_percent="10")
    assert set_discount_percent(item, "10").discount_amount == D("10.00")
    assert set_discount_amount(item, "10").discount_percent == D("10.00")


def test_full_fixed_discount_on_taxed_items_is_fully_allocated():
    items = [LineItem(item_name="a", rate="100", tax_percent="10"), LineItem(item_name="b", rate="50")]
    result = distribute_discount(items, "160")
    assert [i.discount_amount for i in result] == [D("110.00"), D("50.00")]
    assert [i.discount_percent for i in result] == [D("100.00"), D("100.00")]
    assert [i.amount for i in result] == [D("0.00"), D("0.00")]


# ==============================================================================
# From-store snapshots and the edit session
# ==============================================================================

STORED = {
    "payment_estimate": "1000.00",
    "tax_amount": "0.00",
    "discount_amount": "0.00",
    "final_amount": "1000.00",
    "advance_cash": "0.004",
    "advance_card_upi": "0.004",
    "advance_other": "0.004",
    "schedule_amount": "0.00",
    "total_advance": "0.00",
    "balance": "1000.00",
}


def test_from_store_passes_stored_balance_through():
    snap = reconcile([], source=SnapshotSource.FROM_STORE, stored=STORED)
    assert snap.source is SnapshotSource.FROM_STORE
    assert snap.balance == D("1000.00")
    assert snap.total_advance == D("0.00")


def test_from_store_requires_stored_payment():
    with pytest.raises(ValueError):
        reconcile([], source=SnapshotSource.FROM_STORE)


def test_edit_session_is_sticky_until_a_contributing_edit():
    session = OrderEditSession(items=[LineItem(item_name="frame", rate="1000")], stored=STORED)
    assert session.is_from_store
    assert session.snapshot().balance == D("1000.00")

    session.set_advance("cash", "250")
    assert not session.is_from_store
    snap = session.snapshot()
    assert snap.source is SnapshotSource.COMPUTED
    assert snap.balance == D("750.00")


def test_edit_session_rejects_unknown_advance():
    with pytest.raises(ValueError):
        OrderEditSession().set_advance("cheque", "10")


def test_remove_item_survives_failing_recorder():
    session = OrderEditSession(items=[LineItem(item_name="a", rate="10"), LineItem(item_name="b", rate="20")])

    def broken(item):
        raise RuntimeError("history store down")

    removal = session.remove_item(0, record=broken)
    assert removal.item.item_name == "a"
    assert removal.history_recorded is False
    assert "history tracking failed" in removal.warning
    assert [i.item_name for i in session.items] == ["b"]


def test_verify_generated_columns_reports_drift(two_items, advances):
    snap = reconcile(two_items, advances)
    assert verify_generated_columns(snap, {"total_advance": "150.00", "balance": "770.00"}) == {}

    drift = verify_generated_columns(snap, {"total_advance": "150.00", "balance": "771.00"})
    assert drift == {"balance": (D("770.00"), D("771.00"))}
