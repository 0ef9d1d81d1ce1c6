"""Unit tests for the payment/status state machine."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from invoicing.errors import ValidationError
from invoicing.services.status_service import (
    apply_payment,
    apply_status,
    derive_status,
    set_paid_amount,
    transition,
)

NOW = datetime(2024, 3, 10, 12, 0, 0)
TOMORROW = date(2024, 3, 11)
YESTERDAY = date(2024, 3, 9)
TOTAL = Decimal("270.00")


class TestDeriveStatus:
    def test_full_payment_marks_paid(self):
        decision = derive_status(TOTAL, Decimal("270"), "sent", TOMORROW, NOW)

        assert decision.payment_status == "paid"
        assert decision.status == "paid"
        assert decision.payment_date == NOW

    def test_existing_payment_date_is_kept(self):
        earlier = NOW - timedelta(days=3)

        decision = derive_status(TOTAL, TOTAL, "paid", TOMORROW, NOW, payment_date=earlier)

        assert decision.payment_date == earlier

    def test_partial_payment_leaves_status(self):
        decision = derive_status(TOTAL, Decimal("100"), "sent", TOMORROW, NOW)

        assert decision.payment_status == "partial"
        assert decision.status == "sent"
        assert decision.payment_date is None

    def test_partial_payment_never_promotes_draft(self):
        decision = derive_status(TOTAL, Decimal("100"), "draft", YESTERDAY, NOW)

        assert decision.status == "draft"
        assert decision.payment_status == "partial"

    def test_sent_past_due_becomes_overdue(self):
        decision = derive_status(TOTAL, Decimal("0"), "sent", YESTERDAY, NOW)

        assert decision.status == "overdue"
        assert decision.payment_status == "unpaid"

    def test_partially_paid_past_due_becomes_overdue(self):
        decision = derive_status(TOTAL, Decimal("100"), "sent", YESTERDAY, NOW)

        assert decision.status == "overdue"

    def test_due_today_is_not_overdue(self):
        decision = derive_status(TOTAL, Decimal("0"), "sent", NOW.date(), NOW)

        assert decision.status == "sent"

    def test_datetime_due_date(self):
        decision = derive_status(TOTAL, Decimal("0"), "sent", NOW - timedelta(minutes=1), NOW)

        assert decision.status == "overdue"

    def test_late_payment_moves_overdue_to_paid(self):
        decision = derive_status(TOTAL, TOTAL, "overdue", YESTERDAY, NOW)

        assert decision.status == "paid"

    def test_cancelled_is_absorbing(self):
        decision = derive_status(TOTAL, TOTAL, "cancelled", YESTERDAY, NOW)

        assert decision.status == "cancelled"
        assert decision.payment_status == "unpaid"

    def test_zero_total_counts_as_paid(self):
        decision = derive_status(Decimal("0"), Decimal("0"), "draft", TOMORROW, NOW)

        assert decision.payment_status == "paid"
        assert decision.status == "paid"

    def test_negative_paid_amount_is_rejected(self):
        with pytest.raises(ValidationError):
            derive_status(TOTAL, Decimal("-1"), "sent", TOMORROW, NOW)


class TestApplyPayment:
    def test_full_payment(self, invoice_factory):
        inv = invoice_factory(status="sent")

        apply_payment(inv, 270, NOW, method="upi", transaction_id="TX-1")

        assert inv.paid_amount == TOTAL
        assert inv.payment_status == "paid"
        assert inv.status == "paid"
        assert inv.payment_date == NOW
        assert inv.payment_method == "upi"
        assert inv.transaction_id == "TX-1"
        assert len(inv.payments) == 1

    def test_partial_payment(self, invoice_factory):
        inv = invoice_factory(status="sent")

        apply_payment(inv, 100, NOW)

        assert inv.payment_status == "partial"
        assert inv.status == "sent"
        assert inv.remaining_amount() == Decimal("170.00")

    def test_payment_on_draft_jumps_to_paid(self, invoice_factory):
        inv = invoice_factory(status="draft")

        apply_payment(inv, 270, NOW)

        assert inv.status == "paid"

    def test_explicit_payment_date(self, invoice_factory):
        inv = invoice_factory(status="sent")
        paid_at = datetime(2024, 3, 8, 9, 30)

        apply_payment(inv, 270, NOW, paid_at=paid_at)

        assert inv.payment_date == paid_at
        assert inv.payments[0].at == paid_at

    def test_payment_does_not_touch_items_or_totals(self, invoice_factory):
        inv = invoice_factory(status="sent")
        before = inv.model_dump(include={"items", "subtotal", "tax_amount", "discount_amount", "total_amount"})

        apply_payment(inv, 100, NOW)

        assert inv.model_dump(include={"items", "subtotal", "tax_amount", "discount_amount", "total_amount"}) == before

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount(self, invoice_factory, amount):
        with pytest.raises(ValidationError) as exc:
            apply_payment(invoice_factory(status="sent"), amount, NOW)
        assert exc.value.field == "amount"

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", float("nan"), float("inf"), Decimal("NaN")])
    def test_non_finite_amount(self, invoice_factory, amount):
        inv = invoice_factory(status="sent")

        with pytest.raises(ValidationError) as exc:
            apply_payment(inv, amount, NOW)
        assert exc.value.field == "amount"
        assert inv.paid_amount == Decimal("0.00")
        assert inv.payments == []

    def test_oversized_payment_is_rejected(self, invoice_factory):
        inv = invoice_factory(status="sent")
        apply_payment(inv, 200, NOW)

        with pytest.raises(ValidationError):
            apply_payment(inv, "70.01", NOW)
        assert inv.paid_amount == Decimal("200.00")

    def test_unknown_method(self, invoice_factory):
        with pytest.raises(ValidationError) as exc:
            apply_payment(invoice_factory(status="sent"), 10, NOW, method="bitcoin")
        assert exc.value.field == "method"

    def test_cancelled_invoice_takes_no_payment(self, invoice_factory):
        with pytest.raises(ValidationError):
            apply_payment(invoice_factory(status="cancelled"), 10, NOW)

    def test_paid_amount_is_monotonic(self, invoice_factory):
        inv = invoice_factory(status="sent")
        seen = []

        for amount in (50, 70, "0.5", 100, "49.5"):
            apply_payment(inv, amount, NOW)
            seen.append(inv.paid_amount)
            assert (inv.payment_status == "paid") == (inv.paid_amount >= inv.total_amount)

        assert seen == sorted(seen)
        assert inv.paid_amount == TOTAL
        assert sum(p.amount for p in inv.payments) == inv.paid_amount


class TestSetPaidAmount:
    def test_increase_records_the_difference(self, invoice_factory):
        inv = invoice_factory(status="sent")
        apply_payment(inv, 100, NOW)

        set_paid_amount(inv, 150, NOW)

        assert inv.paid_amount == Decimal("150.00")
        assert [p.amount for p in inv.payments] == [Decimal("100.00"), Decimal("50.00")]

    def test_decrease_is_rejected(self, invoice_factory):
        inv = invoice_factory(status="sent")
        apply_payment(inv, 100, NOW)

        with pytest.raises(ValidationError) as exc:
            set_paid_amount(inv, 99, NOW)
        assert exc.value.field == "paid_amount"
        assert inv.paid_amount == Decimal("100.00")

    def test_negative_is_rejected(self, invoice_factory):
        with pytest.raises(ValidationError):
            set_paid_amount(invoice_factory(status="sent"), -1, NOW)

    def test_same_value_only_rederives(self, invoice_factory):
        inv = invoice_factory(status="sent", due_date=YESTERDAY)

        set_paid_amount(inv, 0, NOW)

        assert inv.status == "overdue"
        assert inv.payments == []


class TestTransitions:
    def test_send_draft(self, invoice_factory):
        inv = transition(invoice_factory(status="draft"), "sent", NOW)

        assert inv.status == "sent"

    def test_sending_past_due_draft_makes_it_overdue(self, invoice_factory):
        inv = transition(invoice_factory(status="draft", due_date=YESTERDAY), "sent", NOW)

        assert inv.status == "overdue"

    @pytest.mark.parametrize("current", ["draft", "sent", "overdue"])
    def test_cancel(self, invoice_factory, current):
        inv = transition(invoice_factory(status=current), "cancelled", NOW)

        assert inv.status == "cancelled"

    @pytest.mark.parametrize("current,target", [
        ("sent", "sent"),
        ("paid", "cancelled"),
        ("cancelled", "sent"),
        ("overdue", "sent"),
    ])
    def test_illegal_transitions(self, invoice_factory, current, target):
        with pytest.raises(ValidationError) as exc:
            transition(invoice_factory(status=current), target, NOW)
        assert exc.value.field == "status"

    @pytest.mark.parametrize("target", ["paid", "overdue", "draft"])
    def test_derived_statuses_cannot_be_set_by_hand(self, invoice_factory, target):
        with pytest.raises(ValidationError):
            transition(invoice_factory(status="sent"), target, NOW)

    def test_apply_status_on_cancelled_changes_nothing(self, invoice_factory):
        inv = invoice_factory(status="cancelled", due_date=YESTERDAY)

        apply_status(inv, NOW)

        assert inv.status == "cancelled"
        assert inv.payment_status == "unpaid"
