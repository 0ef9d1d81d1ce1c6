"""
Machine d'état paiement / statut d'une facture.

payment_status : unpaid -> partial -> paid (monotone, le payé ne baisse jamais)
status         : draft -> sent -> {paid, overdue, cancelled}
                 overdue -> {paid, cancelled}, cancelled est absorbant

Le moteur ne promeut jamais un brouillon en "sent" : il ne fait que
descendre vers "overdue" ou monter vers "paid" quand le payé couvre le total.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional

from invoicing.errors import ValidationError
from invoicing.models.common import utcnow
from invoicing.models.invoice import PAYMENT_METHODS, Invoice, InvoiceStatus, PaymentRecord, PaymentStatus
from invoicing.services.money import round_money

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"sent", "cancelled", "paid"}),
    "sent": frozenset({"paid", "overdue", "cancelled"}),
    "overdue": frozenset({"paid", "cancelled"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}

# seules ces cibles se demandent à la main ; paid et overdue sont dérivés
MANUAL_TARGETS: FrozenSet[str] = frozenset({"sent", "cancelled"})


@dataclass(frozen=True)
class StatusDecision:
    status: InvoiceStatus
    payment_status: PaymentStatus
    payment_date: Optional[datetime]


def _is_past_due(due_date: date | datetime, now: datetime) -> bool:
    if isinstance(due_date, datetime):
        return now > due_date
    return now.date() > due_date


def derive_status(
    total_amount: Decimal,
    paid_amount: Decimal,
    status: InvoiceStatus,
    due_date: date | datetime,
    now: datetime,
    payment_date: Optional[datetime] = None,
    payment_status: PaymentStatus = "unpaid",
) -> StatusDecision:
    if status == "cancelled":
        return StatusDecision(status, payment_status, payment_date)

    if paid_amount < 0:
        raise ValidationError("Paid amount must be non-negative", field="paid_amount", expected=">= 0", actual=paid_amount)

    if paid_amount >= total_amount:
        payment_status = "paid"
        status = "paid"
        if payment_date is None:
            payment_date = now
    elif paid_amount > 0:
        payment_status = "partial"
    else:
        payment_status = "unpaid"

    if status == "sent" and payment_status != "paid" and _is_past_due(due_date, now):
        status = "overdue"

    return StatusDecision(status, payment_status, payment_date)


def apply_status(invoice: Invoice, now: Optional[datetime] = None, paid_at: Optional[datetime] = None) -> Invoice:
    """Réécrit status / payment_status / payment_date ; ne touche ni aux lignes ni aux totaux."""
    now = now or utcnow()
    previous = invoice.status
    decision = derive_status(
        invoice.total_amount,
        invoice.paid_amount,
        invoice.status,
        invoice.due_date,
        now,
        payment_date=invoice.payment_date,
        payment_status=invoice.payment_status,
    )
    if invoice.payment_date is None and decision.payment_date is not None and paid_at is not None:
        decision = StatusDecision(decision.status, decision.payment_status, paid_at)

    invoice.status = decision.status
    invoice.payment_status = decision.payment_status
    invoice.payment_date = decision.payment_date
    if previous != invoice.status:
        logger.info("Facture %s : %s -> %s", invoice.invoice_number or invoice.id, previous, invoice.status)
    return invoice


def _check_payable(invoice: Invoice) -> None:
    if invoice.status == "cancelled":
        raise ValidationError("Cannot record a payment on a cancelled invoice", field="status", actual=invoice.status)


def apply_payment(
    invoice: Invoice,
    amount: Any,
    now: Optional[datetime] = None,
    *,
    method: Optional[str] = None,
    transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
    paid_at: Optional[datetime] = None,
) -> Invoice:
    """Ajoute un encaissement (montant > 0) puis redérive les statuts."""
    now = now or utcnow()
    _check_payable(invoice)
    amount = round_money(amount, invoice.currency, "amount")
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0", field="amount", expected="> 0", actual=amount)
    if method is not None and method not in PAYMENT_METHODS:
        raise ValidationError("Unknown payment method", field="method", expected=list(PAYMENT_METHODS), actual=method)

    new_paid = round_money(invoice.paid_amount + amount, invoice.currency)
    if new_paid > invoice.total_amount:
        raise ValidationError(
            "Payment exceeds the remaining amount",
            field="amount",
            expected=f"<= {invoice.remaining_amount()}",
            actual=amount,
        )

    invoice.payments.append(PaymentRecord(
        amount=amount, method=method, transaction_id=transaction_id, notes=notes, at=paid_at or now,
    ))
    invoice.paid_amount = new_paid
    if method is not None:
        invoice.payment_method = method
    if transaction_id is not None:
        invoice.transaction_id = transaction_id
    if notes is not None:
        invoice.payment_notes = notes
    return apply_status(invoice, now, paid_at=paid_at)


def set_paid_amount(invoice: Invoice, paid_amount: Any, now: Optional[datetime] = None, **payment: Any) -> Invoice:
    """Variante "montant payé absolu" : refuse toute baisse (un remboursement est une autre opération)."""
    _check_payable(invoice)
    target = round_money(paid_amount, invoice.currency, "paid_amount")
    if target < 0:
        raise ValidationError("Paid amount must be non-negative", field="paid_amount", expected=">= 0", actual=target)
    if target < invoice.paid_amount:
        raise ValidationError(
            "Paid amount cannot decrease",
            field="paid_amount",
            expected=f">= {invoice.paid_amount}",
            actual=target,
        )
    if target == invoice.paid_amount:
        return apply_status(invoice, now)
    return apply_payment(invoice, target - invoice.paid_amount, now, **payment)


def transition(invoice: Invoice, target: str, now: Optional[datetime] = None) -> Invoice:
    """Transition manuelle (envoi, annulation) selon la table autorisée."""
    if target not in MANUAL_TARGETS:
        raise ValidationError(
            f"Status {target} cannot be set manually",
            field="status",
            expected=sorted(MANUAL_TARGETS),
            actual=target,
        )
    current = invoice.status
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise ValidationError(
            f"Transition {current} -> {target} is not allowed",
            field="status",
            expected=sorted(ALLOWED_TRANSITIONS.get(current, frozenset())),
            actual=target,
        )
    invoice.status = target  # type: ignore[assignment]
    logger.info("Facture %s : %s -> %s", invoice.invoice_number or invoice.id, current, target)
    if target == "cancelled":
        return invoice
    return apply_status(invoice, now)
