"""
Calcul des totaux d'une facture à partir de ses lignes.

Fonctions pures : mêmes entrées -> mêmes totaux, aucune I/O.
Le montant d'une ligne est toujours recalculé (jamais repris de l'entrée).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from invoicing.errors import InvariantViolation, ValidationError
from invoicing.models.invoice import Invoice, LineItem
from invoicing.services.money import ensure_non_negative, multiply, round_money, to_money

logger = logging.getLogger(__name__)

ItemLike = Union[LineItem, Mapping[str, Any]]


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def _get(item: ItemLike, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        # tolère les clés camelCase des anciens payloads (taxRate)
        camel = "".join(p.capitalize() if i else p for i, p in enumerate(name.split("_")))
        return item.get(name, item.get(camel, default))
    return getattr(item, name, default)


def _normalize_item(idx: int, item: ItemLike, currency: Optional[str]) -> LineItem:
    where = f"items[{idx}]"
    quantity = to_money(_get(item, "quantity"), f"{where}.quantity")
    rate = to_money(_get(item, "rate"), f"{where}.rate")
    tax_rate = to_money(_get(item, "tax_rate", 0) or 0, f"{where}.tax_rate")

    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0", field=f"{where}.quantity", expected="> 0", actual=quantity)
    if rate < 0:
        raise ValidationError("Rate must be non-negative", field=f"{where}.rate", expected=">= 0", actual=rate)
    if not (0 <= tax_rate <= 100):
        raise ValidationError("Tax rate must be between 0 and 100", field=f"{where}.tax_rate", expected="0..100", actual=tax_rate)

    description = _get(item, "description", "") or ""
    if not str(description).strip():
        raise ValidationError("Item description is required", field=f"{where}.description")
    if len(str(description).strip()) > 500:
        raise ValidationError(
            "Description cannot exceed 500 characters",
            field=f"{where}.description",
            expected="<= 500",
            actual=len(str(description).strip()),
        )

    return LineItem(
        description=description,
        quantity=quantity,
        rate=rate,
        tax_rate=tax_rate,
        amount=multiply(quantity, rate, currency=currency),
        note=_get(item, "note"),
    )


def normalize_items(items: Optional[Iterable[ItemLike]], currency: Optional[str] = None) -> List[LineItem]:
    items = list(items or [])
    if not items:
        raise ValidationError("Invoice must contain at least one item", field="items", expected=">= 1", actual=0)
    return [_normalize_item(i, it, currency) for i, it in enumerate(items)]


def compute_totals(
    items: Sequence[LineItem],
    discount_amount: Any = 0,
    currency: Optional[str] = None,
) -> Totals:
    discount = round_money(discount_amount or 0, currency, "discount_amount")
    if discount < 0:
        raise ValidationError("Discount amount must be non-negative", field="discount_amount", expected=">= 0", actual=discount)

    subtotal = round_money(sum((it.amount for it in items), Decimal(0)), currency)
    tax_amount = round_money(
        sum((multiply(it.amount, it.tax_rate, rounded=False) / 100 for it in items), Decimal(0)),
        currency,
    )
    raw_total = subtotal + tax_amount - discount
    if raw_total < 0:
        raise ValidationError(
            "Discount exceeds subtotal plus tax",
            field="discount_amount",
            expected=f"<= {subtotal + tax_amount}",
            actual=discount,
        )
    return Totals(
        subtotal=ensure_non_negative("subtotal", subtotal),
        tax_amount=ensure_non_negative("tax_amount", tax_amount),
        discount_amount=discount,
        total_amount=round_money(raw_total, currency),
    )


def calculate(
    items: Optional[Iterable[ItemLike]],
    discount_amount: Any = 0,
    currency: Optional[str] = None,
) -> Tuple[List[LineItem], Totals]:
    """Valide les lignes, recalcule leurs montants et retourne (lignes, totaux)."""
    normalized = normalize_items(items, currency)
    return normalized, compute_totals(normalized, discount_amount, currency)


def verify_totals(invoice: Invoice) -> None:
    """Recalcule et compare aux totaux stockés ; toute divergence est un défaut du code appelant."""
    for field in ("subtotal", "tax_amount", "total_amount", "paid_amount", "discount_amount"):
        value = getattr(invoice, field)
        if value < 0:
            logger.error("Montant négatif avant persistance: %s=%s (facture %s)", field, value, invoice.id)
            ensure_non_negative(field, value)

    _, expected = calculate(invoice.items, invoice.discount_amount, invoice.currency)
    for field in ("subtotal", "tax_amount", "total_amount"):
        stored = getattr(invoice, field)
        wanted = getattr(expected, field)
        if stored != wanted:
            logger.error("Totaux incohérents: %s=%s attendu %s (facture %s)", field, stored, wanted, invoice.id)
            raise InvariantViolation(
                f"Stored {field} does not match recomputation",
                field=field,
                expected=wanted,
                actual=stored,
            )
    for idx, item in enumerate(invoice.items):
        if item.amount != multiply(item.quantity, item.rate, currency=invoice.currency):
            raise InvariantViolation(
                "Stored item amount does not match quantity x rate",
                field=f"items[{idx}].amount",
                expected=multiply(item.quantity, item.rate, currency=invoice.currency),
                actual=item.amount,
            )
    if invoice.paid_amount > invoice.total_amount:
        raise InvariantViolation(
            "Paid amount exceeds total",
            field="paid_amount",
            expected=f"<= {invoice.total_amount}",
            actual=invoice.paid_amount,
        )
