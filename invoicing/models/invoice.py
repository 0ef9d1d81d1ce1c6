from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal
import math

from .common import TimeStamped, gen_id, utcnow

Currency = Literal["USD", "EUR", "GBP", "CAD", "AUD", "INR"]
InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled"]
PaymentStatus = Literal["unpaid", "partial", "paid"]
PaymentMethod = Literal["bank_transfer", "upi", "paypal", "card", "cheque", "cash"]

CURRENCIES: tuple[str, ...] = ("USD", "EUR", "GBP", "CAD", "AUD", "INR")
PAYMENT_METHODS: tuple[str, ...] = ("bank_transfer", "upi", "paypal", "card", "cheque", "cash")
DEFAULT_TERMS = "Payment is due within 30 days of invoice date."


class LineItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(min_length=1, max_length=500)
    quantity: Decimal = Field(gt=0)
    rate: Decimal = Field(ge=0)
    tax_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)
    amount: Decimal = Field(default=Decimal(0), ge=0)  # snapshot, recalculé
    note: Optional[str] = None


class PaymentRecord(BaseModel):
    id: str = Field(default_factory=gen_id)
    amount: Decimal = Field(gt=0)
    method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    at: datetime = Field(default_factory=utcnow)


class Invoice(TimeStamped):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: str = Field(default_factory=gen_id)
    invoice_number: Optional[str] = None

    client_id: str
    project_id: Optional[str] = None

    issue_date: date = Field(default_factory=lambda: utcnow().date())
    due_date: date

    items: List[LineItem] = Field(min_length=1)
    subtotal: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    currency: Currency = "INR"

    status: InvoiceStatus = "draft"
    payment_status: PaymentStatus = "unpaid"
    paid_amount: Decimal = Decimal("0.00")
    payment_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    payment_notes: Optional[str] = Field(default=None, max_length=500)
    payments: List[PaymentRecord] = Field(default_factory=list)

    notes: Optional[str] = Field(default=None, max_length=1000)
    terms: Optional[str] = Field(default=DEFAULT_TERMS, max_length=1000)
    terms_and_conditions: Optional[str] = None

    created_by: Optional[str] = None

    # verrou optimiste : incrémenté à chaque commit
    version: int = 0

    # helpers
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount

    def days_overdue(self, now: Optional[datetime] = None) -> int:
        if self.status in ("paid", "cancelled"):
            return 0
        now = now or utcnow()
        due = datetime.combine(self.due_date, datetime.min.time())
        if now > due:
            return math.ceil((now - due).total_seconds() / 86400)
        return 0
