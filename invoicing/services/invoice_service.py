# invoicing/services/invoice_service.py
from __future__ import annotations
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional

from pydantic import ValidationError as ModelValidationError

from invoicing.errors import ConflictError, NotFoundError, StaleWriteError, ValidationError
from invoicing.models.client import Client, CompanyProfile, Project
from invoicing.models.common import utcnow
from invoicing.models.document import Document
from invoicing.models.invoice import CURRENCIES, DEFAULT_TERMS, Invoice
from invoicing.models.template import Customization
from invoicing.services import pdf_service
from invoicing.services.calculator import ItemLike, calculate, normalize_items, verify_totals
from invoicing.services.numbering_service import NumberAllocator, check_manual_number
from invoicing.services.paginator import render_document
from invoicing.services.status_service import apply_payment, apply_status, set_paid_amount, transition
from invoicing.settings import Settings, data_dir, load_settings
from invoicing.storage.repo import InvoiceRepository

logger = logging.getLogger(__name__)

# champs financiers : modifiables seulement en brouillon
_DRAFT_ONLY = ("items", "discount_amount", "currency")
_EDITABLE = ("due_date", "notes", "terms", "terms_and_conditions", "project_id")


def recompute(invoice: Invoice, now: Optional[datetime] = None) -> Invoice:
    """Recalcule lignes + totaux puis redérive les statuts. Appelé à chaque changement de lignes ou de paiement."""
    items, totals = calculate(invoice.items, invoice.discount_amount, invoice.currency)
    if invoice.paid_amount > totals.total_amount:
        raise ValidationError(
            "New total is below the amount already paid",
            field="items",
            expected=f">= {invoice.paid_amount}",
            actual=totals.total_amount,
        )
    invoice.items = items
    invoice.subtotal = totals.subtotal
    invoice.tax_amount = totals.tax_amount
    invoice.discount_amount = totals.discount_amount
    invoice.total_amount = totals.total_amount
    return apply_status(invoice, now)


class InvoiceService:
    def __init__(
        self,
        repo: Optional[InvoiceRepository] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or load_settings()
        self.repo = repo or InvoiceRepository(data_dir() / "invoices.json")
        self.clock = clock
        numbering = self.settings.numbering
        self.numbers = NumberAllocator(
            self.repo,
            prefix=numbering.invoice_prefix,
            width=numbering.width,
            strategy=numbering.strategy,
            max_retries=self.settings.max_commit_retries,
        )

    # ----------- lecture -----------
    def get_by_id(self, invoice_id: str) -> Invoice:
        record = self.repo.get_by_id(invoice_id)
        if record is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", field="id", actual=invoice_id)
        return Invoice(**record)

    def list_invoices(self) -> List[Invoice]:
        out: List[Invoice] = []
        for d in self.repo.list_all():
            try:
                out.append(Invoice(**d))
            except ModelValidationError:
                logger.warning("Facture illisible ignorée: %s", d.get("id"))
                continue
        return out

    # ----------- création -----------
    def create_invoice(
        self,
        *,
        client_id: str,
        items: Iterable[ItemLike],
        due_date: date,
        issue_date: Optional[date] = None,
        discount_amount: Any = 0,
        currency: Optional[str] = None,
        project_id: Optional[str] = None,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        terms_and_conditions: Optional[str] = None,
        created_by: Optional[str] = None,
        invoice_number: Optional[str] = None,
        status: str = "draft",
    ) -> Invoice:
        now = self.clock()
        currency = currency or self.settings.default_currency
        if currency not in CURRENCIES:
            raise ValidationError("Unsupported currency", field="currency", expected=list(CURRENCIES), actual=currency)
        if status not in ("draft", "sent"):
            raise ValidationError("New invoices start as draft or sent", field="status", expected=["draft", "sent"], actual=status)

        normalized, totals = calculate(items, discount_amount, currency)
        invoice = Invoice(
            client_id=client_id,
            project_id=project_id,
            issue_date=issue_date or now.date(),
            due_date=due_date,
            items=normalized,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            currency=currency,
            status=status,
            notes=notes,
            terms=terms or DEFAULT_TERMS,
            terms_and_conditions=terms_and_conditions,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        apply_status(invoice, now)
        verify_totals(invoice)

        if invoice_number:
            # numéro saisi à la main : pas de générateur, mais contrôle d'unicité
            invoice.invoice_number = check_manual_number(invoice_number, self.repo.find_unique_numbers())
            record = self.repo.commit(invoice)
        else:
            def _commit(number: str):
                invoice.invoice_number = number
                return self.repo.commit(invoice)

            record = self.numbers.allocate_and_commit(_commit)

        logger.info("Facture %s créée (total %s %s)", record["invoice_number"], invoice.total_amount, currency)
        return Invoice(**record)

    # ----------- mutations -----------
    def _mutate(
        self,
        invoice_id: str,
        change: Callable[[Invoice, datetime], Invoice],
        expected_version: Optional[int] = None,
    ) -> Invoice:
        """
        Lecture -> modification -> commit avec verrou optimiste.
        Sans version imposée par l'appelant, on relit et on rejoue en cas d'écriture concurrente.
        """
        attempts = 1 if expected_version is not None else self.settings.max_commit_retries
        last: Optional[StaleWriteError] = None
        for attempt in range(1, attempts + 1):
            invoice = self.get_by_id(invoice_id)
            version = invoice.version if expected_version is None else expected_version
            now = self.clock()
            invoice = change(invoice, now)
            verify_totals(invoice)
            invoice.touch(now)
            try:
                return Invoice(**self.repo.commit(invoice, expected_version=version))
            except StaleWriteError as e:
                last = e
                logger.warning("Écriture concurrente sur %s (essai %d/%d)", invoice_id, attempt, attempts)
        if expected_version is not None and last is not None:
            raise last
        raise ConflictError(
            f"Invoice {invoice_id} kept changing, giving up after {attempts} attempts",
            field="version",
            expected=last.expected if last else None,
            actual=last.actual if last else None,
        )

    def update_invoice(self, invoice_id: str, changes: Mapping[str, Any], expected_version: Optional[int] = None) -> Invoice:
        unknown = set(changes) - set(_DRAFT_ONLY) - set(_EDITABLE)
        if unknown:
            raise ValidationError("Fields cannot be updated", field=sorted(unknown)[0], actual=sorted(unknown))

        def _apply(inv: Invoice, now: datetime) -> Invoice:
            if inv.status == "cancelled":
                raise ValidationError("Cancelled invoices cannot be edited", field="status", actual=inv.status)
            touched = [k for k in _DRAFT_ONLY if k in changes]
            if touched and inv.status != "draft":
                raise ValidationError(
                    f"{touched[0]} can only change while the invoice is a draft",
                    field=touched[0],
                    expected="draft",
                    actual=inv.status,
                )
            if "currency" in changes and changes["currency"] not in CURRENCIES:
                raise ValidationError("Unsupported currency", field="currency", expected=list(CURRENCIES), actual=changes["currency"])
            others = {k: v for k, v in changes.items() if k != "items"}
            if others:
                try:
                    inv = Invoice.model_validate({**inv.model_dump(), **others})
                except ModelValidationError as e:
                    err = e.errors()[0]
                    raise ValidationError(
                        err.get("msg", "Invalid value"),
                        field=".".join(str(p) for p in err.get("loc", ())),
                        actual=err.get("input"),
                    ) from e
            if "items" in changes:
                inv.items = normalize_items(changes["items"], inv.currency)
            return recompute(inv, now)

        return self._mutate(invoice_id, _apply, expected_version)

    def record_payment(
        self,
        invoice_id: str,
        amount: Any,
        *,
        method: Optional[str] = None,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        def _apply(inv: Invoice, now: datetime) -> Invoice:
            return apply_payment(
                inv, amount, now, method=method, transaction_id=transaction_id, notes=notes, paid_at=paid_at,
            )

        invoice = self._mutate(invoice_id, _apply, expected_version)
        logger.info(
            "Paiement %s sur %s : payé %s / %s (%s)",
            amount, invoice.invoice_number, invoice.paid_amount, invoice.total_amount, invoice.payment_status,
        )
        return invoice

    def set_paid_amount(self, invoice_id: str, paid_amount: Any, expected_version: Optional[int] = None, **payment: Any) -> Invoice:
        return self._mutate(invoice_id, lambda inv, now: set_paid_amount(inv, paid_amount, now, **payment), expected_version)

    def send_invoice(self, invoice_id: str, expected_version: Optional[int] = None) -> Invoice:
        return self._mutate(invoice_id, lambda inv, now: transition(inv, "sent", now), expected_version)

    def cancel_invoice(self, invoice_id: str, expected_version: Optional[int] = None) -> Invoice:
        return self._mutate(invoice_id, lambda inv, now: transition(inv, "cancelled", now), expected_version)

    def refresh_statuses(self) -> List[Invoice]:
        """Repasse la dérivation sur les factures envoyées (bascule en retard). Retourne celles qui ont changé."""
        changed: List[Invoice] = []
        for inv in self.list_invoices():
            if inv.status != "sent":
                continue
            preview = apply_status(inv.model_copy(deep=True), self.clock())
            if preview.status != inv.status:
                changed.append(self._mutate(inv.id, lambda i, now: apply_status(i, now)))
        return changed

    # ----------- rendu ----------
    def _customization(self, customization: Optional[Customization | Mapping[str, Any]]) -> Customization:
        if isinstance(customization, Customization):
            return customization
        return Customization.from_options({**self.settings.customization, **dict(customization or {})})

    def render_invoice(
        self,
        invoice_id: str,
        client: Client,
        project: Optional[Project] = None,
        company: Optional[CompanyProfile] = None,
        customization: Optional[Customization | Mapping[str, Any]] = None,
    ) -> Document:
        invoice = self.get_by_id(invoice_id)
        return render_document(
            invoice,
            client,
            company or self.settings.company,
            project,
            self._customization(customization),
        )

    def export_invoice_html(self, invoice_id: str, client: Client, **kwargs: Any) -> str:
        custom = self._customization(kwargs.pop("customization", None))
        document = self.render_invoice(invoice_id, client, customization=custom, **kwargs)
        return pdf_service.render_html(document, custom)

    def export_invoice_pdf(self, invoice_id: str, client: Client, out_dir: Optional[str | Path] = None, **kwargs: Any) -> str:
        custom = self._customization(kwargs.pop("customization", None))
        document = self.render_invoice(invoice_id, client, customization=custom, **kwargs)
        return pdf_service.export_pdf(document, custom, out_dir=out_dir, settings=self.settings)
