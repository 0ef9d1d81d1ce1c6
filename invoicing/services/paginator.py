"""
Mise en page d'une facture en pages de taille fixe.

Chaque bloc (en-tête, destinataire, ligne du tableau avec sa note, totaux,
ligne de texte libre) est atomique : s'il ne tient pas sous le curseur,
on ouvre une nouvelle page avant de l'émettre. Aucun bloc n'est coupé.

Le rendu est une projection pure : la facture n'est jamais modifiée et les
mêmes entrées donnent les mêmes pages.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from invoicing.models.client import Client, CompanyProfile, Project
from invoicing.models.document import (
    Alignment,
    Document,
    DrawInstruction,
    FontWeight,
    ImageInstruction,
    Page,
    TableCell,
    TableRow,
)
from invoicing.models.invoice import Invoice, LineItem
from invoicing.models.template import Customization
from invoicing.services.formatting import format_date, format_money, format_quantity, wrap_text

logger = logging.getLogger(__name__)

LINE_SPACING = 1.4
DEFAULT_TERMS_TEXT = "Payment is due within 30 days of invoice date."


@dataclass(frozen=True)
class PageGeometry:
    # A4 portrait en points
    width: float = 595.0
    height: float = 842.0
    top_margin: float = 40.0
    bottom_margin: float = 40.0
    left_margin: float = 40.0
    right_margin: float = 40.0
    header_height: float = 120.0

    @property
    def content_width(self) -> float:
        return self.width - self.left_margin - self.right_margin

    @property
    def safe_bottom(self) -> float:
        return self.height - self.bottom_margin

    @property
    def content_height(self) -> float:
        return self.safe_bottom - self.top_margin

    @property
    def right_edge(self) -> float:
        return self.width - self.right_margin


@dataclass(frozen=True)
class Column:
    title: str
    share: float  # fraction de la largeur utile
    alignment: Alignment


COLUMNS: Tuple[Column, ...] = (
    Column("Description", 0.46, "left"),
    Column("Qty", 0.10, "center"),
    Column("Rate", 0.16, "right"),
    Column("Tax", 0.09, "right"),
    Column("Amount", 0.19, "right"),
)

CELL_PADDING = 6.0
ROW_PADDING = 4.0
NOTE_INDENT = 12.0
LOGO_SIZE = 48.0
LOGO_GAP = 12.0


def line_height(font_size: float) -> float:
    return font_size * LINE_SPACING


@dataclass
class _Line:
    """Ligne de texte à placer, relative au haut du bloc."""
    text: str
    x: float
    font_size: float = 10
    font_weight: FontWeight = "normal"
    alignment: Alignment = "left"
    color: Optional[str] = None
    heading: bool = False


class InvoiceLayout:
    def __init__(
        self,
        invoice: Invoice,
        client: Client,
        company: Optional[CompanyProfile] = None,
        project: Optional[Project] = None,
        customization: Optional[Customization] = None,
        geometry: Optional[PageGeometry] = None,
    ) -> None:
        self.invoice = invoice
        self.client = client
        self.company = company or CompanyProfile()
        self.project = project
        self.custom = customization or Customization()
        self.geo = geometry or PageGeometry()
        self.currency = invoice.currency or self.custom.currency or "INR"

        self.pages: List[Page] = []
        self.cursor = 0.0
        self._columns = self._column_cells()

    # ---------- pages & curseur ---------- #

    def _new_page(self) -> Page:
        page = Page(
            number=len(self.pages) + 1,
            width=self.geo.width,
            height=self.geo.height,
            top_margin=self.geo.top_margin,
            bottom_margin=self.geo.bottom_margin,
            content_bottom=self.geo.top_margin,
        )
        self.pages.append(page)
        self.cursor = self.geo.top_margin
        return page

    @property
    def page(self) -> Page:
        return self.pages[-1]

    def _fits(self, height: float) -> bool:
        return self.cursor + height <= self.geo.safe_bottom

    def _ensure_room(self, height: float) -> bool:
        """Ouvre une page si le bloc ne tient pas. Retourne True si une page a été ouverte."""
        if self._fits(height) or self.cursor <= self.geo.top_margin:
            return False
        self._new_page()
        return True

    def _gap(self, height: float) -> None:
        self.cursor = min(self.cursor + height, self.geo.safe_bottom)

    def _commit_height(self, height: float) -> None:
        self.cursor += height
        self.page.content_bottom = max(self.page.content_bottom, self.cursor)

    def _draw(self, line: _Line, top: float) -> None:
        self.page.instructions.append(DrawInstruction(
            text=line.text,
            x=line.x,
            y=round(top + line.font_size, 2),
            font_size=line.font_size,
            font_weight=line.font_weight,
            alignment=line.alignment,
            color=line.color or self.custom.text_color,
            font=self.custom.heading_font if line.heading else self.custom.body_font,
        ))

    def _emit_lines(self, lines: Sequence[_Line]) -> None:
        """Un bloc de lignes empilées, atomique."""
        height = sum(line_height(l.font_size) for l in lines)
        self._ensure_room(height)
        top = self.cursor
        for l in lines:
            self._draw(l, top)
            top += line_height(l.font_size)
        self._commit_height(height)

    # ---------- en-tête ---------- #

    def _header(self) -> None:
        geo, c, inv = self.geo, self.custom, self.invoice
        top = self.cursor
        text_x = geo.left_margin
        if c.show_logo and c.company_logo.strip():
            # logo carré à gauche, la colonne société se décale d'autant
            self.page.images.append(ImageInstruction(
                src=c.company_logo.strip(), x=geo.left_margin, y=top, width=LOGO_SIZE, height=LOGO_SIZE,
            ))
            text_x += LOGO_SIZE + LOGO_GAP

        left: List[_Line] = [_Line(self.company.name, text_x, 20, "bold", color=c.primary_color, heading=True)]
        if c.show_company_details:
            width = geo.content_width / 2 - (text_x - geo.left_margin)
            details = wrap_text(self.company.address, width, 9)[:2]
            contact = " • ".join(p for p in [self.company.phone, self.company.email] if p)
            details += [p for p in [contact, self.company.website] if p]
            left += [_Line(d, text_x, 9, color=c.secondary_color) for d in details]

        right: List[_Line] = [
            _Line("INVOICE", geo.right_edge, 18, "bold", "right", c.primary_color, heading=True),
            _Line(f"Invoice #: {inv.invoice_number or '-'}", geo.right_edge, 9, alignment="right"),
            _Line(f"Date: {format_date(inv.issue_date, c.date_format)}", geo.right_edge, 9, alignment="right"),
            _Line(f"Due Date: {format_date(inv.due_date, c.date_format)}", geo.right_edge, 9, alignment="right"),
            _Line(f"Status: {inv.status.upper()}", geo.right_edge, 9, "bold", "right"),
        ]
        for column in (left, right):
            y = top
            for l in column:
                self._draw(l, y)
                y += line_height(l.font_size)
        self._commit_height(geo.header_height)

    # ---------- destinataire ---------- #

    def _bill_to(self) -> None:
        geo, c, client = self.geo, self.custom, self.client
        x = geo.left_margin
        lines = [
            _Line("Bill To:", x, 12, "bold", color=c.primary_color, heading=True),
            _Line(client.company_name, x, 11, "bold"),
        ]
        contact = client.contact_person
        if contact is not None:
            if contact.full_name:
                lines.append(_Line(contact.full_name, x, 10))
            if contact.email:
                lines.append(_Line(str(contact.email), x, 9, color=c.secondary_color))
        if client.address is not None:
            lines += [_Line(a, x, 9, color=c.secondary_color) for a in client.address.lines()]
        self._emit_lines(lines)

        if self.project is not None:
            self._gap(4)
            self._emit_lines([_Line(f"Project: {self.project.name}", x, 10)])

    # ---------- tableau ---------- #

    def _column_cells(self) -> List[Tuple[Column, float, float]]:
        x = self.geo.left_margin
        out = []
        for col in COLUMNS:
            w = self.geo.content_width * col.share
            out.append((col, x, w))
            x += w
        return out

    def _table_header(self) -> None:
        height = line_height(10) + 2 * ROW_PADDING
        self.page.rows.append(TableRow(
            y=self.cursor,
            height=height,
            cells=[TableCell(text=col.title, x=x, width=w, alignment=col.alignment) for col, x, w in self._columns],
            font_weight="bold",
            background=self.custom.accent_color,
            color=self.custom.text_color,
        ))
        self._commit_height(height)

    def _item_block(self, item: LineItem) -> Tuple[List[str], List[str], float, float]:
        desc_width = self._columns[0][2] - 2 * CELL_PADDING
        desc_lines = wrap_text(item.description, desc_width, 10) or [""]
        note_lines = wrap_text(item.note, desc_width - NOTE_INDENT, 8.5)
        row_h = len(desc_lines) * line_height(10) + 2 * ROW_PADDING
        note_h = len(note_lines) * line_height(8.5)
        return desc_lines, note_lines, row_h, note_h

    def _item_row(self, item: LineItem, desc_lines: List[str], row_h: float) -> None:
        values = [
            "\n".join(desc_lines),
            format_quantity(item.quantity),
            format_money(item.rate, self.currency),
            f"{format_quantity(item.tax_rate)}%",
            format_money(item.amount, self.currency),
        ]
        self.page.rows.append(TableRow(
            y=self.cursor,
            height=row_h,
            cells=[
                TableCell(text=v, x=x, width=w, alignment=col.alignment)
                for v, (col, x, w) in zip(values, self._columns)
            ],
            color=self.custom.text_color,
        ))
        self._commit_height(row_h)

    def _note_lines(self, note_lines: List[str]) -> None:
        x = self.geo.left_margin + CELL_PADDING + NOTE_INDENT
        for n in note_lines:
            self._draw(_Line(n, x, 8.5, color=self.custom.secondary_color), self.cursor)
            self._commit_height(line_height(8.5))

    def _items_table(self) -> None:
        header_h = line_height(10) + 2 * ROW_PADDING
        for idx, item in enumerate(self.invoice.items):
            desc_lines, note_lines, row_h, note_h = self._item_block(item)
            block_h = row_h + note_h
            if idx == 0:
                # l'en-tête du tableau reste avec la première ligne
                self._ensure_room(header_h + min(block_h, self.geo.content_height - header_h))
                self._table_header()

            if block_h + header_h <= self.geo.content_height:
                if self._ensure_room(block_h):
                    self._table_header()
                self._item_row(item, desc_lines, row_h)
                self._note_lines(note_lines)
                continue

            # note trop longue pour une page entière : la ligne puis chaque sous-ligne, chacune atomique
            logger.warning("Note de la ligne %d plus haute qu'une page, découpée par ligne", idx + 1)
            if self._ensure_room(row_h):
                self._table_header()
            self._item_row(item, desc_lines, row_h)
            for n in note_lines:
                self._ensure_room(line_height(8.5))
                self._note_lines([n])

    # ---------- totaux ---------- #

    def _totals(self) -> None:
        inv, c, geo = self.invoice, self.custom, self.geo
        label_x = geo.right_edge - 220
        rows: List[Tuple[str, str, float, FontWeight, Optional[str]]] = [
            ("Subtotal:", format_money(inv.subtotal, self.currency), 10, "normal", None),
        ]
        if inv.tax_amount > 0:
            rows.append(("Tax:", format_money(inv.tax_amount, self.currency), 10, "normal", None))
        if inv.discount_amount > 0:
            rows.append(("Discount:", "-" + format_money(inv.discount_amount, self.currency), 10, "normal", None))
        rows.append(("Total:", format_money(inv.total_amount, self.currency), 12, "bold", c.primary_color))
        if inv.paid_amount > 0:
            rows.append(("Paid:", format_money(inv.paid_amount, self.currency), 10, "normal", None))
            if inv.payment_date is not None:
                rows.append(("Payment Date:", format_date(inv.payment_date, c.date_format), 10, "normal", None))
            if inv.paid_amount < inv.total_amount:
                rows.append(("Balance Due:", format_money(inv.remaining_amount(), self.currency), 10, "bold", None))

        height = sum(line_height(size) for _, _, size, _, _ in rows)
        self._ensure_room(height)
        top = self.cursor
        for label, value, size, weight, color in rows:
            self._draw(_Line(label, label_x, size, weight, "left", color), top)
            self._draw(_Line(value, geo.right_edge, size, weight, "right", color), top)
            top += line_height(size)
        self._commit_height(height)

    # ---------- textes libres ---------- #

    def _text_section(self, heading: Optional[str], text: Optional[str], *, align: Alignment = "left") -> None:
        geo, c = self.geo, self.custom
        lines = wrap_text(text, geo.content_width, 9)
        if not lines:
            return
        x = geo.width / 2 if align == "center" else geo.left_margin
        self._gap(12)
        if heading:
            heading_line = _Line(heading, geo.left_margin, 10.5, "bold", color=c.primary_color, heading=True)
            # le titre ne reste jamais seul en bas de page
            self._ensure_room(line_height(10.5) + line_height(9))
            self._emit_lines([heading_line])
        for text_line in lines:
            self._emit_lines([_Line(text_line, x, 9, alignment=align, color=c.secondary_color)])

    def _free_text(self) -> None:
        inv, c = self.invoice, self.custom
        self._text_section("Notes:", inv.notes)
        if c.show_payment_terms:
            self._text_section("Payment Terms:", c.payment_terms_text or inv.terms or DEFAULT_TERMS_TEXT)
        self._text_section("Terms & Conditions:", c.terms_and_conditions or inv.terms_and_conditions)
        footer = c.footer_text
        if c.show_company_details:
            contact = " • ".join(p for p in [self.company.name, self.company.phone, self.company.email, self.company.website] if p)
            footer = "\n".join(p for p in [footer, contact] if p)
        self._text_section(None, footer, align="center")

    # ---------- point d'entrée ---------- #

    def render(self) -> Document:
        self.pages = []
        self._new_page()
        self._header()
        self._gap(8)
        self._bill_to()
        self._gap(16)
        self._items_table()
        self._gap(14)
        self._totals()
        self._free_text()
        return Document(invoice_number=self.invoice.invoice_number, pages=self.pages)


def render_document(
    invoice: Invoice,
    client: Client,
    company: Optional[CompanyProfile] = None,
    project: Optional[Project] = None,
    customization: Optional[Customization] = None,
    geometry: Optional[PageGeometry] = None,
) -> Document:
    return InvoiceLayout(invoice, client, company, project, customization, geometry).render()


def iter_pages(*args, **kwargs) -> Iterator[Page]:
    """Séquence relançable : chaque appel refait la mise en page depuis le début."""
    yield from render_document(*args, **kwargs).pages
