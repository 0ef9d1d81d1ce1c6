from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional

from invoicing.services.money import round_money

# ---------- Devises ----------

class CurrencyFormat(NamedTuple):
    symbol: str
    group_sep: str
    decimal_sep: str
    symbol_after: bool = False
    indian_grouping: bool = False


# la devise fixe à la fois le symbole et la convention régionale
CURRENCY_FORMATS: Dict[str, CurrencyFormat] = {
    "INR": CurrencyFormat("₹", ",", ".", indian_grouping=True),   # en-IN
    "USD": CurrencyFormat("$", ",", "."),                         # en-US
    "EUR": CurrencyFormat("€", ".", ",", symbol_after=True),      # de-DE
    "GBP": CurrencyFormat("£", ",", "."),                         # en-GB
    "CAD": CurrencyFormat("CA$", ",", ".", indian_grouping=True), # en-IN, comme toute devise sans locale dédiée
    "AUD": CurrencyFormat("A$", ",", ".", indian_grouping=True),  # en-IN
}

DATE_FORMATS = {
    "MM/DD/YYYY": "%m/%d/%Y",
    "DD/MM/YYYY": "%d/%m/%Y",
    "YYYY-MM-DD": "%Y-%m-%d",
}
DEFAULT_DATE_FORMAT = "MM/DD/YYYY"


def _group(digits: str, sep: str, indian: bool) -> str:
    if len(digits) <= 3:
        return digits
    if indian:
        # 12,34,567 : trois chiffres puis des paires
        head, tail = digits[:-3], digits[-3:]
        pairs = []
        while len(head) > 2:
            pairs.insert(0, head[-2:])
            head = head[:-2]
        if head:
            pairs.insert(0, head)
        return sep.join(pairs + [tail])
    groups = []
    while digits:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    return sep.join(groups)


def format_money(amount: Any, currency: Optional[str] = "INR") -> str:
    code = (currency or "INR").upper()
    fmt = CURRENCY_FORMATS.get(code, CURRENCY_FORMATS["INR"])
    value: Decimal = round_money(amount, code)
    sign = "-" if value < 0 else ""
    int_part, frac = f"{abs(value):.2f}".split(".")
    number = f"{_group(int_part, fmt.group_sep, fmt.indian_grouping)}{fmt.decimal_sep}{frac}"
    if fmt.symbol_after:
        return f"{sign}{number} {fmt.symbol}"
    return f"{sign}{fmt.symbol}{number}"


def format_date(value: date | datetime | None, date_format: Optional[str] = DEFAULT_DATE_FORMAT) -> str:
    if value is None:
        return ""
    pattern = DATE_FORMATS.get(date_format or "", DATE_FORMATS[DEFAULT_DATE_FORMAT])
    return value.strftime(pattern)


def format_quantity(qty: Any) -> str:
    d = Decimal(str(qty))
    # 2.00 -> "2", 1.50 -> "1.5"
    text = format(d.normalize(), "f")
    return text if text != "-0" else "0"


# ---------- Mesure et découpe du texte ----------

# largeur moyenne d'un glyphe, en fraction de la taille de police
GLYPH_WIDTH = 0.5
BOLD_GLYPH_WIDTH = 0.55


def text_width(text: str, font_size: float, bold: bool = False) -> float:
    return len(text) * font_size * (BOLD_GLYPH_WIDTH if bold else GLYPH_WIDTH)


def wrap_text(text: Optional[str], max_width: float, font_size: float, bold: bool = False) -> List[str]:
    """
    Découpe aux espaces uniquement ; un mot plus large que la colonne
    occupe seul sa ligne (jamais coupé). Les sauts de ligne explicites
    démarrent un nouveau paragraphe.
    """
    lines: List[str] = []
    for paragraph in (text or "").splitlines():
        words = paragraph.split()
        if not words:
            continue
        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if text_width(candidate, font_size, bold) <= max_width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines
