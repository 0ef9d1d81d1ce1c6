"""
Numérotation des factures : PREFIX + suffixe numérique à largeur fixe (A00001).

``next_number`` est pur et seulement indicatif : deux appelants qui lisent le
même maximum calculent le même numéro. L'unicité est garantie par le stockage,
soit via la contrainte d'unicité + nouvel essai, soit via un compteur atomique.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Literal, Optional, TypeVar

from invoicing.errors import ConflictError, DuplicateNumberError, ValidationError
from invoicing.storage.repo import InvoiceRepository

logger = logging.getLogger(__name__)

NumberingStrategy = Literal["unique_retry", "counter"]

T = TypeVar("T")


def parse_suffix(number: str, prefix: str) -> Optional[int]:
    if not number or not number.startswith(prefix):
        return None
    tail = number[len(prefix):]
    if not tail.isdigit():
        return None
    return int(tail)


def highest_sequence(existing: Iterable[str], prefix: str) -> int:
    best = 0
    for n in existing:
        seq = parse_suffix(n, prefix)
        if seq is not None and seq > best:
            best = seq
    return best


def format_number(prefix: str, seq: int, width: int = 5) -> str:
    return f"{prefix}{seq:0{width}d}"


def next_number(existing: Iterable[str], prefix: str = "A", width: int = 5) -> str:
    # compare sur la valeur numérique : identique à l'ordre lexicographique
    # tant que la largeur est fixe, et reste juste si elle déborde (A99999 -> A100000)
    return format_number(prefix, highest_sequence(existing, prefix) + 1, width)


def check_manual_number(number: str, existing: Iterable[str]) -> str:
    number = (number or "").strip()
    if not number:
        raise ValidationError("Invoice number cannot be empty", field="invoice_number")
    if number in set(existing):
        raise DuplicateNumberError(number)
    return number


class NumberAllocator:
    """
    Attribue un numéro et persiste la facture en une seule étape.
    - unique_retry : lit les numéros, calcule le suivant, commit ; sur doublon on relit et on rejoue
    - counter      : incrément atomique d'une séquence par préfixe dans le stockage
    """

    def __init__(
        self,
        repo: InvoiceRepository,
        prefix: str = "A",
        width: int = 5,
        strategy: NumberingStrategy = "unique_retry",
        max_retries: int = 5,
    ) -> None:
        self.repo = repo
        self.prefix = prefix
        self.width = width
        self.strategy = strategy
        self.max_retries = max(1, int(max_retries))

    def propose(self) -> str:
        if self.strategy == "counter":
            seq = self.repo.increment_counter(self.prefix, seed=self._seed)
            return format_number(self.prefix, seq, self.width)
        return next_number(self.repo.find_unique_numbers(self.prefix), self.prefix, self.width)

    def _seed(self) -> int:
        return highest_sequence(self.repo.find_unique_numbers(self.prefix), self.prefix)

    def allocate_and_commit(self, commit: Callable[[str], T]) -> T:
        """
        ``commit(number)`` doit persister la facture et lever DuplicateNumberError
        si le numéro est déjà pris.
        """
        last_error: Optional[DuplicateNumberError] = None
        for attempt in range(1, self.max_retries + 1):
            number = self.propose()
            try:
                return commit(number)
            except DuplicateNumberError as e:
                last_error = e
                logger.warning("Numéro %s déjà pris (essai %d/%d), nouvel essai", number, attempt, self.max_retries)
        raise ConflictError(
            f"Could not allocate a unique invoice number after {self.max_retries} attempts",
            field="invoice_number",
            actual=last_error.number if last_error else None,
        )
