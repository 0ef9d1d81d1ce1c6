from __future__ import annotations
from typing import Any, Dict, Optional


class InvoiceError(Exception):
    """Erreur métier de base : garde le champ fautif et l'écart attendu/obtenu."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": type(self).__name__, "message": self.message}
        if self.field is not None:
            out["field"] = self.field
        if self.expected is not None:
            out["expected"] = str(self.expected)
        if self.actual is not None:
            out["actual"] = str(self.actual)
        return out


class ValidationError(InvoiceError):
    """Entrée invalide : l'appelant corrige et renvoie."""


class ConflictError(InvoiceError):
    """Écriture concurrente perdue : à rejouer avec des données fraîches."""


class DuplicateNumberError(ConflictError):
    def __init__(self, number: str) -> None:
        super().__init__(
            f"Invoice number {number} is a duplicate of an already issued number",
            field="invoice_number",
            actual=number,
        )
        self.number = number


class StaleWriteError(ConflictError):
    def __init__(self, invoice_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Invoice {invoice_id} was modified concurrently",
            field="version",
            expected=expected_version,
            actual=actual_version,
        )
        self.invoice_id = invoice_id


class InvariantViolation(InvoiceError):
    """Défaut du code appelant (totaux incohérents, montant négatif) : à alerter, pas à corriger."""


class NotFoundError(InvoiceError):
    pass
