from __future__ import annotations

import glob
import json
import logging
import os
import shutil
import threading
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

from invoicing.errors import DuplicateNumberError, NotFoundError, StaleWriteError, ValidationError
from invoicing.models.common import utcnow
from invoicing.models.invoice import Invoice
from invoicing.services.status_service import apply_payment

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# un verrou par fichier : deux stores ouverts sur le même JSON se sérialisent
_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, threading.RLock())


def _encode(value: Any) -> Any:
    # Decimal -> str pour ne jamais repasser par un float
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class JsonStore:
    """
    Liste d'enregistrements dans un fichier JSON.
    - copie horodatée avant chaque écriture, on garde les ``backup_keep`` dernières
    - contenu inchangé : aucune écriture, aucune copie
    - JSON illisible : mis de côté en .corrupt.json, on repart d'une liste vide
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))
        self._lock = _lock_for(self.filepath)

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._save([])

    # ---------- fichier ---------- #

    def _load(self) -> List[Record]:
        with self._lock:
            try:
                raw = json.loads(self.filepath.read_text(encoding="utf-8"))
            except FileNotFoundError:
                return []
            except json.JSONDecodeError:
                aside = self.filepath.with_suffix(".corrupt.json")
                logger.warning("JSON illisible dans %s, copie dans %s", self.filepath, aside.name)
                try:
                    shutil.copy2(self.filepath, aside)
                except OSError:
                    logger.exception("Impossible de mettre %s de côté", self.filepath)
                return []
            return raw if isinstance(raw, list) else []

    def _prune_backups(self) -> None:
        if self.backup_keep <= 0:
            return
        backups = sorted(glob.glob(str(self.filepath.with_suffix(".*.bak.json"))))
        for stale in backups[: max(0, len(backups) - self.backup_keep)]:
            Path(stale).unlink(missing_ok=True)

    def _save(self, records: List[Mapping[str, Any]]) -> None:
        payload = json.dumps(list(records), ensure_ascii=False, indent=2, default=_encode)
        with self._lock:
            if self.filepath.exists():
                if self.filepath.read_text(encoding="utf-8") == payload:
                    return
                if self.backup_enabled:
                    stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                    shutil.copy2(self.filepath, self.filepath.with_suffix(f".{stamp}.bak.json"))
                    self._prune_backups()
            # fichier temporaire puis remplacement : jamais de JSON à moitié écrit
            tmp = self.filepath.with_suffix(".tmp")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.filepath)

    @staticmethod
    def _position(records: List[Record], record_id: Any) -> int:
        return next((i for i, r in enumerate(records) if str(r.get("id")) == str(record_id)), -1)

    # ---------- lecture ---------- #

    def list_all(self) -> List[Record]:
        return self._load()

    def get_by_id(self, record_id: Any) -> Optional[Record]:
        records = self._load()
        idx = self._position(records, record_id)
        return records[idx] if idx >= 0 else None


class InvoiceRepository(JsonStore):
    """
    Stockage des factures :
    - index unique sur invoice_number (DuplicateNumberError)
    - verrou optimiste sur "version" (StaleWriteError)
    - compteurs atomiques par préfixe (fichier voisin <nom>.counters.json)
    """

    def __init__(self, filepath: Union[str, Path], **kwargs: Any) -> None:
        super().__init__(filepath, **kwargs)
        self.counters_path = self.filepath.with_name(f"{self.filepath.stem}.counters.json")

    # ---------- numéros ---------- #

    def find_unique_numbers(self, prefix: str = "") -> List[str]:
        return sorted({
            str(r["invoice_number"]) for r in self._load()
            if r.get("invoice_number") and str(r["invoice_number"]).startswith(prefix)
        })

    def increment_counter(self, prefix: str, seed: Optional[Callable[[], int]] = None) -> int:
        """Prochaine valeur de la séquence ``prefix`` ; ``seed`` amorce une séquence encore inconnue."""
        with self._lock:
            counters: Dict[str, int] = {}
            if self.counters_path.exists():
                try:
                    counters = json.loads(self.counters_path.read_text(encoding="utf-8")) or {}
                except json.JSONDecodeError:
                    logger.warning("Compteurs %s illisibles, réamorçage", self.counters_path)
            if prefix not in counters:
                counters[prefix] = seed() if seed else 0
            counters[prefix] = int(counters[prefix]) + 1
            self.counters_path.write_text(json.dumps(counters, indent=2), encoding="utf-8")
            return counters[prefix]

    # ---------- écriture ---------- #

    @staticmethod
    def _as_record(invoice: Union[BaseModel, Mapping[str, Any]]) -> Record:
        if isinstance(invoice, BaseModel):
            return invoice.model_dump(mode="json")
        return dict(invoice)

    def commit(self, invoice: Union[BaseModel, Mapping[str, Any]], expected_version: Optional[int] = None) -> Record:
        record = self._as_record(invoice)
        record["id"] = record.get("id") or uuid4().hex
        number = record.get("invoice_number")

        with self._lock:
            records = self._load()
            idx = self._position(records, record["id"])

            if number and any(
                r.get("invoice_number") == number and str(r.get("id")) != str(record["id"]) for r in records
            ):
                raise DuplicateNumberError(number)

            if idx < 0:
                record["version"] = 1
                records.append(record)
            else:
                stored = records[idx]
                current = int(stored.get("version") or 0)
                if expected_version is not None and current != expected_version:
                    raise StaleWriteError(str(record["id"]), expected_version, current)
                if stored.get("invoice_number") and stored.get("invoice_number") != number:
                    raise ValidationError(
                        "Invoice number is immutable once assigned",
                        field="invoice_number",
                        expected=stored.get("invoice_number"),
                        actual=number,
                    )
                record["version"] = current + 1
                records[idx] = record
            self._save(records)
        return record

    def atomic_increment_paid(self, invoice_id: str, delta: Any, now: Optional[datetime] = None, **payment: Any) -> Decimal:
        """
        Encaisse ``delta`` sous le verrou du fichier et retourne le nouveau total payé.
        Même règle que InvoiceService.record_payment : PaymentRecord ajouté,
        status / payment_status / payment_date redérivés, version incrémentée.
        """
        now = now or utcnow()
        with self._lock:
            records = self._load()
            idx = self._position(records, invoice_id)
            if idx < 0:
                raise NotFoundError(f"Invoice {invoice_id} not found", field="id", actual=invoice_id)
            invoice = Invoice.model_validate(records[idx])
            apply_payment(invoice, delta, now, **payment)
            invoice.touch(now)
            record = invoice.model_dump(mode="json")
            record["version"] = int(records[idx].get("version") or 0) + 1
            records[idx] = record
            self._save(records)
        return invoice.paid_amount
