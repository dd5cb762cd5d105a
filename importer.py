from __future__ import annotations

import csv
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Literal, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import get_current_user_id
from errors import ImportValidationError
from merchants import (
    deduplication_hash,
    detect_recurring,
    extract_merchant_from_description,
    get_category_for_merchant,
    normalize_merchant,
)
from models import CurrencyCode, Expense, ImportedTransaction
from periods import add_months


logger = logging.getLogger(__name__)

DATE_VARIANCE_DAYS = 1
AMOUNT_TOLERANCE = 0.01

DuplicateType = Literal["same_batch", "previous_import", "existing_expense"]


@dataclass
class RawTransaction:
    date: str
    amount: float
    type: Optional[Literal["debit", "credit"]] = None
    description: Optional[str] = None
    merchant: Optional[str] = None
    is_recurring: bool = False
    confidence: Optional[float] = None


@dataclass
class NormalizedTransaction:
    date: date
    amount: float
    currency: CurrencyCode
    description: Optional[str]
    merchant: Optional[str]
    normalized_merchant: Optional[str]
    is_recurring_guess: bool
    confidence: float
    deduplication_hash: str
    category: Optional[str] = None


@dataclass
class DuplicateCheck:
    transaction: NormalizedTransaction
    is_duplicate: bool
    duplicate_type: Optional[DuplicateType] = None
    duplicate_of_id: Optional[int] = None


@dataclass
class ImportSummary:
    received: int
    normalized: int
    duplicates: int
    created: int
    skipped: int
    expense_ids: list[int] = field(default_factory=list)


_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


class TransactionNormalizer:
    def normalize(
        self,
        rows: list[RawTransaction],
        currency: CurrencyCode,
        today: Optional[date] = None,
    ) -> list[NormalizedTransaction]:
        today = today or date.today()
        normalized: list[NormalizedTransaction] = []
        for row in rows:
            try:
                item = self._normalize_row(row, currency, today)
            except (TypeError, ValueError) as exc:
                logger.debug(f"import_normalize_skip: row={row!r} error={exc}")
                continue
            if item is not None:
                normalized.append(item)
        logger.info(f"import_normalize: normalized={len(normalized)} received={len(rows)}")
        return normalized

    def _parse_date(self, value: str, today: date) -> Optional[date]:
        match = _ISO_DATE.match(value.strip())
        if not match:
            return None
        year, month, day = (int(part) for part in match.groups())
        parsed = date(year, month, day)
        if parsed < add_months(today, -60) or parsed > add_months(today, 1):
            return None
        return parsed

    def _normalize_row(
        self, row: RawTransaction, currency: CurrencyCode, today: date
    ) -> Optional[NormalizedTransaction]:
        day = self._parse_date(row.date, today)
        if day is None:
            logger.debug(f"import_normalize_invalid_date: value={row.date}")
            return None

        amount = float(row.amount)
        if not math.isfinite(amount):
            logger.debug(f"import_normalize_invalid_amount: value={row.amount}")
            return None
        if row.type == "debit" and amount > 0:
            amount = -amount
        elif row.type == "credit" and amount < 0:
            amount = abs(amount)
        if amount == 0:
            return None

        merchant = row.merchant or None
        normalized_merchant = (
            normalize_merchant(merchant)
            if merchant
            else extract_merchant_from_description(row.description)
        )
        return NormalizedTransaction(
            date=day,
            amount=amount,
            currency=currency,
            description=row.description or None,
            merchant=merchant,
            normalized_merchant=normalized_merchant,
            is_recurring_guess=row.is_recurring
            or detect_recurring(merchant, row.description),
            confidence=row.confidence if row.confidence is not None else 1.0,
            deduplication_hash=deduplication_hash(
                day, amount, normalized_merchant, row.description
            ),
            category=get_category_for_merchant(merchant, normalized_merchant),
        )


DATE_COLUMNS = ("date", "transaction date", "trans date", "value date", "post date")
AMOUNT_COLUMNS = ("amount", "value")
DEBIT_COLUMNS = ("debit", "debit amount", "dr")
CREDIT_COLUMNS = ("credit", "credit amount", "cr")
DESCRIPTION_COLUMNS = ("description", "narration", "remarks", "particulars")

_MONTHS = {
    name: index
    for index, names in enumerate(
        [
            ("jan", "january"),
            ("feb", "february"),
            ("mar", "march"),
            ("apr", "april"),
            ("may",),
            ("jun", "june"),
            ("jul", "july"),
            ("aug", "august"),
            ("sep", "sept", "september"),
            ("oct", "october"),
            ("nov", "november"),
            ("dec", "december"),
        ],
        start=1,
    )
    for name in names
}


def parse_statement_date(value: str) -> str:
    """Normalise the date formats banks export to ``YYYY-MM-DD``.

    ``a/b/YYYY`` is read day-first when ``a`` cannot be a month, month-first
    otherwise.
    """
    clean = value.strip()
    match = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})$", clean)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return date(year, month, day).isoformat()
    match = re.match(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$", clean)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if first > 12 and second <= 12:
            day, month = first, second
        else:
            month, day = first, second
        return date(year, month, day).isoformat()
    match = re.match(r"^(\d{1,2})[\s-]+([A-Za-z]{3,})[\s-]+(\d{4})$", clean)
    if match and match.group(2).lower() in _MONTHS:
        return date(
            int(match.group(3)), _MONTHS[match.group(2).lower()], int(match.group(1))
        ).isoformat()
    match = re.match(r"^([A-Za-z]{3,})\s+(\d{1,2}),?\s+(\d{4})$", clean)
    if match and match.group(1).lower() in _MONTHS:
        return date(
            int(match.group(3)), _MONTHS[match.group(1).lower()], int(match.group(2))
        ).isoformat()
    raise ValueError(f"Unrecognised date '{value}'")


def parse_statement_amount(value: str) -> float:
    clean = re.sub(r"[₦$€£\s,]", "", value.strip())
    negative = clean.startswith("(") and clean.endswith(")")
    clean = clean.strip("()")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return float(-amount if negative else amount)


def _column(headers: dict[str, str], candidates: tuple[str, ...]) -> Optional[str]:
    for candidate in candidates:
        if candidate in headers:
            return headers[candidate]
    return None


def parse_statement_csv(content: str) -> tuple[list[RawTransaction], list[str]]:
    reader = csv.DictReader(StringIO(content.strip()))
    if not reader.fieldnames:
        raise ImportValidationError("No data rows found in CSV")
    headers = {name.strip().lower(): name for name in reader.fieldnames if name}
    date_col = _column(headers, DATE_COLUMNS)
    amount_col = _column(headers, AMOUNT_COLUMNS)
    debit_col = _column(headers, DEBIT_COLUMNS)
    credit_col = _column(headers, CREDIT_COLUMNS)
    desc_col = _column(headers, DESCRIPTION_COLUMNS)
    if not date_col or not desc_col or not (amount_col or (debit_col and credit_col)):
        raise ImportValidationError(
            "Could not detect column mapping. Required columns: date, amount, description"
        )

    rows: list[RawTransaction] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            day = parse_statement_date(raw.get(date_col) or "")
            amount_raw = (raw.get(amount_col) or "").strip() if amount_col else ""
            if amount_raw:
                amount = parse_statement_amount(amount_raw)
            else:
                debit_raw = (raw.get(debit_col) or "").strip() if debit_col else ""
                credit_raw = (raw.get(credit_col) or "").strip() if credit_col else ""
                debit = parse_statement_amount(debit_raw) if debit_raw else 0.0
                credit = parse_statement_amount(credit_raw) if credit_raw else 0.0
                if debit > 0:
                    amount = -abs(debit)
                elif credit > 0:
                    amount = abs(credit)
                else:
                    raise ValueError("Row has no amount")
            description = (raw.get(desc_col) or "").strip()
            rows.append(
                RawTransaction(
                    date=day,
                    amount=abs(amount),
                    type="debit" if amount < 0 else "credit",
                    description=description or None,
                    merchant=extract_merchant_from_description(description),
                    is_recurring=detect_recurring(None, description),
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    if not rows and not errors:
        raise ImportValidationError("No data rows found in CSV")
    return rows, errors


class ImportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.normalizer = TransactionNormalizer()

    def _previous_hashes(self, hashes: set[str]) -> set[str]:
        if not hashes:
            return set()
        stmt = select(ImportedTransaction.deduplication_hash).where(
            ImportedTransaction.user_id == self.user_id,
            ImportedTransaction.deduplication_hash.in_(hashes),
        )
        return set(self.session.execute(stmt).scalars())

    def _candidate_expenses(
        self, transactions: list[NormalizedTransaction]
    ) -> list[Expense]:
        if not transactions:
            return []
        variance = timedelta(days=DATE_VARIANCE_DAYS)
        start = min(t.date for t in transactions) - variance
        end = max(t.date for t in transactions) + variance
        stmt = select(Expense).where(
            Expense.user_id == self.user_id, Expense.date.between(start, end)
        )
        return list(self.session.execute(stmt).scalars())

    def _match_expense(
        self, txn: NormalizedTransaction, expenses: list[Expense]
    ) -> Optional[Expense]:
        for expense in expenses:
            if abs(abs(expense.amount) - abs(txn.amount)) > AMOUNT_TOLERANCE:
                continue
            if abs((expense.date - txn.date).days) > DATE_VARIANCE_DAYS:
                continue
            if expense.merchant and txn.normalized_merchant:
                if normalize_merchant(expense.merchant) != txn.normalized_merchant:
                    continue
            return expense
        return None

    def check_duplicates(
        self, transactions: list[NormalizedTransaction]
    ) -> list[DuplicateCheck]:
        previous = self._previous_hashes({t.deduplication_hash for t in transactions})
        expenses = self._candidate_expenses(transactions)
        seen: set[str] = set()
        results: list[DuplicateCheck] = []
        for txn in transactions:
            check = DuplicateCheck(transaction=txn, is_duplicate=False)
            if txn.deduplication_hash in seen:
                check.is_duplicate, check.duplicate_type = True, "same_batch"
            elif txn.deduplication_hash in previous:
                check.is_duplicate, check.duplicate_type = True, "previous_import"
            else:
                match = self._match_expense(txn, expenses)
                if match is not None:
                    check.is_duplicate = True
                    check.duplicate_type = "existing_expense"
                    check.duplicate_of_id = match.id
            seen.add(txn.deduplication_hash)
            results.append(check)
        return results

    def import_transactions(
        self,
        rows: list[RawTransaction],
        currency: CurrencyCode = CurrencyCode.ngn,
        today: Optional[date] = None,
    ) -> ImportSummary:
        normalized = self.normalizer.normalize(rows, currency, today=today)
        checks = self.check_duplicates(normalized)

        created: list[Expense] = []
        for check in checks:
            if check.is_duplicate:
                continue
            txn = check.transaction
            expense: Optional[Expense] = None
            if txn.amount < 0:
                expense = Expense(
                    user_id=self.user_id,
                    date=txn.date,
                    amount=abs(txn.amount),
                    currency=txn.currency,
                    category=txn.category or "other",
                    merchant=txn.normalized_merchant or txn.merchant,
                    description=txn.description,
                    is_recurring=txn.is_recurring_guess,
                    source="import",
                )
                self.session.add(expense)
                self.session.flush()
                created.append(expense)
            self.session.add(
                ImportedTransaction(
                    user_id=self.user_id,
                    deduplication_hash=txn.deduplication_hash,
                    date=txn.date,
                    amount=txn.amount,
                    currency=txn.currency,
                    description=txn.description,
                    merchant=txn.merchant,
                    normalized_merchant=txn.normalized_merchant,
                    expense_id=expense.id if expense else None,
                )
            )
        self.session.commit()

        by_type = Counter(c.duplicate_type for c in checks if c.is_duplicate)
        duplicates = sum(by_type.values())
        logger.info(
            f"import_transactions: user={self.user_id} received={len(rows)} "
            f"duplicates={duplicates} same_batch={by_type['same_batch']} "
            f"previous_import={by_type['previous_import']} "
            f"existing_expense={by_type['existing_expense']} created={len(created)}"
        )
        return ImportSummary(
            received=len(rows),
            normalized=len(normalized),
            duplicates=duplicates,
            created=len(created),
            skipped=len(rows) - len(normalized),
            expense_ids=[e.id for e in created],
        )
