from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import ImportValidationError
from importer import (
    ImportService,
    RawTransaction,
    TransactionNormalizer,
    parse_statement_amount,
    parse_statement_csv,
    parse_statement_date,
)
from models import CurrencyCode, Expense, ImportedTransaction


TODAY = date(2024, 4, 1)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _rows() -> list[RawTransaction]:
    return [
        RawTransaction("2024-03-25", 5000, "debit", "POS PURCHASE - SHOPRITE LEKKI"),
        RawTransaction("2024-03-25", 5000, "debit", "POS PURCHASE - SHOPRITE LEKKI"),
        RawTransaction("2024-03-26", 250000, "credit", "Salary March"),
        RawTransaction("03/26/2024", 100, "debit", "Airtime"),
    ]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-03-05", "2024-03-05"),
        ("25/03/2024", "2024-03-25"),
        ("03/04/2024", "2024-03-04"),
        ("5 Mar 2024", "2024-03-05"),
        ("March 5, 2024", "2024-03-05"),
        ("13/02/2026", "2026-02-13"),
        ("02/03/2026", "2026-02-03"),
        ("13-02-2026", "2026-02-13"),
    ],
)
def test_parse_statement_date_formats(raw: str, expected: str) -> None:
    assert parse_statement_date(raw) == expected


def test_parse_statement_date_rejects_words() -> None:
    with pytest.raises(ValueError, match="Unrecognised date"):
        parse_statement_date("yesterday")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("₦1,500.50", 1500.5),
        ("$20", 20.0),
        ("£ 1 000", 1000.0),
        ("(200)", -200.0),
        ("(₦1,250.00)", -1250.0),
        ("-75.25", -75.25),
    ],
)
def test_parse_statement_amount(raw: str, expected: float) -> None:
    assert parse_statement_amount(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity", "-inf", "()"])
def test_parse_statement_amount_rejects_invalid(raw: str) -> None:
    with pytest.raises(ValueError, match="Invalid amount"):
        parse_statement_amount(raw)


def test_parse_statement_csv_with_debit_and_credit_columns() -> None:
    content = (
        "Date,Narration,Debit,Credit\n"
        "25/03/2024,POS PURCHASE - SHOPRITE LEKKI 1234,5000,\n"
        "26/03/2024,Salary March,,250000\n"
        "bad,Something,100,\n"
    )
    rows, errors = parse_statement_csv(content)

    assert len(rows) == 2
    assert rows[0].date == "2024-03-25"
    assert rows[0].amount == 5000
    assert rows[0].type == "debit"
    assert rows[0].merchant == "shoprite"
    assert rows[1].type == "credit"
    assert errors == ["Row 3: Unrecognised date 'bad'"]


def test_parse_statement_csv_reports_bad_rows_beside_valid_ones() -> None:
    content = (
        "date,description,amount\n"
        "2024-03-20,Uber trip,(2500)\n"
        "2024-03-21,Mystery,abc\n"
        '2024-03-22,Refund,"₦1,000"\n'
        "2024-03-23,Nothing,\n"
        "2024-03-24,Bad float,NaN\n"
    )
    rows, errors = parse_statement_csv(content)

    assert [(r.date, r.amount, r.type) for r in rows] == [
        ("2024-03-20", 2500, "debit"),
        ("2024-03-22", 1000, "credit"),
    ]
    assert errors == [
        "Row 2: Invalid amount",
        "Row 4: Row has no amount",
        "Row 5: Invalid amount",
    ]


def test_parse_statement_csv_requires_column_mapping() -> None:
    with pytest.raises(ImportValidationError, match="column mapping"):
        parse_statement_csv("when,what\n2024-01-01,thing\n")


def test_normalizer_signs_and_skips_invalid_rows() -> None:
    normalized = TransactionNormalizer().normalize(_rows(), CurrencyCode.ngn, today=TODAY)

    assert len(normalized) == 3
    assert normalized[0].amount == -5000
    assert normalized[0].normalized_merchant == "shoprite"
    assert normalized[0].category == "food-dining"
    assert normalized[2].amount == 250000


def test_normalizer_rejects_dates_outside_window() -> None:
    rows = [
        RawTransaction("2018-01-01", 100, "debit", "Old"),
        RawTransaction("2024-06-15", 100, "debit", "Future"),
        RawTransaction("2024-03-01", 0, "debit", "Zero"),
        RawTransaction("2024-03-01", float("nan"), "debit", "Not a number"),
        RawTransaction("2024-03-01", float("-inf"), "debit", "Unbounded"),
    ]
    assert TransactionNormalizer().normalize(rows, CurrencyCode.ngn, today=TODAY) == []


def test_import_creates_expenses_for_debits_only() -> None:
    engine = _engine()
    with Session(engine) as session:
        summary = ImportService(session).import_transactions(
            _rows(), CurrencyCode.ngn, today=TODAY
        )

        assert summary.received == 4
        assert summary.normalized == 3
        assert summary.duplicates == 1
        assert summary.created == 1
        assert summary.skipped == 1

        expense = session.get(Expense, summary.expense_ids[0])
        assert expense.amount == 5000
        assert expense.category == "food-dining"
        assert expense.merchant == "shoprite"
        assert expense.source == "import"
        assert len(session.scalars(select(ImportedTransaction)).all()) == 2


def test_reimport_marks_everything_duplicate() -> None:
    engine = _engine()
    with Session(engine) as session:
        service = ImportService(session)
        service.import_transactions(_rows(), CurrencyCode.ngn, today=TODAY)
        second = service.import_transactions(_rows(), CurrencyCode.ngn, today=TODAY)

        assert second.duplicates == 3
        assert second.created == 0
        assert len(session.scalars(select(Expense)).all()) == 1


def test_import_matches_manual_expense_within_a_day() -> None:
    engine = _engine()
    with Session(engine) as session:
        session.add(
            Expense(
                user_id=1,
                date=date(2024, 3, 24),
                amount=5000,
                category="food-dining",
                merchant="Shoprite",
            )
        )
        session.commit()

        rows = [RawTransaction("2024-03-25", 5000, "debit", None, merchant="Shoprite Lekki")]
        summary = ImportService(session).import_transactions(rows, today=TODAY)

        assert summary.duplicates == 1
        assert summary.created == 0


def test_import_is_scoped_per_user() -> None:
    engine = _engine()
    with Session(engine) as session:
        ImportService(session, user_id=1).import_transactions(_rows(), today=TODAY)
        other = ImportService(session, user_id=2).import_transactions(_rows(), today=TODAY)

        assert other.created == 1
        assert other.duplicates == 1
