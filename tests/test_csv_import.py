from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from csv_utils import parse_amount, parse_import_csv
from database import Base
from models import Category, Expense, User
from repositories import ExpenseRepository
from schemas import SkipReason
from services import CSVImportError, ExpenseService

TODAY = date(2025, 3, 15)


def _user(session: Session, username: str = "alice") -> User:
    user = User(username=username, password_hash="not-a-real-hash")
    session.add(user)
    session.commit()
    return user


def test_import_counts_only_valid_rows() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    content = (
        "2025-03-01,12.50,Weekly shop,groceries\n"
        "2025-03-02,40,Electricity,utilities\n"
        "2025-03-03,9.99,Cinema\n"
        "2025-03-04,15,Books,books\n"
        "2025-03-05,20,   ,other\n"
        "not-a-date,20,Taxi,transport\n"
        "2025-03-06,-5,Refund,other\n"
        "2025-03-07,abc,Pharmacy,healthcare\n"
        "2025-03-08,800,Rent,housing\n"
    ).encode("utf-8")

    with Session(engine) as session:
        alice = _user(session)
        result = ExpenseService(session, alice.id, today=TODAY).import_csv(content)

        assert result.imported == 3
        assert [(s.line, s.reason) for s in result.skipped] == [
            (3, SkipReason.invalid_column_count),
            (4, SkipReason.unknown_category),
            (5, SkipReason.empty_description),
            (6, SkipReason.invalid_date),
            (7, SkipReason.invalid_amount),
            (8, SkipReason.invalid_amount),
        ]
        stored = session.scalars(
            select(Expense).where(Expense.user_id == alice.id).order_by(Expense.date)
        ).all()
        assert [(e.description, e.amount_cents, e.category) for e in stored] == [
            ("Weekly shop", 1250, Category.groceries),
            ("Electricity", 4000, Category.utilities),
            ("Rent", 80000, Category.housing),
        ]


def test_skipped_rows_keep_raw_cells() -> None:
    rows, skipped = parse_import_csv("2025-01-01,5,Lunch,Groceries,extra\n")
    assert rows == []
    assert skipped[0].reason == SkipReason.invalid_column_count
    assert skipped[0].data == ["2025-01-01", "5", "Lunch", "Groceries", "extra"]


def test_category_match_is_exact() -> None:
    rows, skipped = parse_import_csv(
        "2025-01-01,5,Lunch,Groceries\n2025-01-01,5,Lunch, groceries\n"
    )
    assert rows == []
    assert [s.reason for s in skipped] == [SkipReason.unknown_category] * 2


def test_blank_lines_are_ignored() -> None:
    rows, skipped = parse_import_csv("\n2025-01-01,5,Lunch,groceries\n\n")
    assert len(rows) == 1
    assert rows[0].line == 2
    assert skipped == []


def test_quoted_fields_and_alternate_date_formats() -> None:
    rows, skipped = parse_import_csv(
        '05.02.2025,"1,234.50","Sofa, grey",housing\n'
        "2025-02-06 18:30:00,3,Bus,transport\n"
    )
    assert skipped == []
    assert [(r.date, r.amount_cents, r.description) for r in rows] == [
        (date(2025, 2, 5), 123450, "Sofa, grey"),
        (date(2025, 2, 6), 300, "Bus"),
    ]


@pytest.mark.parametrize(
    ("raw", "cents"),
    [
        ("10.005", 1001),
        ("19.995", 2000),
        ("0.015", 2),
        ("12", 1200),
        ("12,5", 1250),
        ("€ 7.10", 710),
        ("-10.005", -1001),
    ],
)
def test_parse_amount_rounds_half_away_from_zero(raw: str, cents: int) -> None:
    assert parse_amount(raw) == cents


@pytest.mark.parametrize("raw", ["", "abc", "nan", "inf", "1e999999"])
def test_parse_amount_rejects_non_numbers(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_amount_rounding_to_zero_cents_is_skipped() -> None:
    rows, skipped = parse_import_csv("2025-01-01,0.004,Gum,other\n")
    assert rows == []
    assert skipped[0].reason == SkipReason.invalid_amount


def test_import_rolls_back_everything_on_storage_failure(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    original_save = ExpenseRepository.save
    calls = {"n": 0}

    def flaky_save(self, expense):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk full")
        return original_save(self, expense)

    monkeypatch.setattr(ExpenseRepository, "save", flaky_save)

    content = (
        b"2025-03-01,1,One,other\n"
        b"2025-03-02,2,Two,other\n"
        b"2025-03-03,3,Three,other\n"
    )
    with Session(engine) as session:
        alice = _user(session)
        with pytest.raises(CSVImportError, match="CSV import failed: disk full"):
            ExpenseService(session, alice.id, today=TODAY).import_csv(content)

        assert session.scalar(select(Expense).where(Expense.user_id == alice.id)) is None


def test_import_rejects_undecodable_file() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session)
        with pytest.raises(CSVImportError):
            ExpenseService(session, alice.id, today=TODAY).import_csv(b"\xff\xfe\x00bad")


def test_import_is_scoped_to_importing_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice")
        bob = _user(session, "bobby")
        ExpenseService(session, alice.id, today=TODAY).import_csv(
            b"\xef\xbb\xbf2025-03-01,10,Groceries run,groceries\n"
        )

        assert ExpenseService(session, alice.id, today=TODAY).count() == 1
        assert ExpenseService(session, bob.id, today=TODAY).count() == 0
