from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Category, Expense, User
from services import AlertGenerator, MonthlySummaryService, scale_to_max


def _seed(session: Session) -> User:
    alice = User(username="alice", password_hash="not-a-real-hash")
    bob = User(username="bobby", password_hash="not-a-real-hash")
    session.add_all([alice, bob])
    session.flush()
    rows = [
        (alice, date(2025, 3, 1), Category.groceries, 7000),
        (alice, date(2025, 3, 9), Category.groceries, 5000),
        (alice, date(2025, 3, 2), Category.housing, 90000),
        (alice, date(2025, 3, 3), Category.transport, 250),
        (alice, date(2025, 3, 31), Category.transport, 125),
        (alice, date(2025, 2, 28), Category.groceries, 99999),
        (alice, date(2025, 4, 1), Category.groceries, 99999),
        (bob, date(2025, 3, 5), Category.groceries, 12345),
    ]
    for user, when, category, cents in rows:
        session.add(
            Expense(
                user_id=user.id,
                date=when,
                category=category,
                amount_cents=cents,
                description="seed",
            )
        )
    session.commit()
    return alice


def test_totals_and_averages_for_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _seed(session)
        summary = MonthlySummaryService(session, alice.id)

        assert summary.compute_total_expenditure(2025, 3) == 102375
        assert summary.compute_per_category_totals(2025, 3) == {
            "groceries": 12000,
            "housing": 90000,
            "transport": 375,
        }
        assert summary.compute_per_category_averages(2025, 3) == {
            "groceries": 6000.0,
            "housing": 90000.0,
            "transport": 187.5,
        }
        assert summary.compute_total_expenditure(2024, 3) == 0
        assert summary.compute_per_category_totals(2024, 3) == {}


def test_per_category_totals_are_repeatable() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _seed(session)
        summary = MonthlySummaryService(session, alice.id)
        first = summary.compute_per_category_totals(2025, 3)
        second = summary.compute_per_category_totals(2025, 3)
        assert first == second
        assert list(first) == list(second)


def test_alert_reports_exceeded_amount() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _seed(session)
        budgets = {
            "groceries": Decimal("100"),
            "transport": Decimal("3.75"),
        }
        alerts = AlertGenerator(
            MonthlySummaryService(session, alice.id), budgets
        ).generate(2025, 3)

        assert [(a.category, a.exceeded) for a in alerts] == [
            (Category.groceries, "20.00")
        ]


def test_category_without_budget_never_alerts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _seed(session)
        alerts = AlertGenerator(
            MonthlySummaryService(session, alice.id), {"utilities": Decimal("0")}
        ).generate(2025, 3)
        assert alerts == []


def test_scale_to_max() -> None:
    bars = scale_to_max({"groceries": 12000, "housing": 90000, "transport": 375})
    assert {name: bar.percentage for name, bar in bars.items()} == {
        "groceries": 13,
        "housing": 100,
        "transport": 0,
    }
    assert bars["groceries"].cents == 12000
    assert scale_to_max({}) == {}
    assert scale_to_max({"other": 0})["other"].percentage == 0
