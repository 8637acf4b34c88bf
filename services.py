from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import MAX_AMOUNT_CENTS, export_expenses, parse_amount, parse_import_csv
from models import Category, Expense, User
from periods import Period, local_today, month_period
from repositories import ExpenseRepository, UserRepository
from schemas import (
    Alert,
    CategoryBar,
    ExpenseForm,
    ExpenseIn,
    ImportResult,
    RegistrationIn,
)
from security import MAX_PASSWORD_BYTES, hash_password, verify_password

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 4
PASSWORD_PATTERN = re.compile(r"^(?=.*\d).{8,}$")
DEFAULT_PAGE_SIZE = 5
MAX_PAGE_SIZE = 100


class RegistrationError(ValueError):
    pass


class ExpenseValidationError(ValueError):
    def __init__(self, messages: list[str]) -> None:
        super().__init__("; ".join(messages))
        self.messages = messages


class ExpenseNotFound(ValueError):
    pass


class ExpenseForbidden(PermissionError):
    pass


class CSVImportError(RuntimeError):
    pass


def current_date() -> date:
    return local_today(get_settings().timezone)


def cents_to_units(cents: float) -> Decimal:
    return Decimal(str(cents)) / 100


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.users = UserRepository(session)

    def register(self, data: RegistrationIn) -> User:
        username = data.username.strip()
        if len(username) < USERNAME_MIN_LENGTH:
            raise RegistrationError(
                f"Username must be at least {USERNAME_MIN_LENGTH} characters."
            )
        if not PASSWORD_PATTERN.match(data.password):
            raise RegistrationError(
                "Password must be at least 8 characters and contain a number."
            )
        if len(data.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise RegistrationError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes."
            )
        if self.users.find_by_username(username):
            raise RegistrationError("Username already taken!")

        user = User(username=username, password_hash=hash_password(data.password))
        try:
            self.users.save(user)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise RegistrationError("Username already taken!") from exc
        self.session.refresh(user)
        return user

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the user for a matching username/password pair.

        Unknown usernames and wrong passwords both give ``None``.
        """
        user = self.users.find_by_username(username.strip())
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user


@dataclass
class ExpensePage:
    items: list[Expense]
    page: int
    page_size: int
    total: int

    @property
    def has_next_page(self) -> bool:
        return self.total > self.page * self.page_size

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.page_size)


class ExpenseService:
    def __init__(
        self, session: Session, user_id: int, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today or current_date()
        self.expenses = ExpenseRepository(session)

    def validate(self, form: ExpenseForm) -> ExpenseIn:
        """Check a submitted expense form and convert it to typed values.

        Collects every violated rule and raises them together.
        """
        errors: list[str] = []

        amount_cents = 0
        if not form.amount.strip():
            errors.append("Amount is required.")
        else:
            try:
                amount_cents = parse_amount(form.amount)
            except ValueError:
                errors.append("Amount must be a number.")
            else:
                if amount_cents <= 0:
                    errors.append("Amount must be greater than 0.")
                elif amount_cents > MAX_AMOUNT_CENTS:
                    errors.append("Amount is too large.")

        description = form.description.strip()
        if not description:
            errors.append("Description cannot be empty.")

        expense_date: Optional[date] = None
        if not form.date.strip():
            errors.append("Date is required.")
        else:
            try:
                expense_date = date.fromisoformat(form.date.strip())
            except ValueError:
                errors.append("Date must be a valid date (YYYY-MM-DD).")
            else:
                if expense_date > self.today:
                    errors.append("Date cannot be in the future.")

        category = form.category.strip()
        if category not in Category.values():
            errors.append("Invalid category.")

        if errors:
            raise ExpenseValidationError(errors)
        return ExpenseIn(
            date=expense_date,
            amount_cents=amount_cents,
            category=Category(category),
            description=description,
        )

    def get_owned(self, expense_id: int) -> Expense:
        expense = self.expenses.find(expense_id)
        if not expense:
            raise ExpenseNotFound("Expense not found")
        if expense.user_id != self.user_id:
            raise ExpenseForbidden("Expense belongs to another user")
        return expense

    def create(self, form: ExpenseForm) -> Expense:
        data = self.validate(form)
        expense = Expense(
            user_id=self.user_id,
            date=data.date,
            category=data.category,
            amount_cents=data.amount_cents,
            description=data.description,
        )
        self.expenses.save(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, form: ExpenseForm) -> Expense:
        existing = self.get_owned(expense_id)
        data = self.validate(form)
        changes = Expense(
            id=existing.id,
            user_id=self.user_id,
            date=data.date,
            category=data.category,
            amount_cents=data.amount_cents,
            description=data.description,
        )
        if not self.expenses.save(changes):
            self.session.rollback()
            raise ExpenseForbidden("Expense belongs to another user")
        self.session.commit()
        self.session.refresh(existing)
        return existing

    def delete(self, expense_id: int) -> None:
        self.get_owned(expense_id)
        self.expenses.delete(expense_id, self.user_id)
        self.session.commit()

    def list(
        self, period: Period, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
    ) -> ExpensePage:
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        total = self.count(period)
        last_page = max(-(-total // page_size), 1)
        page = min(max(page, 1), last_page)
        items = self.expenses.find_by(
            self.user_id, period, offset=(page - 1) * page_size, limit=page_size
        )
        return ExpensePage(items=items, page=page, page_size=page_size, total=total)

    def count(self, period: Optional[Period] = None) -> int:
        return self.expenses.count_by(self.user_id, period)

    def available_years(self) -> list[int]:
        return self.expenses.list_expenditure_years(self.user_id)

    def import_csv(self, content: bytes) -> ImportResult:
        """Import headerless ``date,amount,description,category`` rows.

        Invalid rows are skipped and reported. Valid rows are written in a
        single transaction; a storage failure rolls all of them back and
        raises ``CSVImportError``.
        """
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CSVImportError("CSV import failed: file is not valid UTF-8") from exc

        rows, skipped = parse_import_csv(text)
        try:
            for row in rows:
                self.expenses.save(
                    Expense(
                        user_id=self.user_id,
                        date=row.date,
                        category=row.category,
                        amount_cents=row.amount_cents,
                        description=row.description,
                    )
                )
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.exception(f"csv_import_failed: user_id={self.user_id}")
            raise CSVImportError(f"CSV import failed: {exc}") from exc

        logger.info(
            f"csv_import: user_id={self.user_id} imported={len(rows)} "
            f"skipped={len(skipped)}"
        )
        return ImportResult(imported=len(rows), skipped=skipped)

    def export(self, period: Period) -> str:
        return export_expenses(self.expenses.find_by(self.user_id, period))


def scale_to_max(values: Mapping[str, float]) -> dict[str, CategoryBar]:
    """Attach to each value its percentage of the largest value."""
    max_value = max(values.values(), default=0) or 1
    return {
        name: CategoryBar(
            cents=value,
            percentage=int(
                (Decimal(str(value)) * 100 / Decimal(str(max_value))).quantize(
                    Decimal("1"), rounding=ROUND_HALF_UP
                )
            ),
        )
        for name, value in values.items()
    }


class MonthlySummaryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.expenses = ExpenseRepository(session)

    def compute_total_expenditure(self, year: int, month: int) -> int:
        return self.expenses.sum_amounts(self.user_id, month_period(year, month))

    def compute_per_category_totals(self, year: int, month: int) -> dict[str, int]:
        return self.expenses.sum_amounts_by_category(
            self.user_id, month_period(year, month)
        )

    def compute_per_category_averages(
        self, year: int, month: int
    ) -> dict[str, float]:
        return self.expenses.average_amounts_by_category(
            self.user_id, month_period(year, month)
        )


class AlertGenerator:
    def __init__(
        self, summary: MonthlySummaryService, budgets: Mapping[str, Decimal]
    ) -> None:
        self.summary = summary
        self.budgets = budgets

    def generate(self, year: int, month: int) -> list[Alert]:
        alerts: list[Alert] = []
        totals = self.summary.compute_per_category_totals(year, month)
        for category, amount_cents in totals.items():
            budget = self.budgets.get(category)
            if budget is None:
                continue
            spent = cents_to_units(amount_cents)
            if spent > budget:
                exceeded = (spent - budget).quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP
                )
                alerts.append(
                    Alert(category=Category(category), exceeded=f"{exceeded:.2f}")
                )
        return alerts
