from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, extract, func, select, update
from sqlalchemy.orm import Session

from models import Expense, User
from periods import Period


class UserRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.username == username))

    def save(self, user: User) -> User:
        self.session.add(user)
        self.session.flush()
        return user


class ExpenseRepository:
    """Expense storage for one database session.

    Every query that takes a period filters on the expense date inside that
    month; aggregate queries return per-category dicts ordered by category.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _scope(self, stmt, user_id: int, period: Optional[Period]):
        stmt = stmt.where(Expense.user_id == user_id)
        if period is not None:
            stmt = stmt.where(Expense.date.between(period.start, period.end))
        return stmt

    def find(self, expense_id: int) -> Optional[Expense]:
        return self.session.get(Expense, expense_id)

    def save(self, expense: Expense) -> bool:
        """Insert an expense without id, otherwise update it in place.

        Updates only touch the row when both id and owner match. Returns
        whether a row was written.
        """
        if expense.id is None:
            self.session.add(expense)
            self.session.flush()
            return True
        result = self.session.execute(
            update(Expense)
            .where(Expense.id == expense.id, Expense.user_id == expense.user_id)
            .values(
                date=expense.date,
                category=expense.category,
                amount_cents=expense.amount_cents,
                description=expense.description,
                updated_at=datetime.utcnow(),
            )
        )
        return result.rowcount > 0

    def delete(self, expense_id: int, user_id: int) -> bool:
        result = self.session.execute(
            delete(Expense).where(Expense.id == expense_id, Expense.user_id == user_id)
        )
        return result.rowcount > 0

    def find_by(
        self,
        user_id: int,
        period: Optional[Period] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        stmt = self._scope(select(Expense), user_id, period).order_by(
            Expense.date.desc(), Expense.id.desc()
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def count_by(self, user_id: int, period: Optional[Period] = None) -> int:
        stmt = self._scope(select(func.count(Expense.id)), user_id, period)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def list_expenditure_years(self, user_id: int) -> list[int]:
        year = extract("year", Expense.date).label("year")
        stmt = (
            select(year)
            .where(Expense.user_id == user_id)
            .group_by(year)
            .order_by(year.desc())
        )
        return [int(row.year) for row in self.session.execute(stmt)]

    def sum_amounts(self, user_id: int, period: Period) -> int:
        stmt = self._scope(
            select(func.coalesce(func.sum(Expense.amount_cents), 0)), user_id, period
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def sum_amounts_by_category(self, user_id: int, period: Period) -> dict[str, int]:
        stmt = self._scope(
            select(Expense.category, func.sum(Expense.amount_cents).label("total")),
            user_id,
            period,
        )
        stmt = stmt.group_by(Expense.category).order_by(Expense.category)
        return {row.category.value: int(row.total) for row in self.session.execute(stmt)}

    def average_amounts_by_category(
        self, user_id: int, period: Period
    ) -> dict[str, float]:
        stmt = self._scope(
            select(Expense.category, func.avg(Expense.amount_cents).label("average")),
            user_id,
            period,
        )
        stmt = stmt.group_by(Expense.category).order_by(Expense.category)
        return {
            row.category.value: float(row.average) for row in self.session.execute(stmt)
        }
