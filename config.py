import json
import logging
import os
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path

from categories import Category

logger = logging.getLogger(__name__)


class BudgetConfigError(ValueError):
    pass


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        session_secret: str,
        category_budgets: dict[str, Decimal],
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.session_secret = session_secret
        self.category_budgets = category_budgets
        self.log_level = log_level


def parse_category_budgets(raw: str) -> dict[str, Decimal]:
    """Decode the category budget JSON blob into category -> monthly limit.

    Limits are in whole currency units. Entries set to null are dropped, so
    those categories never raise an alert.
    """
    try:
        decoded = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise BudgetConfigError("Invalid EXPENSES_CATEGORY_BUDGETS JSON") from exc
    if not isinstance(decoded, dict):
        return {}

    known = set(Category.values())
    budgets: dict[str, Decimal] = {}
    for name, value in decoded.items():
        if value is None:
            continue
        if name not in known:
            logger.warning(f"budget_config: ignoring unknown category={name!r}")
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise BudgetConfigError(f"Budget for '{name}' must be a number")
        try:
            limit = Decimal(str(value))
        except InvalidOperation as exc:
            raise BudgetConfigError(f"Budget for '{name}' must be a number") from exc
        if not limit.is_finite():
            raise BudgetConfigError(f"Budget for '{name}' must be a number")
        budgets[name] = limit
    return budgets


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "EXPENSES_CSRF_SECRET",
        "ebf511a733bdc213d6ccc715d338ad1c05bef4ad0ab32bb7eb60bb90f382380a",
    )
    session_secret = os.getenv(
        "EXPENSES_SESSION_SECRET",
        "5c1d0c7a8e9f4b2e93d6a1f0b7c4e8d2a6f3b9c1e5d7a2f4b8c0e6d1a3f5b7c9",
    )
    category_budgets = parse_category_budgets(
        os.getenv("EXPENSES_CATEGORY_BUDGETS", "{}")
    )
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        session_secret=session_secret,
        category_budgets=category_budgets,
        log_level=log_level,
    )
