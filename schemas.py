import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from models import Category


class RegistrationIn(BaseModel):
    username: str = ""
    password: str = ""


class ExpenseForm(BaseModel):
    """Raw expense form fields, before validation and type conversion."""

    model_config = ConfigDict(extra="ignore")

    date: str = ""
    amount: str = ""
    category: str = ""
    description: str = ""


class ExpenseIn(BaseModel):
    date: dt.date
    amount_cents: int = Field(..., gt=0)
    category: Category
    description: str = Field(..., min_length=1)


class SkipReason(str, Enum):
    invalid_column_count = "Invalid column count"
    unknown_category = "Unknown category"
    empty_description = "Empty description"
    invalid_date = "Invalid date"
    invalid_amount = "Invalid amount"


class CSVRow(BaseModel):
    line: int
    date: dt.date
    amount_cents: int
    description: str
    category: Category


class SkippedRow(BaseModel):
    line: int
    reason: SkipReason
    data: list[str]


class ImportResult(BaseModel):
    imported: int = 0
    skipped: list[SkippedRow] = Field(default_factory=list)


class CategoryBar(BaseModel):
    cents: float
    percentage: int


class Alert(BaseModel):
    category: Category
    exceeded: str


class MonthlySummary(BaseModel):
    total_cents: int
    totals: dict[str, CategoryBar]
    averages: dict[str, CategoryBar]
    alerts: list[Alert] = Field(default_factory=list)
