import csv
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, DecimalException, InvalidOperation
from io import StringIO
from typing import Sequence, Union

from models import Category, Expense
from schemas import CSVRow, SkippedRow, SkipReason

IMPORT_COLUMNS = 4
# SQLite INTEGER upper bound
MAX_AMOUNT_CENTS = 2**63 - 1

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%d.%m.%Y",
)


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def parse_amount(value: str) -> int:
    """Convert a decimal amount string to integer cents.

    Rounds half away from zero at two decimals on the exact decimal value,
    so "10.005" is 1001 and "19.995" is 2000.
    """
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    try:
        cents = (amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except DecimalException as exc:
        raise ValueError("Invalid amount") from exc
    return int(cents)


def _check_row(line: int, raw: list[str]) -> Union[CSVRow, SkippedRow]:
    if len(raw) != IMPORT_COLUMNS:
        return SkippedRow(line=line, reason=SkipReason.invalid_column_count, data=raw)

    date_raw, amount_raw, description, category_raw = raw

    if category_raw not in Category.values():
        return SkippedRow(line=line, reason=SkipReason.unknown_category, data=raw)

    if description.strip() == "":
        return SkippedRow(line=line, reason=SkipReason.empty_description, data=raw)

    try:
        date_value = parse_date(date_raw)
    except ValueError:
        return SkippedRow(line=line, reason=SkipReason.invalid_date, data=raw)

    try:
        amount_cents = parse_amount(amount_raw)
    except ValueError:
        amount_cents = 0
    if not 0 < amount_cents <= MAX_AMOUNT_CENTS:
        return SkippedRow(line=line, reason=SkipReason.invalid_amount, data=raw)

    return CSVRow(
        line=line,
        date=date_value,
        amount_cents=amount_cents,
        description=description.strip(),
        category=Category(category_raw),
    )


def parse_import_csv(content: str) -> tuple[list[CSVRow], list[SkippedRow]]:
    """Split headerless ``date,amount,description,category`` lines into rows
    ready to insert and rows to skip, each skip tagged with its reason.
    Blank lines are ignored.
    """
    reader = csv.reader(StringIO(content), delimiter=",")
    rows: list[CSVRow] = []
    skipped: list[SkippedRow] = []
    for raw in reader:
        if not raw or (len(raw) == 1 and raw[0].strip() == ""):
            continue
        result = _check_row(reader.line_num, raw)
        if isinstance(result, SkippedRow):
            skipped.append(result)
        else:
            rows.append(result)
    return rows, skipped


def export_expenses(expenses: Sequence[Expense]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    for expense in expenses:
        writer.writerow(
            [
                expense.date.isoformat(),
                f"{expense.amount_cents / 100:.2f}",
                sanitize_csv_value(expense.description),
                expense.category.value,
            ]
        )
    return output.getvalue()
