import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import (
    HTMLResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session
from starlette.datastructures import FormData, UploadFile
from starlette.middleware.sessions import SessionMiddleware

from config import get_settings
from csrf import generate_csrf_token, require_csrf
from database import get_db
from models import Category, Expense
from periods import Period, resolve_month
from schemas import ExpenseForm, MonthlySummary, RegistrationIn
from services import (
    AlertGenerator,
    AuthService,
    CSVImportError,
    DEFAULT_PAGE_SIZE,
    ExpenseForbidden,
    ExpenseNotFound,
    ExpenseService,
    ExpenseValidationError,
    MonthlySummaryService,
    RegistrationError,
    current_date,
    scale_to_max,
)

BASE_DIR = Path(__file__).resolve().parent
MAX_EXPENSE_ID = 2**63 - 1

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker")
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie="expenses_session",
    same_site="lax",
)
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")


def format_currency(cents: float) -> str:
    return f"{cents / 100:,.2f}"


templates.env.filters["currency"] = format_currency
templates.env.globals["categories"] = [c.value for c in Category]


@dataclass(frozen=True)
class CurrentUser:
    id: int
    username: str


class LoginRequired(Exception):
    pass


def current_user(request: Request) -> CurrentUser:
    user_id = request.session.get("user_id")
    if not isinstance(user_id, int):
        raise LoginRequired()
    return CurrentUser(id=user_id, username=request.session.get("username", ""))


@app.exception_handler(LoginRequired)
async def redirect_to_login(request: Request, exc: LoginRequired) -> RedirectResponse:
    return RedirectResponse(url="/login", status_code=302)


def render(
    request: Request,
    template: str,
    context: dict[str, object],
    status_code: int = 200,
) -> HTMLResponse:
    user_id = request.session.get("user_id")
    ctx: dict[str, object] = {
        "csrf_token": generate_csrf_token(user_id),
        "username": request.session.get("username"),
    }
    ctx.update(context)
    return templates.TemplateResponse(request, template, ctx, status_code=status_code)


def form_text(form: FormData, key: str) -> str:
    value = form.get(key)
    return value if isinstance(value, str) else ""


def expense_form_from(form: FormData) -> ExpenseForm:
    return ExpenseForm(
        date=form_text(form, "date"),
        amount=form_text(form, "amount"),
        category=form_text(form, "category"),
        description=form_text(form, "description"),
    )


def query_int(request: Request, key: str, default: int) -> int:
    try:
        return int(request.query_params.get(key, default))
    except ValueError:
        return default


def month_from_request(
    request: Request, today: date, available_years: Optional[list[int]] = None
) -> Period:
    return resolve_month(
        request.query_params.get("year"),
        request.query_params.get("month"),
        today=today,
        available_years=available_years,
    )


def owned_expense_or_error(service: ExpenseService, expense_id: int) -> Expense:
    if not 1 <= expense_id <= MAX_EXPENSE_ID:
        raise HTTPException(status_code=400, detail="Invalid expense id")
    try:
        return service.get_owned(expense_id)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ExpenseForbidden as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


@app.get("/register", response_class=HTMLResponse)
def register_page(request: Request):
    return render(request, "auth/register.html", {})


@app.post("/register")
async def register(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    require_csrf(form.get("csrf_token"), request.session.get("user_id"))
    data = RegistrationIn(
        username=form_text(form, "username").strip(),
        password=form_text(form, "password"),
    )
    try:
        AuthService(db).register(data)
    except RegistrationError as exc:
        logger.warning(f"registration_failed: {exc}")
        return render(
            request,
            "auth/register.html",
            {"errors": [str(exc)], "old": {"username": data.username}},
        )
    return RedirectResponse(url="/login", status_code=302)


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    return render(request, "auth/login.html", {})


@app.post("/login")
async def login(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    require_csrf(form.get("csrf_token"), request.session.get("user_id"))
    username = form_text(form, "username").strip()
    user = AuthService(db).authenticate(username, form_text(form, "password"))
    if user is None:
        logger.warning(f"login_failed: username={username!r}")
        return render(
            request,
            "auth/login.html",
            {
                "errors": ["Invalid username or password."],
                "old": {"username": username},
            },
        )
    # drop whatever the anonymous session held before binding the user
    request.session.clear()
    request.session["user_id"] = user.id
    request.session["username"] = user.username
    return RedirectResponse(url="/", status_code=302)


@app.post("/logout")
async def logout(request: Request, user: CurrentUser = Depends(current_user)):
    form = await request.form()
    require_csrf(form.get("csrf_token"), user.id)
    request.session.clear()
    return RedirectResponse(url="/login", status_code=302)


@app.get("/", response_class=HTMLResponse)
def dashboard(
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    today = current_date()
    years = ExpenseService(db, user.id, today).available_years()
    period = month_from_request(request, today, years)

    summary_service = MonthlySummaryService(db, user.id)
    alerts = []
    if (period.year, period.month) == (today.year, today.month):
        alerts = AlertGenerator(
            summary_service, get_settings().category_budgets
        ).generate(period.year, period.month)
    summary = MonthlySummary(
        total_cents=summary_service.compute_total_expenditure(
            period.year, period.month
        ),
        totals=scale_to_max(
            summary_service.compute_per_category_totals(period.year, period.month)
        ),
        averages=scale_to_max(
            summary_service.compute_per_category_averages(period.year, period.month)
        ),
        alerts=alerts,
    )
    return render(
        request,
        "dashboard.html",
        {"period": period, "years": years, "summary": summary},
    )


@app.get("/expenses", response_class=HTMLResponse)
def expenses_page(
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    today = current_date()
    service = ExpenseService(db, user.id, today)
    period = month_from_request(request, today)
    page = service.list(
        period,
        page=query_int(request, "page", 1),
        page_size=query_int(
            request, "page_size", query_int(request, "pageSize", DEFAULT_PAGE_SIZE)
        ),
    )
    return render(
        request,
        "expenses/index.html",
        {"period": period, "years": service.available_years(), "page": page},
    )


@app.get("/expenses/create", response_class=HTMLResponse)
def create_expense_page(request: Request, user: CurrentUser = Depends(current_user)):
    return render(
        request,
        "expenses/create.html",
        {"old": {"date": current_date().isoformat()}},
    )


@app.post("/expenses")
async def create_expense(
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), user.id)
    data = expense_form_from(form)
    try:
        ExpenseService(db, user.id).create(data)
    except ExpenseValidationError as exc:
        return render(
            request,
            "expenses/create.html",
            {"errors": exc.messages, "old": data.model_dump()},
        )
    return RedirectResponse(url="/expenses", status_code=302)


@app.get("/expenses/export.csv")
def export_expenses_endpoint(
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    today = current_date()
    period = month_from_request(request, today)
    csv_text = ExpenseService(db, user.id, today).export(period)
    filename = f"expenses_{period.label}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/expenses/import", response_class=HTMLResponse)
async def import_expenses(
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), user.id)
    upload = form.get("csv")
    if not isinstance(upload, UploadFile) or not upload.filename:
        return Response(status_code=400, content="Invalid CSV upload")
    content = await upload.read()
    try:
        result = ExpenseService(db, user.id).import_csv(content)
    except CSVImportError as exc:
        return Response(status_code=400, content=f"Import failed: {exc}")
    return render(request, "expenses/import_result.html", {"result": result})


@app.get("/expenses/{expense_id}/edit", response_class=HTMLResponse)
def edit_expense_page(
    expense_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    expense = owned_expense_or_error(ExpenseService(db, user.id), expense_id)
    return render(
        request,
        "expenses/edit.html",
        {
            "expense": expense,
            "old": {
                "date": expense.date.isoformat(),
                "amount": f"{expense.amount_cents / 100:.2f}",
                "category": expense.category.value,
                "description": expense.description,
            },
        },
    )


@app.post("/expenses/{expense_id}/edit")
async def update_expense(
    expense_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), user.id)
    service = ExpenseService(db, user.id)
    expense = owned_expense_or_error(service, expense_id)
    data = expense_form_from(form)
    try:
        service.update(expense.id, data)
    except ExpenseValidationError as exc:
        return render(
            request,
            "expenses/edit.html",
            {"expense": expense, "errors": exc.messages, "old": data.model_dump()},
        )
    return RedirectResponse(url="/expenses", status_code=302)


@app.post("/expenses/{expense_id}/delete")
async def delete_expense(
    expense_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), user.id)
    service = ExpenseService(db, user.id)
    owned_expense_or_error(service, expense_id)
    service.delete(expense_id)
    return RedirectResponse(url="/expenses", status_code=302)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
