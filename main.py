import calendar
import csv
import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from auth import create_access_token, get_current_user_id, hash_password, verify_password
from config import Settings, get_settings
from errors import FinanceError, NotFoundError, UnauthorizedError
from filters import FilterSpec, apply_filters, paginate, sort_by_date_desc
from models import (
    CATEGORIES_VERSION,
    EXPENSE,
    Budget,
    Transaction,
    User,
    generate_id,
    today,
    utc_now,
)
from repositories import Repositories
from schemas import BudgetCreate, Token, TransactionCreate, UserCreate, UserLogin
from storage import FileStore
from summary import (
    budget_status,
    build_summary,
    by_category,
    category_breakdown,
    monthly_breakdown,
    round_money,
    year_totals,
)

logger = logging.getLogger("finance")

router = APIRouter()


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel(level)


def get_store(request: Request) -> FileStore:
    return request.app.state.store


def get_repos(
    store: FileStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Repositories:
    return Repositories(store, settings.categories)


# -------------------------------
# ERROR TRANSLATION
# -------------------------------

async def finance_error_handler(request: Request, exc: FinanceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message,
                     exc_info=getattr(exc, "cause", None) or exc)
    content = {"detail": exc.message, "error": type(exc).__name__}
    if exc.details:
        content["errors"] = exc.details
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        message = err.get("msg", "Invalid value").replace("Value error, ", "")
        errors.append(f"{where}: {message}" if where else message)
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "error": "ValidationError", "errors": errors},
    )


# -------------------------------
# ROOT
# -------------------------------

@router.get("/")
def root():
    return {
        "message": "Finance Tracker API is running",
        "endpoints": {
            "auth": "/auth",
            "transactions": "/transactions",
            "budgets": "/budgets",
            "summary": "/summary",
            "categories": "/categories",
            "export": "/export/transactions",
        },
    }


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/categories")
def get_categories(settings: Settings = Depends(get_settings)):
    return {"version": CATEGORIES_VERSION, "categories": list(settings.categories)}


# -------------------------------
# AUTH
# -------------------------------

@router.post("/auth/signup", response_model=Token)
def signup(
    user: UserCreate,
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings),
):
    new_user = User(
        id=generate_id(),
        name=user.name,
        email=user.email.strip().lower(),
        password_hash=hash_password(user.password),
        created_at=utc_now(),
    )
    repos.users.add(new_user)

    token = create_access_token(new_user, settings)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_name": new_user.name,
    }


@router.post("/auth/login", response_model=Token)
def login(
    user: UserLogin,
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings),
):
    db_user = repos.users.find_by_email(user.email)
    if not db_user or not verify_password(user.password, db_user.password_hash):
        raise UnauthorizedError("Invalid email or password")

    token = create_access_token(db_user, settings)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_name": db_user.name,
    }


@router.get("/auth/me")
def get_profile(
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    if user_id is None:
        raise HTTPException(status_code=404, detail="Authentication is disabled")
    try:
        return repos.users.get(user_id).public()
    except NotFoundError:
        raise UnauthorizedError("User not found")


# -------------------------------
# TRANSACTIONS
# -------------------------------

@router.get("/transactions")
def get_transactions(
    type: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    offset: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=0),
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    spec = FilterSpec.from_query(type, category, startDate, endDate)
    transactions = sort_by_date_desc(apply_filters(repos.transactions.list(user_id), spec))
    page, pagination = paginate(transactions, offset, limit)
    return {
        "data": [t.to_dict() for t in page],
        "pagination": pagination,
        "filters": spec.describe(),
    }


@router.get("/transactions/{txn_id}")
def get_transaction(
    txn_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    return repos.transactions.get(txn_id, user_id).to_dict()


@router.post("/transactions", status_code=201)
def add_transaction(
    txn: TransactionCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    transaction = Transaction(
        id=generate_id(),
        user_id=user_id,
        description=txn.description,
        amount=txn.amount,
        category=txn.category,
        type=txn.type,
        date=txn.date or today(),
        created_at=utc_now(),
    )
    return repos.transactions.add(transaction).to_dict()


@router.put("/transactions/{txn_id}")
def update_transaction(
    txn_id: str,
    txn: TransactionCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    def apply(existing: Transaction):
        existing.description = txn.description
        existing.amount = txn.amount
        existing.category = txn.category
        existing.type = txn.type
        existing.date = txn.date or existing.date

    return repos.transactions.upsert(txn_id, apply, user_id).to_dict()


@router.delete("/transactions/{txn_id}")
def delete_transaction(
    txn_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    deleted = repos.transactions.delete(txn_id, user_id)
    return {"message": "Transaction deleted", "data": deleted.to_dict()}


# -------------------------------
# BUDGETS
# -------------------------------

@router.get("/budgets")
def get_all_budgets(
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    budgets = sorted(repos.budgets.list(user_id), key=lambda b: b.category)
    return [b.to_dict() for b in budgets]


@router.post("/budgets", status_code=201)
def create_budget(
    data: BudgetCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    budget = Budget(
        id=generate_id(),
        user_id=user_id,
        category=data.category,
        limit=data.limit,
        created_at=utc_now(),
    )
    return repos.budgets.add(budget).to_dict()


@router.get("/budgets/status")
def get_budget_status(
    month: Optional[str] = Query(None, description="Month in YYYY-MM"),
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings),
):
    """Budget utilisation for one calendar month (current month by default)."""
    try:
        first = datetime.strptime(month, "%Y-%m").date() if month else date.today().replace(day=1)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid month format. Use YYYY-MM")
    last = first.replace(day=calendar.monthrange(first.year, first.month)[1])

    lenient = settings.lenient_reads
    spec = FilterSpec(start_date=first, end_date=last)
    transactions = apply_filters(repos.transactions.list(user_id, lenient=lenient), spec)
    budgets = repos.budgets.list(user_id, lenient=lenient)
    return {
        "month": first.strftime("%Y-%m"),
        "budgets": budget_status(
            budgets, by_category(transactions, EXPENSE), settings.percentage_places
        ),
    }


@router.put("/budgets/{budget_id}")
def update_budget(
    budget_id: str,
    data: BudgetCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    def apply(existing: Budget):
        existing.category = data.category
        existing.limit = data.limit

    return repos.budgets.upsert(budget_id, apply, user_id).to_dict()


@router.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    deleted = repos.budgets.delete(budget_id, user_id)
    return {"message": "Budget deleted", "data": deleted.to_dict()}


# -------------------------------
# SUMMARY
# -------------------------------

@router.get("/summary")
def get_summary(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings),
):
    spec = FilterSpec.from_query(start_date=startDate, end_date=endDate)
    lenient = settings.lenient_reads
    return build_summary(
        repos.transactions.list(user_id, lenient=lenient),
        repos.budgets.list(user_id, lenient=lenient),
        spec.start_date,
        spec.end_date,
        settings.percentage_places,
    )


@router.get("/summary/monthly")
def get_monthly_summary(
    year: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings),
):
    year = year or datetime.now().year
    transactions = repos.transactions.list(user_id, lenient=settings.lenient_reads)
    months = monthly_breakdown(transactions, year)
    return {
        "year": int(year),
        "months": months,
        "yearTotal": year_totals(months),
    }


@router.get("/summary/category")
def get_category_summary(
    type: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings),
):
    spec = FilterSpec.from_query(type, None, startDate, endDate, strict_type=True)
    transactions = repos.transactions.list(user_id, lenient=settings.lenient_reads)
    categories = category_breakdown(
        transactions,
        spec.type,
        (spec.start_date, spec.end_date),
        settings.drill_down_limit,
    )
    filters = spec.describe()
    filters.pop("category")
    return {
        "categories": categories,
        "totalAmount": round_money(sum(Decimal(str(c["total"])) for c in categories)),
        "totalTransactions": sum(c["count"] for c in categories),
        "filters": filters,
    }


# -------------------------------
# EXPORT
# -------------------------------

@router.get("/export/transactions")
def export_transactions(
    type: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repos),
):
    """
    Export the filtered transactions as CSV, most recent first
    """
    spec = FilterSpec.from_query(type, category, startDate, endDate)
    transactions = sort_by_date_desc(apply_filters(repos.transactions.list(user_id), spec))

    if not transactions:
        raise HTTPException(status_code=404, detail="No transactions found")

    output = StringIO()
    writer = csv.writer(output)

    writer.writerow([
        "Date",
        "Type",
        "Category",
        "Amount",
        "Description"
    ])

    for t in transactions:
        writer.writerow([
            t.date,
            t.type.capitalize(),
            t.category,
            f"{float(t.amount):.2f}",
            t.description
        ])

    output.seek(0)

    start = startDate or "all"
    end = endDate or "present"
    return StreamingResponse(
        output,
        media_type="text/csv",
        headers={
            "Content-Disposition": (
                f"attachment; filename=transactions_{start}_to_{end}.csv"
            )
        }
    )


# -------------------------------
# APP FACTORY
# -------------------------------

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    store = FileStore(settings.data_dir, lock_timeout=settings.lock_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.initialize()
        logger.info("Data storage ready in %s", store.data_dir)
        yield

    app = FastAPI(title="Finance Tracker API", lifespan=lifespan)
    app.state.store = store
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("%s %s %s %.1fms", request.method, request.url.path,
                    response.status_code, elapsed)
        return response

    app.add_exception_handler(FinanceError, finance_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
