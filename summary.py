import calendar
from collections import OrderedDict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from errors import ValidationError
from filters import FilterSpec, apply_filters, check_date_range, parse_type, sort_by_date_desc
from models import EXPENSE, INCOME, Budget, Transaction

MIN_YEAR = 2000
MAX_YEAR = 2100

WARNING_THRESHOLD = Decimal("80")
EXCEEDED_THRESHOLD = Decimal("100")

_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_money(value: Any) -> float:
    return float(to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


def round_percentage(value: Any, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


# -------------------------------
# TOTALS
# -------------------------------

def _sum(transactions: Iterable[Transaction], type: str) -> Decimal:
    return sum((to_decimal(t.amount) for t in transactions if t.type == type), Decimal(0))


def totals(transactions: List[Transaction]) -> Dict[str, float]:
    income = _sum(transactions, INCOME)
    expenses = _sum(transactions, EXPENSE)
    return {
        "totalIncome": round_money(income),
        "totalExpenses": round_money(expenses),
        "balance": round_money(income - expenses),
    }


def _group(transactions: Iterable[Transaction], type: str) -> Dict[str, Decimal]:
    grouped: Dict[str, Decimal] = OrderedDict()
    for t in transactions:
        if t.type != type:
            continue
        key = t.category.lower()
        grouped[key] = grouped.get(key, Decimal(0)) + to_decimal(t.amount)
    return grouped


def by_category(transactions: List[Transaction], type: str) -> Dict[str, float]:
    """Total amount per lowercase category for one transaction type."""
    return {category: round_money(total) for category, total in _group(transactions, type).items()}


# -------------------------------
# BUDGET STATUS
# -------------------------------

def classify(raw_percentage: Decimal) -> str:
    if raw_percentage > EXCEEDED_THRESHOLD:
        return "exceeded"
    if raw_percentage > WARNING_THRESHOLD:
        return "warning"
    return "good"


def budget_status(
    budgets: List[Budget],
    spending_by_category: Mapping[str, Any],
    percentage_places: int = 2,
) -> List[Dict[str, Any]]:
    """Utilisation of each budget, highest percentage first.

    The returned percentage is clamped to [0, 100]; the status is classified
    on the unclamped value, so a 120% budget reads 100 but is "exceeded".
    """
    spending = {str(k).lower(): to_decimal(v) for k, v in spending_by_category.items()}
    result = []
    for budget in budgets:
        limit = to_decimal(budget.limit)
        spent = spending.get(budget.category.lower(), Decimal(0))
        raw = spent / limit * 100 if limit > 0 else Decimal(0)
        shown = min(max(raw, Decimal(0)), Decimal(100))
        result.append({
            "id": budget.id,
            "category": budget.category,
            "limit": round_money(limit),
            "spent": round_money(spent),
            "remaining": round_money(limit - spent),
            "percentage": round_percentage(shown, percentage_places),
            "status": classify(raw),
        })
    result.sort(key=lambda s: s["percentage"], reverse=True)
    return result


# -------------------------------
# MONTHLY BREAKDOWN
# -------------------------------

def validate_year(year: Any) -> int:
    if isinstance(year, bool):
        raise ValidationError("Invalid year provided")
    if isinstance(year, str):
        text = year.strip()
        if not text.isdigit():
            raise ValidationError("Invalid year provided")
        year = int(text)
    if not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError("Invalid year provided")
    return year


def monthly_breakdown(transactions: List[Transaction], year: Any) -> List[Dict[str, Any]]:
    """Twelve entries, January to December; empty months stay zeroed."""
    year = validate_year(year)
    buckets = [
        {"income": Decimal(0), "expenses": Decimal(0), "count": 0}
        for _ in range(12)
    ]
    for t in transactions:
        try:
            day = t.day
        except ValidationError:
            continue
        if day.year != year:
            continue
        bucket = buckets[day.month - 1]
        bucket["count"] += 1
        if t.type == INCOME:
            bucket["income"] += to_decimal(t.amount)
        else:
            bucket["expenses"] += to_decimal(t.amount)

    months = []
    for index, bucket in enumerate(buckets):
        months.append({
            "month": index + 1,
            "monthName": calendar.month_name[index + 1],
            "income": round_money(bucket["income"]),
            "expenses": round_money(bucket["expenses"]),
            "balance": round_money(bucket["income"] - bucket["expenses"]),
            "transactionCount": bucket["count"],
        })
    return months


def year_totals(months: List[Dict[str, Any]]) -> Dict[str, Any]:
    income = sum((to_decimal(m["income"]) for m in months), Decimal(0))
    expenses = sum((to_decimal(m["expenses"]) for m in months), Decimal(0))
    return {
        "income": round_money(income),
        "expenses": round_money(expenses),
        "balance": round_money(income - expenses),
        "transactionCount": sum(m["transactionCount"] for m in months),
    }


# -------------------------------
# CATEGORY BREAKDOWN
# -------------------------------

def category_breakdown(
    transactions: List[Transaction],
    type: Optional[str] = None,
    date_range: Optional[Tuple[Optional[date], Optional[date]]] = None,
    drill_down_limit: int = 10,
) -> List[Dict[str, Any]]:
    """Per-category statistics sorted by total, largest first.

    Each entry carries up to `drill_down_limit` of its transactions, most
    recent first.
    """
    start, end = date_range or (None, None)
    check_date_range(start, end)
    spec = FilterSpec(type=parse_type(type, strict=True), start_date=start, end_date=end)
    selected = apply_filters(transactions, spec)

    groups: Dict[str, Dict[str, Any]] = OrderedDict()
    for t in selected:
        key = t.category.lower()
        amount = to_decimal(t.amount)
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                "category": key,
                "type": t.type,
                "total": Decimal(0),
                "count": 0,
                "min": amount,
                "max": amount,
                "items": [],
            }
        group["total"] += amount
        group["count"] += 1
        group["min"] = min(group["min"], amount)
        group["max"] = max(group["max"], amount)
        group["items"].append(t)

    result = []
    for group in groups.values():
        recent = sort_by_date_desc(group["items"])[:max(drill_down_limit, 0)]
        result.append({
            "category": group["category"],
            "type": group["type"],
            "total": round_money(group["total"]),
            "count": group["count"],
            "average": round_money(group["total"] / group["count"]),
            "min": round_money(group["min"]),
            "max": round_money(group["max"]),
            "transactions": [
                {"id": t.id, "description": t.description, "amount": round_money(t.amount), "date": t.date}
                for t in recent
            ],
        })
    result.sort(key=lambda c: c["total"], reverse=True)
    return result


# -------------------------------
# DASHBOARD SUMMARY
# -------------------------------

def build_summary(
    transactions: List[Transaction],
    budgets: List[Budget],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    percentage_places: int = 2,
) -> Dict[str, Any]:
    """Totals, per-category sums and budget status over one date window."""
    selected = apply_filters(transactions, FilterSpec(start_date=start_date, end_date=end_date))
    spending = _group(selected, EXPENSE)

    data: Dict[str, Any] = dict(totals(selected))
    data.update({
        "spendingByCategory": {k: round_money(v) for k, v in spending.items()},
        "incomeByCategory": by_category(selected, INCOME),
        "budgetStatus": budget_status(budgets, spending, percentage_places),
        "transactionCount": len(selected),
        "dateRange": {
            "start": start_date.isoformat() if start_date else "all time",
            "end": end_date.isoformat() if end_date else "present",
        },
    })
    return data
