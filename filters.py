from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from errors import ValidationError
from models import TRANSACTION_TYPES, Transaction, parse_date


@dataclass(frozen=True)
class FilterSpec:
    type: Optional[str] = None
    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def __post_init__(self):
        check_date_range(self.start_date, self.end_date)

    @property
    def empty(self) -> bool:
        return not (self.type or self.category or self.start_date or self.end_date)

    @staticmethod
    def from_query(
        type: Optional[str] = None,
        category: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        strict_type: bool = False,
    ) -> "FilterSpec":
        """Build a spec from raw query-string values."""
        return FilterSpec(
            type=parse_type(type, strict=strict_type),
            category=(category or "").strip().lower() or None,
            start_date=parse_date(start_date, "startDate") if start_date else None,
            end_date=parse_date(end_date, "endDate") if end_date else None,
        )

    def describe(self) -> Dict[str, str]:
        return {
            "type": self.type or "all",
            "category": self.category or "all",
            "startDate": self.start_date.isoformat() if self.start_date else "all time",
            "endDate": self.end_date.isoformat() if self.end_date else "present",
        }


def parse_type(value: Optional[str], strict: bool = False) -> Optional[str]:
    """Listing ignores an unknown type; strict callers reject it."""
    if not value:
        return None
    if value in TRANSACTION_TYPES:
        return value
    if strict:
        raise ValidationError('Type must be either "income" or "expense"')
    return None


def check_date_range(start: Optional[date], end: Optional[date]) -> None:
    if start and end and start > end:
        raise ValidationError("startDate must be before endDate")


def _coerce(spec: Union[FilterSpec, Mapping[str, Any], None]) -> FilterSpec:
    if spec is None:
        return FilterSpec()
    if isinstance(spec, FilterSpec):
        return spec
    start = spec.get("startDate", spec.get("start_date"))
    end = spec.get("endDate", spec.get("end_date"))
    return FilterSpec(
        type=parse_type(spec.get("type")),
        category=(spec.get("category") or "").strip().lower() or None,
        start_date=parse_date(start, "startDate") if start else None,
        end_date=parse_date(end, "endDate") if end else None,
    )


def _in_range(t: Transaction, start: Optional[date], end: Optional[date]) -> bool:
    try:
        day = t.day
    except ValidationError:
        return False
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True


def apply_filters(
    transactions: List[Transaction],
    spec: Union[FilterSpec, Mapping[str, Any], None] = None,
) -> List[Transaction]:
    """Return the transactions matching `spec`, preserving input order."""
    spec = _coerce(spec)
    if spec.empty:
        return transactions

    result = transactions
    if spec.type:
        result = [t for t in result if t.type == spec.type]
    if spec.category:
        result = [t for t in result if t.category.strip().lower() == spec.category]
    if spec.start_date or spec.end_date:
        result = [t for t in result if _in_range(t, spec.start_date, spec.end_date)]
    return result


def sort_by_date_desc(transactions: List[Transaction]) -> List[Transaction]:
    # sorted() is stable with reverse=True, so same-day entries keep insertion order
    return sorted(transactions, key=lambda t: t.date, reverse=True)


def _non_negative(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a non-negative integer")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{name} must be a non-negative integer")
    if number < 0:
        raise ValidationError(f"{name} must be a non-negative integer")
    return number


def paginate(items: List[Any], offset: Any = None, limit: Any = None) -> Tuple[List[Any], Dict[str, int]]:
    total = len(items)
    start = _non_negative(offset, "offset") if offset is not None else 0
    size = _non_negative(limit, "limit") if limit is not None else max(total - start, 0)
    page = items[start:start + size]
    return page, {
        "total": total,
        "count": len(page),
        "offset": start,
        "limit": size,
    }
