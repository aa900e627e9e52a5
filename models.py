import math
import os
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from errors import ValidationError


# -------------------------------
# CONSTANTS
# -------------------------------

CATEGORIES_VERSION = 1
DEFAULT_CATEGORIES = (
    "food",
    "transport",
    "entertainment",
    "utilities",
    "healthcare",
    "shopping",
    "education",
    "salary",
    "freelance",
    "investment",
    "other",
)

INCOME = "income"
EXPENSE = "expense"
TRANSACTION_TYPES = (INCOME, EXPENSE)

MAX_AMOUNT = Decimal("1000000000")
DESCRIPTION_MIN = 3
DESCRIPTION_MAX = 200

_WHITESPACE_RE = re.compile(r"\s+")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# -------------------------------
# HELPERS
# -------------------------------

def generate_id() -> str:
    """Timestamp (base36 millis) plus 8 random bytes in hex."""
    millis = int(time.time() * 1000)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = digits[rem] + stamp
    return f"{stamp or '0'}-{os.urandom(8).hex()}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def today() -> str:
    return date.today().isoformat()


def sanitize(text: Any) -> str:
    """Trim and collapse runs of whitespace."""
    cleaned = _WHITESPACE_RE.sub(" ", str(text or "")).strip()
    try:
        cleaned.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationError("Text contains characters that cannot be stored")
    return cleaned


def parse_date(value: Any, field_name: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not _DATE_RE.match(text):
        raise ValidationError(f"{field_name} must be in YYYY-MM-DD format")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field_name} is not a valid calendar date")


def normalize_description(value: Any) -> str:
    desc = sanitize(value)
    if not desc:
        raise ValidationError("Description cannot be empty or only whitespace")
    if len(desc) < DESCRIPTION_MIN:
        raise ValidationError(f"Description must be at least {DESCRIPTION_MIN} characters long")
    if len(desc) > DESCRIPTION_MAX:
        raise ValidationError(f"Description must not exceed {DESCRIPTION_MAX} characters")
    return desc


def normalize_amount(value: Any, field_name: str = "Amount") -> float:
    """Positive, at most 2 decimals, not above MAX_AMOUNT."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a valid number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a valid number")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a valid number")
    if amount <= 0:
        raise ValidationError(f"{field_name} must be greater than 0")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field_name} exceeds maximum allowed value")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError(f"{field_name} can have at most 2 decimal places")
    return float(amount)


def normalize_category(value: Any, allowed: Optional[Iterable[str]] = None) -> str:
    category = sanitize(value).lower()
    if not category:
        raise ValidationError("Category cannot be empty or only whitespace")
    allowed = tuple(allowed) if allowed is not None else DEFAULT_CATEGORIES
    if category not in allowed:
        raise ValidationError(f"Category must be one of: {', '.join(allowed)}")
    return category


def normalize_type(value: Any) -> str:
    if value not in TRANSACTION_TYPES:
        raise ValidationError('Type must be either "income" or "expense"')
    return value


# -------------------------------
# STORED ROW CHECKS
# -------------------------------

def _stored_number(d: Dict[str, Any], key: str):
    value = d.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f"has a non-numeric {key}: {value!r}")
    return value


def _stored_date(d: Dict[str, Any]) -> str:
    value = d.get("date")
    if not isinstance(value, str):
        raise ValueError(f"has a non-string date: {value!r}")
    try:
        return parse_date(value).isoformat()
    except ValidationError:
        raise ValueError(f"has an invalid date: {value!r}")


# -------------------------------
# TRANSACTION MODEL
# -------------------------------

@dataclass
class Transaction:
    id: str
    description: str
    amount: float
    category: str
    type: str                      # income | expense
    date: str                      # YYYY-MM-DD
    user_id: Optional[str] = None
    created_at: str = ""
    updated_at: Optional[str] = None

    @property
    def day(self) -> date:
        return parse_date(self.date)

    def validate(self, categories: Optional[Iterable[str]] = None) -> "Transaction":
        """Normalise fields in place; raise ValidationError on bad data."""
        if not self.id:
            raise ValidationError("Transaction id is required")
        self.description = normalize_description(self.description)
        self.amount = normalize_amount(self.amount)
        self.category = normalize_category(self.category, categories)
        self.type = normalize_type(self.type)
        self.date = parse_date(self.date or today()).isoformat()
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "userId": self.user_id,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "type": self.type,
            "date": self.date,
            "createdAt": self.created_at,
        }
        if self.updated_at:
            data["updatedAt"] = self.updated_at
        return data

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Transaction":
        return Transaction(
            id=str(d.get("id", "")),
            user_id=d.get("userId"),
            description=d.get("description", ""),
            amount=_stored_number(d, "amount"),
            category=str(d.get("category", "")).lower(),
            type=d.get("type", ""),
            date=_stored_date(d),
            created_at=d.get("createdAt", ""),
            updated_at=d.get("updatedAt"),
        )


# -------------------------------
# BUDGET MODEL
# -------------------------------

@dataclass
class Budget:
    id: str
    category: str
    limit: float                   # monthly spending ceiling
    user_id: Optional[str] = None
    created_at: str = ""
    updated_at: Optional[str] = None

    def validate(self, categories: Optional[Iterable[str]] = None) -> "Budget":
        if not self.id:
            raise ValidationError("Budget id is required")
        self.category = normalize_category(self.category, categories)
        self.limit = normalize_amount(self.limit, "Limit")
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "userId": self.user_id,
            "category": self.category,
            "limit": self.limit,
            "createdAt": self.created_at,
        }
        if self.updated_at:
            data["updatedAt"] = self.updated_at
        return data

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Budget":
        return Budget(
            id=str(d.get("id", "")),
            user_id=d.get("userId"),
            category=str(d.get("category", "")).lower(),
            limit=_stored_number(d, "limit"),
            created_at=d.get("createdAt", ""),
            updated_at=d.get("updatedAt"),
        )


# -------------------------------
# USER MODEL (AUTH)
# -------------------------------

@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: str = field(repr=False, default="")
    created_at: str = ""

    def validate(self, categories=None) -> "User":
        self.name = sanitize(self.name)
        self.email = self.email.strip().lower()
        if not self.name:
            raise ValidationError("Name is required")
        if "@" not in self.email:
            raise ValidationError("A valid email is required")
        return self

    def public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "createdAt": self.created_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.public()
        data["password"] = self.password_hash
        return data

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "User":
        return User(
            id=str(d.get("id", "")),
            name=d.get("name", ""),
            email=str(d.get("email", "")).lower(),
            password_hash=d.get("password", ""),
            created_at=d.get("createdAt", ""),
        )
