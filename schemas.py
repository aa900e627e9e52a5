from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, Union

from config import get_settings
from errors import ValidationError
from models import (
    normalize_amount,
    normalize_category,
    normalize_description,
    normalize_type,
    parse_date,
    sanitize,
)


def _check(fn, *args):
    # pydantic reports ValueError as a field error; ours carries the message
    try:
        return fn(*args)
    except ValidationError as exc:
        raise ValueError(exc.message)


# ----------------------------
# AUTH SCHEMAS
# ----------------------------

class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("name")
    @classmethod
    def clean_name(cls, v):
        v = _check(sanitize, v)
        if not v:
            raise ValueError("Name is required")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str
    user_name: str


# ----------------------------
# TRANSACTION SCHEMAS
# ----------------------------

class TransactionCreate(BaseModel):
    type: str            # "income" or "expense"
    amount: Union[float, str]
    category: str
    date: Optional[str] = None      # YYYY-MM-DD, defaults to today
    description: str

    @field_validator("type")
    @classmethod
    def check_type(cls, v):
        return _check(normalize_type, v)

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        return _check(normalize_amount, v)

    @field_validator("category")
    @classmethod
    def check_category(cls, v):
        return _check(normalize_category, v, get_settings().categories)

    @field_validator("date")
    @classmethod
    def check_date(cls, v):
        if v is None or v == "":
            return None
        return _check(parse_date, v).isoformat()

    @field_validator("description")
    @classmethod
    def check_description(cls, v):
        return _check(normalize_description, v)


# ----------------------------
# BUDGET SCHEMAS
# ----------------------------

class BudgetCreate(BaseModel):
    category: str
    limit: Union[float, str]

    @field_validator("category")
    @classmethod
    def check_category(cls, v):
        return _check(normalize_category, v, get_settings().categories)

    @field_validator("limit")
    @classmethod
    def check_limit(cls, v):
        return _check(normalize_amount, v, "Limit")
