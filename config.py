import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from models import DEFAULT_CATEGORIES


DEFAULT_SECRET_KEY = "dev-secret-change-me"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    items = tuple(p.strip().lower() for p in raw.split(",") if p.strip())
    return items or default


@dataclass(frozen=True)
class Settings:
    data_dir: str = "data"
    lock_timeout: float = 5.0
    lenient_reads: bool = False

    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    auth_enabled: bool = True

    cors_origins: Tuple[str, ...] = ("http://localhost:5173",)
    categories: Tuple[str, ...] = DEFAULT_CATEGORIES
    percentage_places: int = 2
    drill_down_limit: int = 10
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build settings from the environment. Bad values raise ValueError."""
    lock_timeout = float(os.getenv("FINANCE_LOCK_TIMEOUT", "5.0"))
    if lock_timeout <= 0:
        raise ValueError("FINANCE_LOCK_TIMEOUT must be positive")

    cors = os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:5173")

    return Settings(
        data_dir=os.getenv("FINANCE_DATA_DIR", "data"),
        lock_timeout=lock_timeout,
        lenient_reads=_env_bool("FINANCE_LENIENT_READS", False),
        secret_key=os.getenv("SECRET_KEY") or DEFAULT_SECRET_KEY,
        algorithm=os.getenv("ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440")),
        auth_enabled=_env_bool("FINANCE_AUTH_ENABLED", True),
        cors_origins=tuple(o.strip() for o in cors.split(",") if o.strip()),
        categories=_env_list("FINANCE_CATEGORIES", DEFAULT_CATEGORIES),
        percentage_places=int(os.getenv("FINANCE_PERCENTAGE_PLACES", "2")),
        drill_down_limit=int(os.getenv("FINANCE_DRILL_DOWN_LIMIT", "10")),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
