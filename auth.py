import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import Settings, get_settings
from errors import UnauthorizedError
from models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def hash_password(password: str):
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str):
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(user: User, settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    data = {"sub": user.id, "email": user.email, "name": user.name, "exp": expire}
    return jwt.encode(data, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        logger.info("Rejected token: %s", exc)
        raise UnauthorizedError("Token is not valid")
    if not payload.get("sub"):
        raise UnauthorizedError("Token is not valid")
    return payload


def get_current_user_id(
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """Owner id for the request; None when auth is disabled (single owner)."""
    if not settings.auth_enabled:
        return None
    if not token:
        raise UnauthorizedError("No token, authorization denied")
    return decode_access_token(token, settings)["sub"]
