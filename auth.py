import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import (
    ACCESS_TOKEN_EXPIRE_DAYS,
    ALGORITHM,
    COOKIE_SAMESITE,
    COOKIE_SECURE,
    SECRET_KEY,
    TOKEN_COOKIE_NAME,
)
from database import USERS, get_db, get_document
from schemas import normalize_email

logger = logging.getLogger(__name__)


def cookie_options() -> Dict[str, Any]:
    return {"httponly": True, "secure": COOKIE_SECURE, "samesite": COOKIE_SAMESITE}


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(TOKEN_COOKIE_NAME, token, **cookie_options())


def clear_token_cookie(response: Response) -> None:
    response.delete_cookie(TOKEN_COOKIE_NAME, **cookie_options())


def unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized access")


def forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden access")


async def verify_token(request: Request) -> dict:
    """Decode the session cookie and return its claims."""
    token = request.cookies.get(TOKEN_COOKIE_NAME)
    if not token:
        raise unauthorized()
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug("Rejected session token: %s", e)
        raise unauthorized()


def caller_email(claims: dict) -> Optional[str]:
    email = claims.get("email")
    return normalize_email(email) if isinstance(email, str) else None


def ensure_same_email(email: str, claims: dict) -> None:
    caller = caller_email(claims)
    if not caller or normalize_email(email) != caller:
        raise forbidden()


async def is_admin(db: AsyncIOMotorDatabase, claims: dict) -> bool:
    email = caller_email(claims)
    if not email:
        return False
    user = await get_document(db, USERS, {"email": email})
    return bool(user) and user.get("role") == "admin"


async def ensure_owner_or_admin(db: AsyncIOMotorDatabase, owner_email: Optional[str], claims: dict) -> None:
    if owner_email and normalize_email(owner_email) == caller_email(claims):
        return
    if not await is_admin(db, claims):
        raise forbidden()


async def require_admin(
    claims: dict = Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict:
    if not await is_admin(db, claims):
        raise forbidden()
    return claims
