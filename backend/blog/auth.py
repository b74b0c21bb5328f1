"""Authentication helpers and FastAPI security dependencies.

This module issues and verifies JWT access/refresh tokens, writes them
as HttpOnly cookies, and provides the `get_current_user` dependency.
The access token is read from an `Authorization: Bearer` header or the
`access_token` cookie; when it is missing or expired but a
valid refresh cookie is present, a new access token is issued on the
same response so browsers renew their session silently.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, Response
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

logger = logging.getLogger("blog.auth")

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _encode(user_id: int, email: str, token_type: str, ttl_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user_id: int, email: str) -> str:
    return _encode(user_id, email, "access", settings.ACCESS_TOKEN_TTL_SECONDS)


def create_refresh_token(user_id: int, email: str) -> str:
    return _encode(user_id, email, "refresh", settings.REFRESH_TOKEN_TTL_SECONDS)


def decode_token(token: str, expected_type: str = "access") -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure, including a token of the wrong type.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="invalid token")
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="invalid token")
    return payload


def _set_cookie(response: Response, name: str, value: str, max_age: int):
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path="/",
        domain=settings.COOKIE_DOMAIN,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )


def set_access_cookie(response: Response, access_token: str):
    _set_cookie(response, ACCESS_COOKIE, access_token, settings.ACCESS_TOKEN_TTL_SECONDS)


def set_token_cookies(response: Response, access_token: str, refresh_token: str):
    set_access_cookie(response, access_token)
    _set_cookie(response, REFRESH_COOKIE, refresh_token, settings.REFRESH_TOKEN_TTL_SECONDS)


def clear_token_cookies(response: Response):
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            key=name,
            path="/",
            domain=settings.COOKIE_DOMAIN,
            secure=settings.COOKIE_SECURE,
            httponly=True,
            samesite="lax",
        )


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def _load_user(db: Session, payload: dict) -> models.User:
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="invalid token payload")
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    return user


def get_current_user(request: Request, response: Response, db: Session = Depends(get_session)) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    Raises HTTPException(401) when neither the access token nor the
    refresh cookie authenticates the request.
    """
    token = _bearer_token(request) or request.cookies.get(ACCESS_COOKIE)
    failure: Optional[HTTPException] = None
    if token:
        try:
            return _load_user(db, decode_token(token, "access"))
        except HTTPException as exc:
            failure = exc

    refresh = request.cookies.get(REFRESH_COOKIE)
    if refresh:
        try:
            payload = decode_token(refresh, "refresh")
        except HTTPException:
            raise failure or HTTPException(status_code=401, detail="authentication required")
        user = _load_user(db, payload)
        set_access_cookie(response, create_access_token(user.id, user.email))
        logger.info("access token renewed from refresh cookie user_id=%s", user.id)
        return user

    raise failure or HTTPException(status_code=401, detail="authentication required")


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="admin only")
    return user
