import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Request
from passlib.context import CryptContext
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings
from .errors import AuthError, ConflictError, NotFoundError, ValidationError
from .ledger import parse_number
from .models import RefreshToken, User, utcnow
from .security import ACCESS, REFRESH, decode_token, issue_token

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


@dataclass
class CurrentUser:
    user_id: int
    username: str


# ---------------- HELPERS ----------------
def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _access_token(settings: Settings, user_id: int, username: str) -> str:
    return issue_token(user_id, username, settings.jwt_secret, timedelta(minutes=settings.access_token_minutes), ACCESS)


def _open_session(db: Session, settings: Settings, user: User) -> Dict[str, Any]:
    lifetime = timedelta(days=settings.refresh_token_days)
    refresh_token = issue_token(user.id, user.username, settings.jwt_refresh_secret, lifetime, REFRESH)
    db.add(RefreshToken(user_id=user.id, token=refresh_token, expires_at=utcnow() + lifetime))
    db.commit()
    return {
        "token": _access_token(settings, user.id, user.username),
        "refreshToken": refresh_token,
        "userId": user.id,
        "username": user.username,
    }


# ---------------- OPERATIONS ----------------
def register(db: Session, settings: Settings, pwd_context: CryptContext, payload: Dict[str, Any]) -> Dict[str, Any]:
    username = _text(payload, "username")
    email = _text(payload, "email")
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    if not username or not email or not password:
        raise ValidationError("Username, email and password are required")
    if len(password) < settings.min_password_length:
        raise ValidationError(f"Password must be at least {settings.min_password_length} characters")
    initial_balance = payload.get("initialBalance")
    initial_balance = 0.0 if initial_balance in (None, "") else parse_number(initial_balance, "initialBalance")

    if db.query(User).filter(or_(User.username == username, User.email == email)).first():
        raise ConflictError("Username or email already registered")

    user = User(
        username=username,
        email=email,
        password=pwd_context.hash(password),
        initial_balance=initial_balance,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Username or email already registered")
    db.refresh(user)
    logger.info("Registered user %s (id=%s)", user.username, user.id)
    return _open_session(db, settings, user)


def login(db: Session, settings: Settings, pwd_context: CryptContext, payload: Dict[str, Any]) -> Dict[str, Any]:
    identity = _text(payload, "username")
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    if not identity or not password:
        raise ValidationError("Username and password are required")

    user = db.query(User).filter(or_(User.username == identity, User.email == identity)).first()
    if not user:
        raise NotFoundError("Account not found")
    if not pwd_context.verify(password, user.password):
        logger.warning("Failed login for %s", identity)
        raise AuthError(INVALID_CREDENTIALS)

    user.last_login = utcnow()
    db.commit()
    return _open_session(db, settings, user)


def refresh(db: Session, settings: Settings, refresh_token: Optional[str]) -> Dict[str, str]:
    """Issue a new access token. The refresh token itself is left in place."""
    if not refresh_token or not isinstance(refresh_token, str):
        raise ValidationError("Refresh token is required")

    stored = db.query(RefreshToken).filter(RefreshToken.token == refresh_token).first()
    if not stored:
        raise AuthError("Invalid refresh token")
    if stored.expires_at < utcnow():
        raise AuthError("Refresh token expired")
    try:
        claims = decode_token(refresh_token, settings.jwt_refresh_secret, REFRESH)
    except AuthError:
        raise AuthError("Invalid refresh token")
    return {"token": _access_token(settings, claims["userId"], claims.get("username"))}


def logout(db: Session, refresh_token: Optional[str]) -> None:
    if refresh_token:
        db.query(RefreshToken).filter(RefreshToken.token == refresh_token).delete()
        db.commit()


def sweep_expired_tokens(db: Session) -> int:
    removed = db.query(RefreshToken).filter(RefreshToken.expires_at < utcnow()).delete()
    db.commit()
    return removed


# ---------------- DEPENDENCIES ----------------
def current_user(request: Request) -> CurrentUser:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Invalid or expired token")
    claims = decode_token(token, request.app.state.settings.jwt_secret, ACCESS)
    return CurrentUser(user_id=claims["userId"], username=claims.get("username") or "")
