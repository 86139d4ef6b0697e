import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import JWTError, jwt
from passlib.context import CryptContext

from .errors import AuthError

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def make_password_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def issue_token(user_id: int, username: str, secret: str, lifetime: timedelta, token_type: str) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "userId": user_id,
        "username": username,
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
        # two tokens minted in the same second must still differ
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str, token_type: str) -> Dict[str, Any]:
    """Verify signature, expiry and token type; raise AuthError on any mismatch."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthError("Invalid or expired token")
    if claims.get("type") != token_type or not isinstance(claims.get("userId"), int):
        raise AuthError("Invalid or expired token")
    return claims
