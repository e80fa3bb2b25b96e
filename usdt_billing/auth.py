from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from fastapi import Header
from .config import settings
from .exceptions import AuthenticationError, InvalidTokenError, TokenExpiredError

def create_access_token(sub: str, expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "exp": now + timedelta(minutes=expires_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

def verify_token(token: str) -> str:
    """Return the verified user id carried by a bearer token."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError()
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError(str(e))
    uid = payload.get("sub")
    if not uid:
        raise InvalidTokenError("missing subject")
    return str(uid)

async def current_uid(authorization: Optional[str] = Header(None)) -> str:
    """FastAPI dependency: the authenticated user id, or 401."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing Authorization bearer token")
    return verify_token(token.strip())
