from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

# Import the 'settings' instance from our config module
from config.settings import settings

# --- JSON Web Token (JWT) Management ---
#
# The postback only needs to know WHETHER the caller is authenticated.
# The JWT may arrive as a Bearer header or as a cookie; the cookie form
# survives the trip through the outbound postback.


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Creates a new, signed JWT access token.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_subject(token: Optional[str]) -> Optional[str]:
    """
    Returns the 'sub' claim of a valid token, or None.
    Never raises on bad input.
    """
    if not token:
        return None

    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None


def _token_from_request(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(settings.AUTH_COOKIE_NAME)


def is_request_authenticated(request: Request) -> bool:
    return decode_subject(_token_from_request(request)) is not None
