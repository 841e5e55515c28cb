import jwt
from typing import Dict, Any, Optional
from datetime import datetime, timedelta, timezone

from fastapi import Request

from concierge.core.config import settings
from concierge.core.exceptions import AuthenticationException
from concierge.domain.models.concierge import Identity

BEARER_PREFIX = "Bearer "

def create_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT token with provided payload
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify JWT token and return payload

    Raises:
        AuthenticationException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationException("Token expired")
    except jwt.PyJWTError as e:
        raise AuthenticationException(f"Invalid token: {str(e)}")

def identity_from_authorization(header: Optional[str]) -> Identity:
    """
    Resolve the caller from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationException: If the header is missing, malformed or has no subject
    """
    if not header or not header.startswith(BEARER_PREFIX):
        raise AuthenticationException("Missing bearer token")

    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationException("Missing bearer token")

    payload = verify_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationException("Token has no subject")

    return Identity(user_id=str(user_id), role=payload.get("role"))

async def get_current_identity(request: Request) -> Identity:
    """
    FastAPI dependency returning the authenticated caller.
    Reuses the identity already resolved by the rate limit middleware.
    """
    identity = getattr(request.state, "identity", None)
    if identity is not None:
        return identity
    return identity_from_authorization(request.headers.get("Authorization"))
