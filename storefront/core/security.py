"""Security utilities for tenant authentication."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from storefront.core.config import settings


def create_access_token(
    tenant_id: uuid.UUID,
    subject: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token scoped to a tenant."""
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRES_MINUTES)

    to_encode: dict[str, Any] = {
        "sub": subject or str(tenant_id),
        "tenant_id": str(tenant_id),
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """Decode and verify a JWT token."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
