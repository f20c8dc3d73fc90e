"""FastAPI dependencies for tenant authentication, database sessions and payment gateways."""

import uuid
from typing import Annotated, Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.db import get_db
from storefront.core.security import decode_access_token
from storefront.database.tenant_repo import TenantRepository
from storefront.integrations.payment_providers import PaymentProvider, get_payment_provider
from storefront.models.models import PaymentMethod, Tenant

security = HTTPBearer()

ProviderResolver = Callable[[PaymentMethod], PaymentProvider]


async def get_current_tenant(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Tenant:
    """Resolve the tenant named by the bearer token's ``tenant_id`` claim."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    tenant_id_str: Optional[str] = payload.get("tenant_id")
    if tenant_id_str is None:
        raise credentials_exception

    try:
        tenant_id = uuid.UUID(tenant_id_str)
    except ValueError:
        raise credentials_exception

    tenant = await TenantRepository.get_tenant(db, tenant_id)
    if tenant is None:
        raise credentials_exception

    return tenant


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Optional[uuid.UUID]:
    """Acting user from the token ``sub`` claim, used for audit columns."""
    payload = decode_access_token(credentials.credentials) or {}
    try:
        return uuid.UUID(payload.get("sub", ""))
    except ValueError:
        return None


def get_payment_provider_resolver() -> ProviderResolver:
    return get_payment_provider


# Convenience type aliases
CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]
CurrentUserId = Annotated[Optional[uuid.UUID], Depends(get_current_user_id)]
DB = Annotated[AsyncSession, Depends(get_db)]
Providers = Annotated[ProviderResolver, Depends(get_payment_provider_resolver)]
