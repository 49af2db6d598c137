"""
API dependencies for tenant scoping and service access.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from services import ComboRankingEngine, get_combo_engine


async def get_tenant_id(
    x_organization_id: Annotated[str, Header(alias="X-Organization-Id", max_length=64)],
) -> str:
    """
    Tenant identifier supplied by the upstream identity resolver.

    The engine never authenticates callers itself; it only scopes cache
    entries and rate limits by this value.
    """
    tenant_id = x_organization_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id header must not be empty",
        )
    return tenant_id


def get_engine() -> ComboRankingEngine:
    """Shared combo ranking engine (overridden in tests)."""
    return get_combo_engine()


TenantId = Annotated[str, Depends(get_tenant_id)]
Engine = Annotated[ComboRankingEngine, Depends(get_engine)]
