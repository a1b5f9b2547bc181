"""
Tenant context from the upstream auth collaborator.

Authentication happens in front of this service (API gateway / auth
service). It forwards the verified identity as headers:

    X-Organization-Id   tenant scope for every operation (required)
    X-User-Id           acting user, recorded as createdById (optional)

Route handlers depend on `CurrentTenant` and pass the TenantContext down to
the services; nothing below the router reads headers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status


@dataclass(frozen=True)
class TenantContext:
    organization_id: str
    user_id: str | None = None


async def get_tenant(
    x_organization_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
) -> TenantContext:
    if not x_organization_id or not x_organization_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "MISSING_TENANT", "message": "X-Organization-Id header is required"},
        )
    return TenantContext(
        organization_id=x_organization_id.strip(),
        user_id=x_user_id.strip() if x_user_id else None,
    )


CurrentTenant = Annotated[TenantContext, Depends(get_tenant)]
