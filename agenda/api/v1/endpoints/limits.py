"""Endpoints exposing current plan entitlements and usage."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from agenda.api.deps import get_entitlement_resolver
from agenda.auth.jwt import require_auth
from agenda.services.entitlements import EntitlementResolver
from agenda.services.limits import check_rate_limit


router = APIRouter(prefix="/limits", tags=["limits"])


@router.get("/current")
async def current_limits(
    auth=Depends(require_auth),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
):
    user_id = auth["user_id"]
    await check_rate_limit(f"limits:{user_id}")

    entitlements = await resolver.resolve(user_id)
    return entitlements.as_dict()
