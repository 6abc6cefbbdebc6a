"""Provider catalogs (plans, OS images, regions) and account info."""
from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends

from ..errors import ProviderError
from ..models import OptionsResponse, User
from ..vultr import VultrClient
from .helpers import get_current_user, get_provider, provider_http_error

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/options", response_model=OptionsResponse)
async def get_options(
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(get_current_user),
) -> OptionsResponse:
    try:
        catalog, regions, plans = await asyncio.gather(
            provider.get_os_catalog(),
            provider.get_regions(),
            provider.get_plans(),
        )
    except ProviderError as e:
        raise provider_http_error(e)
    return OptionsResponse(
        plans=plans,
        windows_os=catalog.windows,
        linux_os=catalog.linux,
        regions=regions,
    )


@router.get("/account")
async def get_account(
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        account = await provider.get_account()
    except ProviderError as e:
        raise provider_http_error(e)
    return {"success": True, "data": account}
