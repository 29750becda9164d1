from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.apps.api.deps import Principal, get_db, get_inline_media_service, require_role
from schoolhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from schoolhub.apps.api.response import SuccessEnvelope, success_response
from schoolhub.services.media.client import MEDIA_INTEGRATION
from schoolhub.services.media.inline_media import InlineMediaService
from schoolhub.services.telemetry import counters_snapshot, external_call_stats, gauges_snapshot, request_stats


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/inline-media", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class PurgeResponse(BaseModel):
    purged: list[str]
    skipped: list[str]


class InlineMediaStatsResponse(BaseModel):
    counters: dict[str, int]
    circuit_breakers: dict[str, float]
    media_service: dict[str, float | int | None]
    requests: dict[str, float | int | None]


@router.post("/purge", response_model=SuccessEnvelope[PurgeResponse] | PurgeResponse)
async def purge_inline_media(
    request: Request,
    limit: int | None = Query(default=None, ge=1, le=1000),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    # The sweep reclaims expired uploads of every tenant, hence admin only.
    result = await media.purge_expired_temp_uploads(db, limit=limit)
    logger.info(
        "inline_media_purge_requested user_id=%s purged=%d skipped=%d",
        principal.user_id,
        len(result.purged),
        len(result.failed),
    )
    payload = PurgeResponse(purged=list(result.purged), skipped=list(result.failed))
    return success_response(request=request, data=payload)


@router.get("/stats", response_model=SuccessEnvelope[InlineMediaStatsResponse] | InlineMediaStatsResponse)
async def inline_media_stats(
    request: Request,
    _principal: Principal = Depends(require_role("admin")),
) -> dict:
    counters = {name: value for name, value in counters_snapshot().items() if name.startswith("inline_media_")}
    payload = InlineMediaStatsResponse(
        counters=counters,
        circuit_breakers={
            name: value for name, value in gauges_snapshot().items() if name.startswith("breaker_state.")
        },
        media_service=external_call_stats(MEDIA_INTEGRATION),
        requests=request_stats(),
    )
    return success_response(request=request, data=payload)
