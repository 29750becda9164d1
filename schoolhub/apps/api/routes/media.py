from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.apps.api.deps import (
    Principal,
    get_current_principal,
    get_db,
    get_inline_media_service,
    get_storage_client,
)
from schoolhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES, UPLOAD_ERROR_RESPONSES
from schoolhub.apps.api.response import SuccessEnvelope, success_response
from schoolhub.core.config import get_settings
from schoolhub.core.errors import StorageUnavailableError
from schoolhub.domain.models import InlineMediaScope, UploadKind
from schoolhub.services.media.client import StorageClient
from schoolhub.services.media.inline_media import InlineMediaService


logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})

router = APIRouter(
    tags=["inline-media"],
    responses={**DEFAULT_ERROR_RESPONSES, **UPLOAD_ERROR_RESPONSES},
)


class InlineImageResponse(BaseModel):
    url: str
    size: int
    width: int | None
    height: int | None
    mime_type: str
    # False when the media service answered with a URL outside the managed store.
    tracked: bool
    status: str | None = None
    expires_at: str | None = None


def _validate_upload(file: UploadFile, body: bytes) -> str:
    content_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail={"code": "MEDIA_UNSUPPORTED_TYPE", "message": "Only JPEG, PNG or WebP images are accepted"},
        )
    if not body:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "MEDIA_FILE_EMPTY", "message": "Uploaded file is empty"},
        )
    max_bytes = get_settings().inline_media_max_upload_bytes
    if len(body) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "code": "MEDIA_FILE_TOO_LARGE",
                "message": "Image exceeds the upload limit",
                "max_bytes": max_bytes,
            },
        )
    return content_type


async def _upload_inline_image(
    *,
    scope: InlineMediaScope,
    file: UploadFile,
    principal: Principal,
    db: AsyncSession,
    storage: StorageClient | None,
    media: InlineMediaService,
) -> InlineImageResponse:
    body = await file.read()
    content_type = _validate_upload(file, body)
    if storage is None:
        raise StorageUnavailableError("media service URL not configured")

    uploaded = await storage.upload_image(UploadKind.MESSAGING_INLINE_IMAGE, body, content_type)
    asset = await media.register_temp_upload(
        db,
        tenant_id=principal.tenant_id,
        uploaded_by_user_id=principal.user_id,
        scope=scope,
        url=uploaded.url,
    )
    if asset is None:
        logger.warning("inline_image_untracked url=%s scope=%s", uploaded.url, scope.value)
    expires_at: datetime | None = asset.expires_at if asset is not None else None
    return InlineImageResponse(
        url=uploaded.url,
        size=uploaded.size,
        width=uploaded.width,
        height=uploaded.height,
        mime_type=uploaded.mime_type,
        tracked=asset is not None,
        status=asset.status if asset is not None else None,
        expires_at=expires_at.isoformat() if expires_at is not None else None,
    )


@router.post(
    "/feed/inline-images",
    status_code=201,
    response_model=SuccessEnvelope[InlineImageResponse] | InlineImageResponse,
)
async def upload_feed_inline_image(
    request: Request,
    file: UploadFile = File(...),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    storage: StorageClient | None = Depends(get_storage_client),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    payload = await _upload_inline_image(
        scope=InlineMediaScope.FEED,
        file=file,
        principal=principal,
        db=db,
        storage=storage,
        media=media,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/messages/inline-images",
    status_code=201,
    response_model=SuccessEnvelope[InlineImageResponse] | InlineImageResponse,
)
async def upload_message_inline_image(
    request: Request,
    file: UploadFile = File(...),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    storage: StorageClient | None = Depends(get_storage_client),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    payload = await _upload_inline_image(
        scope=InlineMediaScope.MESSAGING,
        file=file,
        principal=principal,
        db=db,
        storage=storage,
        media=media,
    )
    return success_response(request=request, data=payload)
