from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.apps.api.deps import Principal, get_current_principal, get_db, get_inline_media_service
from schoolhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from schoolhub.apps.api.response import SuccessEnvelope, success_response
from schoolhub.domain.models import InternalMessage
from schoolhub.services import messaging as messaging_service
from schoolhub.services.media.inline_media import InlineMediaService


router = APIRouter(prefix="/messages", tags=["messages"], responses=DEFAULT_ERROR_RESPONSES)


class DraftRequest(BaseModel):
    subject: str = Field(default="", max_length=200)
    body_html: str = Field(default="", max_length=200_000)

    model_config = {"extra": "forbid"}


class MessageResponse(BaseModel):
    id: str
    tenant_id: str
    sender_user_id: str
    subject: str
    body_html: str
    status: str
    created_at: str | None
    updated_at: str | None


class MessageDeleted(BaseModel):
    id: str
    deleted: bool
    removed_images: list[str]


def _to_response(message: InternalMessage) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        tenant_id=message.tenant_id,
        sender_user_id=message.sender_user_id,
        subject=message.subject,
        body_html=message.body_html,
        status=message.status,
        created_at=message.created_at.isoformat() if message.created_at else None,
        updated_at=message.updated_at.isoformat() if message.updated_at else None,
    )


@router.get("", response_model=SuccessEnvelope[list[MessageResponse]] | list[MessageResponse])
async def list_messages(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    messages = await messaging_service.list_messages(db, tenant_id=principal.tenant_id, user_id=principal.user_id)
    payload = [_to_response(message) for message in messages]
    return success_response(request=request, data=payload)


@router.post("/drafts", status_code=201, response_model=SuccessEnvelope[MessageResponse] | MessageResponse)
async def create_draft(
    request: Request,
    payload: DraftRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    message = await messaging_service.create_draft(
        db,
        media=media,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        subject=payload.subject,
        body_html=payload.body_html,
    )
    await db.refresh(message)
    return success_response(request=request, data=_to_response(message))


@router.patch("/drafts/{message_id}", response_model=SuccessEnvelope[MessageResponse] | MessageResponse)
async def update_draft(
    request: Request,
    message_id: str,
    payload: DraftRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    message = await messaging_service.update_draft(
        db,
        media=media,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        message_id=message_id,
        subject=payload.subject,
        body_html=payload.body_html,
    )
    return success_response(request=request, data=_to_response(message))


@router.post("/drafts/{message_id}/send", response_model=SuccessEnvelope[MessageResponse] | MessageResponse)
async def send_draft(
    request: Request,
    message_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    message = await messaging_service.send_draft(
        db,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        message_id=message_id,
    )
    return success_response(request=request, data=_to_response(message))


@router.delete("/{message_id}", response_model=SuccessEnvelope[MessageDeleted] | MessageDeleted)
async def delete_message(
    request: Request,
    message_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    removed = await messaging_service.delete_message(
        db,
        media=media,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        message_id=message_id,
    )
    payload = MessageDeleted(id=message_id, deleted=True, removed_images=removed)
    return success_response(request=request, data=payload)
