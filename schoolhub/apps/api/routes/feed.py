from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.apps.api.deps import Principal, get_current_principal, get_db, get_inline_media_service
from schoolhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from schoolhub.apps.api.response import SuccessEnvelope, success_response
from schoolhub.domain.models import FeedPost
from schoolhub.services import feed as feed_service
from schoolhub.services.media.inline_media import InlineMediaService


router = APIRouter(prefix="/feed/posts", tags=["feed"], responses=DEFAULT_ERROR_RESPONSES)


class FeedPostRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    body_html: str = Field(default="", max_length=200_000)

    # Reject unknown fields so tenant_id cannot be supplied in the payload.
    model_config = {"extra": "forbid"}


class FeedPostResponse(BaseModel):
    id: str
    tenant_id: str
    author_user_id: str
    title: str
    body_html: str
    created_at: str | None
    updated_at: str | None


class FeedPostDeleted(BaseModel):
    id: str
    deleted: bool
    removed_images: list[str]


def _to_response(post: FeedPost) -> FeedPostResponse:
    return FeedPostResponse(
        id=post.id,
        tenant_id=post.tenant_id,
        author_user_id=post.author_user_id,
        title=post.title,
        body_html=post.body_html,
        created_at=post.created_at.isoformat() if post.created_at else None,
        updated_at=post.updated_at.isoformat() if post.updated_at else None,
    )


@router.post("", status_code=201, response_model=SuccessEnvelope[FeedPostResponse] | FeedPostResponse)
async def create_feed_post(
    request: Request,
    payload: FeedPostRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    post = await feed_service.create_post(
        db,
        media=media,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        title=payload.title,
        body_html=payload.body_html,
    )
    await db.refresh(post)
    return success_response(request=request, data=_to_response(post))


@router.patch("/{post_id}", response_model=SuccessEnvelope[FeedPostResponse] | FeedPostResponse)
async def update_feed_post(
    request: Request,
    post_id: str,
    payload: FeedPostRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    post = await feed_service.update_post(
        db,
        media=media,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        role=principal.role,
        post_id=post_id,
        title=payload.title,
        body_html=payload.body_html,
    )
    return success_response(request=request, data=_to_response(post))


@router.delete("/{post_id}", response_model=SuccessEnvelope[FeedPostDeleted] | FeedPostDeleted)
async def delete_feed_post(
    request: Request,
    post_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    media: InlineMediaService = Depends(get_inline_media_service),
) -> dict:
    removed = await feed_service.delete_post(
        db,
        media=media,
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        role=principal.role,
        post_id=post_id,
    )
    payload = FeedPostDeleted(id=post_id, deleted=True, removed_images=removed)
    return success_response(request=request, data=payload)
