from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.domain.models import FeedPost, InlineMediaEntityType, InlineMediaScope
from schoolhub.persistence.repos import feed_posts as feed_posts_repo
from schoolhub.services.media.inline_media import InlineMediaService


logger = logging.getLogger(__name__)

MANAGER_ROLES = frozenset({"admin", "manager"})


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "FEED_POST_NOT_FOUND", "message": "Feed post not found"},
    )


async def _require_manageable_post(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    role: str,
    post_id: str,
) -> FeedPost:
    # Authors manage their own posts; school managers manage every post of the tenant.
    post = await feed_posts_repo.get_post(session, tenant_id, post_id)
    if post is None:
        raise _not_found()
    if post.author_user_id != user_id and role not in MANAGER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "AUTH_FORBIDDEN", "message": "Not allowed to manage this post"},
        )
    return post


async def create_post(
    session: AsyncSession,
    *,
    media: InlineMediaService,
    tenant_id: str,
    user_id: str,
    title: str,
    body_html: str,
) -> FeedPost:
    post = await feed_posts_repo.add_post(
        session,
        tenant_id=tenant_id,
        author_user_id=user_id,
        title=title.strip(),
        body_html=body_html.strip(),
    )
    await session.commit()
    # No LINKED rows exist yet, so the registry diff only promotes uploads.
    await media.sync_entity_images(
        session,
        tenant_id=tenant_id,
        uploaded_by_user_id=user_id,
        scope=InlineMediaScope.FEED,
        entity_type=InlineMediaEntityType.FEED_POST,
        entity_id=post.id,
        next_body_html=post.body_html,
        delete_removed_physically=False,
    )
    return post


async def update_post(
    session: AsyncSession,
    *,
    media: InlineMediaService,
    tenant_id: str,
    user_id: str,
    role: str,
    post_id: str,
    title: str,
    body_html: str,
) -> FeedPost:
    post = await _require_manageable_post(
        session, tenant_id=tenant_id, user_id=user_id, role=role, post_id=post_id
    )
    next_body = body_html.strip()
    # Images dropped by an edit are forgotten but left in storage.
    await media.sync_entity_images(
        session,
        tenant_id=tenant_id,
        uploaded_by_user_id=user_id,
        scope=InlineMediaScope.FEED,
        entity_type=InlineMediaEntityType.FEED_POST,
        entity_id=post.id,
        previous_body_html=post.body_html,
        next_body_html=next_body,
        delete_removed_physically=False,
    )
    post.title = title.strip()
    post.body_html = next_body
    await session.commit()
    await session.refresh(post)
    return post


async def delete_post(
    session: AsyncSession,
    *,
    media: InlineMediaService,
    tenant_id: str,
    user_id: str,
    role: str,
    post_id: str,
) -> list[str]:
    post = await _require_manageable_post(
        session, tenant_id=tenant_id, user_id=user_id, role=role, post_id=post_id
    )
    # Storage failures abort here, before the post or its registry rows are gone.
    removed = await media.remove_entity_images(
        session,
        entity_type=InlineMediaEntityType.FEED_POST,
        entity_id=post.id,
        delete_physically=True,
    )
    await feed_posts_repo.delete_post(session, post.id)
    await session.commit()
    logger.info("feed_post_deleted post_id=%s images=%d", post.id, len(removed))
    return removed
