from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.domain.models import FeedPost


async def add_post(
    session: AsyncSession,
    *,
    tenant_id: str,
    author_user_id: str,
    title: str,
    body_html: str,
) -> FeedPost:
    post = FeedPost(tenant_id=tenant_id, author_user_id=author_user_id, title=title, body_html=body_html)
    session.add(post)
    await session.flush()
    return post


async def get_post(session: AsyncSession, tenant_id: str, post_id: str) -> FeedPost | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        select(FeedPost).where(FeedPost.id == post_id, FeedPost.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def delete_post(session: AsyncSession, post_id: str) -> int:
    result = await session.execute(delete(FeedPost).where(FeedPost.id == post_id))
    return result.rowcount or 0
