from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.core.errors import DatabaseError
from schoolhub.domain.models import InlineMediaAsset, InlineMediaStatus


def _insert_for(session: AsyncSession) -> Any:
    # ON CONFLICT upserts are dialect specific; sqlite backs the test suite.
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


async def _upsert(
    session: AsyncSession,
    *,
    url: str,
    values: dict[str, Any],
    only_if_status: str | None = None,
) -> None:
    # Single-statement upsert keyed on url so concurrent writers converge on one row.
    insert = _insert_for(session)
    stmt = insert(InlineMediaAsset).values(id=uuid4().hex, url=url, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["url"],
        set_={**values, "updated_at": func.now()},
        where=(InlineMediaAsset.status == only_if_status) if only_if_status is not None else None,
    )
    try:
        await session.execute(stmt)
    except IntegrityError as exc:
        # Conflicts on url are absorbed above; anything else is a schema or data bug.
        await session.rollback()
        raise DatabaseError("inline media upsert failed") from exc


async def upsert_temp_asset(
    session: AsyncSession,
    *,
    url: str,
    tenant_id: str,
    uploaded_by_user_id: str,
    scope: str,
    expires_at: datetime,
) -> None:
    await _upsert(
        session,
        url=url,
        values={
            "tenant_id": tenant_id,
            "uploaded_by_user_id": uploaded_by_user_id,
            "scope": scope,
            "status": InlineMediaStatus.TEMP.value,
            "entity_type": None,
            "entity_id": None,
            "expires_at": expires_at,
        },
        # A linked row keeps its owner; re-registering never demotes it to TEMP.
        only_if_status=InlineMediaStatus.TEMP.value,
    )


async def upsert_linked_asset(
    session: AsyncSession,
    *,
    url: str,
    tenant_id: str,
    uploaded_by_user_id: str,
    scope: str,
    entity_type: str,
    entity_id: str,
) -> None:
    await _upsert(
        session,
        url=url,
        values={
            "tenant_id": tenant_id,
            "uploaded_by_user_id": uploaded_by_user_id,
            "scope": scope,
            "status": InlineMediaStatus.LINKED.value,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "expires_at": None,
        },
    )


async def get_asset_by_url(session: AsyncSession, url: str) -> InlineMediaAsset | None:
    # Upserts bypass the identity map, so reload attributes from the row.
    result = await session.execute(
        select(InlineMediaAsset)
        .where(InlineMediaAsset.url == url)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_assets_by_urls(session: AsyncSession, urls: Iterable[str]) -> dict[str, InlineMediaAsset]:
    url_list = list(urls)
    if not url_list:
        return {}
    result = await session.execute(
        select(InlineMediaAsset)
        .where(InlineMediaAsset.url.in_(url_list))
        .execution_options(populate_existing=True)
    )
    return {asset.url: asset for asset in result.scalars().all()}


async def list_linked_assets(
    session: AsyncSession, *, entity_type: str, entity_id: str
) -> list[InlineMediaAsset]:
    result = await session.execute(
        select(InlineMediaAsset)
        .where(
            InlineMediaAsset.entity_type == entity_type,
            InlineMediaAsset.entity_id == entity_id,
            InlineMediaAsset.status == InlineMediaStatus.LINKED.value,
        )
        .order_by(InlineMediaAsset.url)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_expired_temp_assets(
    session: AsyncSession, *, now: datetime, limit: int, exclude_url: str | None = None
) -> list[InlineMediaAsset]:
    # Oldest expiries first so a bounded batch always makes progress on the backlog.
    stmt = select(InlineMediaAsset).where(
        InlineMediaAsset.status == InlineMediaStatus.TEMP.value,
        InlineMediaAsset.expires_at <= now,
    )
    if exclude_url is not None:
        stmt = stmt.where(InlineMediaAsset.url != exclude_url)
    result = await session.execute(
        stmt
        .order_by(InlineMediaAsset.expires_at.asc(), InlineMediaAsset.id.asc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def delete_entity_assets(
    session: AsyncSession, *, entity_type: str, entity_id: str, urls: Iterable[str]
) -> int:
    # Only rows bound to this entity are removed; other owners of the same URL are untouched.
    url_list = list(urls)
    if not url_list:
        return 0
    result = await session.execute(
        delete(InlineMediaAsset).where(
            InlineMediaAsset.entity_type == entity_type,
            InlineMediaAsset.entity_id == entity_id,
            InlineMediaAsset.url.in_(url_list),
        )
    )
    return result.rowcount or 0


async def delete_assets_by_ids(session: AsyncSession, asset_ids: Iterable[str]) -> int:
    id_list = list(asset_ids)
    if not id_list:
        return 0
    result = await session.execute(delete(InlineMediaAsset).where(InlineMediaAsset.id.in_(id_list)))
    return result.rowcount or 0
