from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.domain.models import InternalMessage, MessageStatus


async def add_draft(
    session: AsyncSession,
    *,
    tenant_id: str,
    sender_user_id: str,
    subject: str,
    body_html: str,
) -> InternalMessage:
    message = InternalMessage(
        tenant_id=tenant_id,
        sender_user_id=sender_user_id,
        subject=subject,
        body_html=body_html,
        status=MessageStatus.DRAFT.value,
    )
    session.add(message)
    await session.flush()
    return message


async def get_message(session: AsyncSession, tenant_id: str, message_id: str) -> InternalMessage | None:
    result = await session.execute(
        select(InternalMessage).where(
            InternalMessage.id == message_id,
            InternalMessage.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()


async def list_sender_messages(session: AsyncSession, tenant_id: str, sender_user_id: str) -> list[InternalMessage]:
    result = await session.execute(
        select(InternalMessage)
        .where(
            InternalMessage.tenant_id == tenant_id,
            InternalMessage.sender_user_id == sender_user_id,
        )
        .order_by(InternalMessage.created_at.desc(), InternalMessage.id)
    )
    return list(result.scalars().all())


async def delete_message(session: AsyncSession, message_id: str) -> int:
    result = await session.execute(delete(InternalMessage).where(InternalMessage.id == message_id))
    return result.rowcount or 0
