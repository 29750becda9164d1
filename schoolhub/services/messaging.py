from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.domain.models import (
    InlineMediaEntityType,
    InlineMediaScope,
    InternalMessage,
    MessageStatus,
)
from schoolhub.persistence.repos import messages as messages_repo
from schoolhub.services.media.inline_media import InlineMediaService


logger = logging.getLogger(__name__)


async def _require_own_message(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    message_id: str,
    drafts_only: bool,
) -> InternalMessage:
    # Messages of other senders are reported as missing rather than forbidden.
    message = await messages_repo.get_message(session, tenant_id, message_id)
    if message is None or message.sender_user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "MESSAGE_NOT_FOUND", "message": "Message not found"},
        )
    if drafts_only and message.status != MessageStatus.DRAFT.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "MESSAGE_NOT_DRAFT", "message": "Only drafts can be edited"},
        )
    return message


async def _sync_body(
    session: AsyncSession,
    media: InlineMediaService,
    message: InternalMessage,
    *,
    user_id: str,
    next_body_html: str,
) -> None:
    # Drafts keep their own images linked so autosaves never lose an upload to the sweep.
    await media.sync_entity_images(
        session,
        tenant_id=message.tenant_id,
        uploaded_by_user_id=user_id,
        scope=InlineMediaScope.MESSAGING,
        entity_type=InlineMediaEntityType.INTERNAL_MESSAGE,
        entity_id=message.id,
        next_body_html=next_body_html,
        delete_removed_physically=False,
    )


async def list_messages(session: AsyncSession, *, tenant_id: str, user_id: str) -> list[InternalMessage]:
    return await messages_repo.list_sender_messages(session, tenant_id, user_id)


async def create_draft(
    session: AsyncSession,
    *,
    media: InlineMediaService,
    tenant_id: str,
    user_id: str,
    subject: str,
    body_html: str,
) -> InternalMessage:
    message = await messages_repo.add_draft(
        session,
        tenant_id=tenant_id,
        sender_user_id=user_id,
        subject=subject.strip(),
        body_html=body_html.strip(),
    )
    await session.commit()
    await _sync_body(session, media, message, user_id=user_id, next_body_html=message.body_html)
    return message


async def update_draft(
    session: AsyncSession,
    *,
    media: InlineMediaService,
    tenant_id: str,
    user_id: str,
    message_id: str,
    subject: str,
    body_html: str,
) -> InternalMessage:
    message = await _require_own_message(
        session, tenant_id=tenant_id, user_id=user_id, message_id=message_id, drafts_only=True
    )
    next_body = body_html.strip()
    # The previous body is read back from the registry instead of the stored draft.
    await _sync_body(session, media, message, user_id=user_id, next_body_html=next_body)
    message.subject = subject.strip()
    message.body_html = next_body
    await session.commit()
    await session.refresh(message)
    return message


async def send_draft(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    message_id: str,
) -> InternalMessage:
    message = await _require_own_message(
        session, tenant_id=tenant_id, user_id=user_id, message_id=message_id, drafts_only=True
    )
    message.status = MessageStatus.SENT.value
    await session.commit()
    await session.refresh(message)
    return message


async def delete_message(
    session: AsyncSession,
    *,
    media: InlineMediaService,
    tenant_id: str,
    user_id: str,
    message_id: str,
) -> list[str]:
    message = await _require_own_message(
        session, tenant_id=tenant_id, user_id=user_id, message_id=message_id, drafts_only=False
    )
    removed = await media.remove_entity_images(
        session,
        entity_type=InlineMediaEntityType.INTERNAL_MESSAGE,
        entity_id=message.id,
        delete_physically=True,
    )
    await messages_repo.delete_message(session, message.id)
    await session.commit()
    logger.info("internal_message_deleted message_id=%s images=%d", message.id, len(removed))
    return removed
