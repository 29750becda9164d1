from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid4().hex


class InlineMediaScope(str, Enum):
    # Owning feature of an upload; bookkeeping only.
    FEED = "FEED"
    MESSAGING = "MESSAGING"


class InlineMediaStatus(str, Enum):
    TEMP = "TEMP"
    LINKED = "LINKED"


class InlineMediaEntityType(str, Enum):
    FEED_POST = "FEED_POST"
    INTERNAL_MESSAGE = "INTERNAL_MESSAGE"


class UploadKind(str, Enum):
    # Variants understood by the media service upload endpoint.
    SCHOOL_LOGO = "school-logo"
    USER_AVATAR = "user-avatar"
    MESSAGING_INLINE_IMAGE = "messaging-inline-image"


class MessageStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"


class InlineMediaAsset(Base):
    __tablename__ = "inline_media_assets"
    __table_args__ = (
        Index("ix_inline_media_assets_entity", "entity_type", "entity_id", "status"),
        Index("ix_inline_media_assets_status_expires", "status", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # The public URL identifies the physical object, so it is the natural key.
    url: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    uploaded_by_user_id: Mapped[str] = mapped_column(String, nullable=False)
    scope: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    # Owning content is set only while LINKED.
    entity_type: Mapped[str | None] = mapped_column(String, nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Set only while TEMP; drives the sweep.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class FeedPost(Base):
    __tablename__ = "feed_posts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    author_user_id: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    body_html: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class InternalMessage(Base):
    __tablename__ = "internal_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    sender_user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    subject: Mapped[str] = mapped_column(String, nullable=False, default="")
    body_html: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default=MessageStatus.DRAFT.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
