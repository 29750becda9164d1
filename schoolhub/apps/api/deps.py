from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.core.config import InlineMediaConfig, get_settings
from schoolhub.persistence.db import get_session
from schoolhub.services.media.client import MediaClient, StorageClient, build_media_client
from schoolhub.services.media.inline_media import InlineMediaService


KNOWN_ROLES = ("admin", "manager", "teacher", "staff", "student", "guardian")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Identity forwarded by the upstream auth gateway; used for tenant scoping and role checks.
    user_id: str
    tenant_id: str
    role: str


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def normalize_role(value: str) -> str:
    role = value.strip().lower()
    if role not in KNOWN_ROLES:
        raise ValueError(f"Unknown role: {value}")
    return role


async def get_current_principal(request: Request) -> Principal:
    # Authentication happens upstream; the gateway forwards identity as headers.
    tenant_id = (request.headers.get("X-Tenant-Id") or "").strip()
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not tenant_id or not user_id:
        raise _auth_error("X-Tenant-Id and X-User-Id headers are required")
    try:
        role = normalize_role(request.headers.get("X-Role") or "staff")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(user_id=user_id, tenant_id=tenant_id, role=role)


def require_role(*roles: str):
    # Dependency factory to enforce role membership at the route level.
    allowed = frozenset(normalize_role(role) for role in roles)

    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "AUTH_FORBIDDEN", "message": "Insufficient role for this operation"},
            )
        return principal

    return _dependency


@lru_cache
def _shared_media_client() -> MediaClient | None:
    # One client per process so the circuit breaker keeps its local state between requests.
    return build_media_client(get_settings())


def get_storage_client() -> StorageClient | None:
    return _shared_media_client()


def get_inline_media_service(
    storage: StorageClient | None = Depends(get_storage_client),
) -> InlineMediaService:
    return InlineMediaService(InlineMediaConfig.from_settings(get_settings()), storage=storage)
