from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.core.config import InlineMediaConfig, Settings, get_settings
from schoolhub.core.errors import MediaStorageError, StorageUnavailableError
from schoolhub.domain.models import (
    InlineMediaAsset,
    InlineMediaEntityType,
    InlineMediaScope,
)
from schoolhub.persistence.repos import inline_media as inline_media_repo
from schoolhub.services.media.client import StorageClient, build_media_client
from schoolhub.services.media.extractor import InlineImageExtractor, ReferenceExtractor
from schoolhub.services.media.urls import ManagedUrlClassifier
from schoolhub.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeletionPolicy(str, Enum):
    """How physical deletes behave at a given call site.

    DEFER skips the storage call entirely. STRICT deletes sequentially and
    raises on the first failure, before the caller touches the registry.
    BEST_EFFORT deletes sequentially, logs failures and reports which URLs
    succeeded.
    """

    DEFER = "defer"
    STRICT = "strict"
    BEST_EFFORT = "best_effort"

    @classmethod
    def strict_if(cls, physical: bool) -> "DeletionPolicy":
        return cls.STRICT if physical else cls.DEFER


@dataclass(frozen=True)
class SyncResult:
    linked: frozenset[str]
    removed: frozenset[str]


@dataclass(frozen=True)
class PurgeResult:
    purged: tuple[str, ...]
    failed: tuple[str, ...]


class InlineMediaService:
    """Track images embedded in rich-text bodies from upload to deletion.

    Uploads are registered as TEMP with an expiry. Saving a body links every
    managed image it references to the owning entity and forgets the ones it
    no longer references. Deleting the entity forgets all of its images, and
    TEMP uploads nobody saved are swept once they expire. The sweep has no
    scheduler; it runs at the start of registration and sync calls.
    """

    def __init__(
        self,
        config: InlineMediaConfig,
        *,
        storage: StorageClient | None = None,
        extractor: ReferenceExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._storage = storage
        self._classifier = ManagedUrlClassifier.from_config(config)
        self._extractor = extractor or InlineImageExtractor(self._classifier)
        self._clock = clock or _utc_now

    @property
    def config(self) -> InlineMediaConfig:
        return self._config

    def is_managed(self, url: str | None) -> bool:
        return self._classifier.is_managed(url)

    def extract(self, body_html: str | None) -> frozenset[str]:
        return self._extractor.extract(body_html)

    def temp_expiry(self) -> datetime:
        return self._clock() + timedelta(minutes=self._config.temp_ttl_minutes)

    async def register_temp_upload(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        uploaded_by_user_id: str,
        scope: InlineMediaScope | str,
        url: str,
    ) -> InlineMediaAsset | None:
        url = url.strip()
        if not self.is_managed(url):
            logger.debug("inline_media_register_ignored url=%s", url)
            return None

        # Content-addressed stores can hand back a URL whose TEMP row just expired.
        await self._purge_best_effort(session, keep_url=url)
        await inline_media_repo.upsert_temp_asset(
            session,
            url=url,
            tenant_id=tenant_id,
            uploaded_by_user_id=uploaded_by_user_id,
            scope=InlineMediaScope(scope).value,
            expires_at=self.temp_expiry(),
        )
        await session.commit()
        increment_counter("inline_media_registered_total")
        return await inline_media_repo.get_asset_by_url(session, url)

    async def sync_entity_images(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        uploaded_by_user_id: str,
        scope: InlineMediaScope | str,
        entity_type: InlineMediaEntityType | str,
        entity_id: str,
        next_body_html: str | None,
        previous_body_html: str | None = None,
        delete_removed_physically: bool = False,
    ) -> SyncResult:
        await self._purge_best_effort(session)

        entity_type_value = InlineMediaEntityType(entity_type).value
        next_urls = self.extract(next_body_html)
        linked = await inline_media_repo.list_linked_assets(
            session, entity_type=entity_type_value, entity_id=entity_id
        )
        linked_urls = {asset.url for asset in linked}
        # The registry is authoritative when the caller did not keep the previous body.
        if previous_body_html is None:
            previous_urls = linked_urls
        else:
            previous_urls = set(self.extract(previous_body_html)) | linked_urls

        removed = await self._removable_urls(
            session,
            previous_urls - next_urls,
            entity_type=entity_type_value,
            entity_id=entity_id,
        )
        if removed:
            await self._delete_physically(removed, DeletionPolicy.strict_if(delete_removed_physically))
            await inline_media_repo.delete_entity_assets(
                session,
                entity_type=entity_type_value,
                entity_id=entity_id,
                urls=removed,
            )

        for url in sorted(next_urls):
            await inline_media_repo.upsert_linked_asset(
                session,
                url=url,
                tenant_id=tenant_id,
                uploaded_by_user_id=uploaded_by_user_id,
                scope=InlineMediaScope(scope).value,
                entity_type=entity_type_value,
                entity_id=entity_id,
            )
        await session.commit()

        increment_counter("inline_media_linked_total", len(next_urls))
        increment_counter("inline_media_unlinked_total", len(removed))
        logger.info(
            "inline_media_synced entity_type=%s entity_id=%s linked=%d removed=%d physical=%s",
            entity_type_value,
            entity_id,
            len(next_urls),
            len(removed),
            delete_removed_physically,
        )
        return SyncResult(linked=frozenset(next_urls), removed=frozenset(removed))

    async def remove_entity_images(
        self,
        session: AsyncSession,
        *,
        entity_type: InlineMediaEntityType | str,
        entity_id: str,
        delete_physically: bool,
    ) -> list[str]:
        entity_type_value = InlineMediaEntityType(entity_type).value
        linked = await inline_media_repo.list_linked_assets(
            session, entity_type=entity_type_value, entity_id=entity_id
        )
        if not linked:
            return []

        urls = [asset.url for asset in linked]
        # Storage first: a failure leaves every row in place so the delete can be retried.
        await self._delete_physically(urls, DeletionPolicy.strict_if(delete_physically))
        await inline_media_repo.delete_assets_by_ids(session, [asset.id for asset in linked])
        await session.commit()

        increment_counter("inline_media_unlinked_total", len(urls))
        logger.info(
            "inline_media_removed entity_type=%s entity_id=%s count=%d physical=%s",
            entity_type_value,
            entity_id,
            len(urls),
            delete_physically,
        )
        return urls

    async def purge_expired_temp_uploads(
        self,
        session: AsyncSession,
        limit: int | None = None,
        *,
        keep_url: str | None = None,
    ) -> PurgeResult:
        batch_size = self._config.purge_batch_size if limit is None else int(limit)
        if batch_size <= 0:
            return PurgeResult(purged=(), failed=())
        expired = await inline_media_repo.list_expired_temp_assets(
            session, now=self._clock(), limit=batch_size, exclude_url=keep_url
        )
        if not expired:
            return PurgeResult(purged=(), failed=())

        deleted_urls = set(
            await self._delete_physically([asset.url for asset in expired], DeletionPolicy.BEST_EFFORT)
        )
        purged_ids = [asset.id for asset in expired if asset.url in deleted_urls]
        await inline_media_repo.delete_assets_by_ids(session, purged_ids)
        await session.commit()

        purged = tuple(asset.url for asset in expired if asset.url in deleted_urls)
        failed = tuple(asset.url for asset in expired if asset.url not in deleted_urls)
        increment_counter("inline_media_purged_total", len(purged))
        if failed:
            increment_counter("inline_media_purge_skipped_total", len(failed))
        logger.info("inline_media_purge purged=%d skipped=%d", len(purged), len(failed))
        return PurgeResult(purged=purged, failed=failed)

    async def _purge_best_effort(self, session: AsyncSession, *, keep_url: str | None = None) -> None:
        # The piggybacked sweep must never fail the lifecycle call that triggered it.
        try:
            await self.purge_expired_temp_uploads(session, keep_url=keep_url)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("inline_media_purge_failed", exc_info=exc)

    async def _removable_urls(
        self,
        session: AsyncSession,
        candidates: Iterable[str],
        *,
        entity_type: str,
        entity_id: str,
    ) -> list[str]:
        # A URL now owned by a draft or by another entity is not ours to delete.
        candidate_list = sorted(candidates)
        rows = await inline_media_repo.get_assets_by_urls(session, candidate_list)
        removable: list[str] = []
        for url in candidate_list:
            row = rows.get(url)
            if row is None or (row.entity_type == entity_type and row.entity_id == entity_id):
                removable.append(url)
        return removable

    async def _delete_physically(self, urls: list[str], policy: DeletionPolicy) -> list[str]:
        """Delete objects from storage and return the URLs that are gone.

        STRICT raises on the first failure; BEST_EFFORT logs and continues.
        Deletes run one URL at a time to keep load on the media service
        bounded and failure reporting simple.
        """
        if policy is DeletionPolicy.DEFER or not urls:
            return list(urls)

        if self._storage is None:
            if not self._config.is_production:
                # Local and test environments run without a media service.
                return list(urls)
            if policy is DeletionPolicy.STRICT:
                raise StorageUnavailableError("media service URL not configured")
            logger.warning("inline_media_purge_skipped reason=storage_unconfigured count=%d", len(urls))
            return []

        deleted: list[str] = []
        for url in urls:
            try:
                await self._storage.delete_image(url)
            except MediaStorageError as exc:
                if policy is DeletionPolicy.STRICT:
                    raise
                logger.warning("inline_media_purge_skipped url=%s error=%s", url, exc)
                continue
            deleted.append(url)
        return deleted


def build_inline_media_service(
    settings: Settings | None = None,
    *,
    storage: StorageClient | None = None,
) -> InlineMediaService:
    # Wire the service from settings; an explicit storage client wins over the configured one.
    settings = settings or get_settings()
    return InlineMediaService(
        InlineMediaConfig.from_settings(settings),
        storage=storage if storage is not None else build_media_client(settings),
    )
