from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from schoolhub.core.config import InlineMediaConfig
from schoolhub.core.errors import StorageDeleteFailedError, StorageUnavailableError
from schoolhub.domain.models import (
    InlineMediaAsset,
    InlineMediaEntityType,
    InlineMediaScope,
    InlineMediaStatus,
)
from schoolhub.persistence.repos import inline_media as inline_media_repo
from schoolhub.services.media.inline_media import InlineMediaService
from schoolhub.services.telemetry import counters_snapshot
from schoolhub.tests.utils.media import MEDIA_BASE_URL, img, media_url


POST = InlineMediaEntityType.FEED_POST


def _naive(value: datetime) -> datetime:
    # SQLite hands back naive UTC timestamps.
    return value.replace(tzinfo=None)


async def _register(service: InlineMediaService, session, url: str, user_id: str = "u1"):
    return await service.register_temp_upload(
        session,
        tenant_id="t1",
        uploaded_by_user_id=user_id,
        scope=InlineMediaScope.FEED,
        url=url,
    )


async def _sync(
    service: InlineMediaService,
    session,
    entity_id: str,
    next_body: str | None,
    previous_body: str | None = None,
    physical: bool = False,
):
    return await service.sync_entity_images(
        session,
        tenant_id="t1",
        uploaded_by_user_id="u1",
        scope=InlineMediaScope.FEED,
        entity_type=POST,
        entity_id=entity_id,
        next_body_html=next_body,
        previous_body_html=previous_body,
        delete_removed_physically=physical,
    )


async def _row(session, url: str) -> InlineMediaAsset | None:
    return await inline_media_repo.get_asset_by_url(session, url)


async def _row_count(session) -> int:
    result = await session.execute(select(func.count()).select_from(InlineMediaAsset))
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_register_temp_upload_is_idempotent(session, media_service, clock) -> None:
    url = media_url("a")
    first = await _register(media_service, session, url)
    assert first is not None
    assert first.status == InlineMediaStatus.TEMP.value
    assert _naive(first.expires_at) == _naive(clock.now + timedelta(minutes=60))

    clock.advance(minutes=10)
    second = await _register(media_service, session, url, user_id="u2")

    assert await _row_count(session) == 1
    assert second.id == first.id
    assert second.uploaded_by_user_id == "u2"
    # Re-registering refreshes the expiry window.
    assert _naive(second.expires_at) == _naive(clock.now + timedelta(minutes=60))


@pytest.mark.asyncio
async def test_register_ignores_foreign_urls(session, media_service) -> None:
    assert await _register(media_service, session, "https://images.example.org/cat.png") is None
    assert await _register(media_service, session, "   ") is None
    assert await _row_count(session) == 0


@pytest.mark.asyncio
async def test_register_never_demotes_a_linked_row(session, media_service) -> None:
    url = media_url("a")
    await _register(media_service, session, url)
    await _sync(media_service, session, "p1", img(url))

    row = await _register(media_service, session, url)

    assert row.status == InlineMediaStatus.LINKED.value
    assert row.entity_id == "p1"
    assert row.expires_at is None


@pytest.mark.asyncio
async def test_saving_content_links_referenced_uploads_only(session, media_service) -> None:
    a, b = media_url("a"), media_url("b")
    await _register(media_service, session, a)
    await _register(media_service, session, b)

    result = await _sync(media_service, session, "p1", img(a))

    assert result.linked == frozenset({a})
    assert result.removed == frozenset()
    linked = await _row(session, a)
    assert linked.status == InlineMediaStatus.LINKED.value
    assert linked.entity_type == POST.value
    assert linked.entity_id == "p1"
    assert linked.expires_at is None
    untouched = await _row(session, b)
    assert untouched.status == InlineMediaStatus.TEMP.value
    assert untouched.entity_id is None


@pytest.mark.asyncio
async def test_sync_links_unregistered_managed_urls(session, media_service) -> None:
    a = media_url("pasted")
    await _sync(media_service, session, "p1", f'<img src="{a}"><img src="https://images.example.org/x.png">')

    assert (await _row(session, a)).status == InlineMediaStatus.LINKED.value
    assert await _row_count(session) == 1


@pytest.mark.asyncio
async def test_edit_replacing_an_image_defers_physical_delete(session, media_service, storage) -> None:
    a, c = media_url("a"), media_url("c")
    await _register(media_service, session, a)
    await _sync(media_service, session, "p1", img(a))
    await _register(media_service, session, c)

    result = await _sync(media_service, session, "p1", img(c), previous_body=img(a))

    assert result.removed == frozenset({a})
    assert await _row(session, a) is None
    assert (await _row(session, c)).status == InlineMediaStatus.LINKED.value
    assert storage.delete_calls == []


@pytest.mark.asyncio
async def test_edit_with_physical_delete_removes_objects(session, media_service, storage) -> None:
    a, c = media_url("a"), media_url("c")
    await _sync(media_service, session, "p1", img(a))

    await _sync(media_service, session, "p1", img(c), previous_body=img(a), physical=True)

    assert storage.delete_calls == [a]
    assert await _row(session, a) is None


@pytest.mark.asyncio
async def test_edit_physical_delete_failure_leaves_registry_untouched(session, media_service, storage) -> None:
    a, c = media_url("a"), media_url("c")
    await _sync(media_service, session, "p1", img(a))
    storage.fail_urls.add(a)

    with pytest.raises(StorageDeleteFailedError):
        await _sync(media_service, session, "p1", img(c), previous_body=img(a), physical=True)
    await session.rollback()

    assert (await _row(session, a)).entity_id == "p1"
    assert await _row(session, c) is None


@pytest.mark.asyncio
async def test_sync_without_previous_body_reads_registry(session, media_service) -> None:
    a, b = media_url("a"), media_url("b")
    await _sync(media_service, session, "p1", img(a, b))

    result = await _sync(media_service, session, "p1", img(b))

    assert result.removed == frozenset({a})
    assert await _row(session, a) is None
    assert (await _row(session, b)).entity_id == "p1"


@pytest.mark.asyncio
async def test_sync_with_previous_body_also_drops_stale_registry_links(session, media_service) -> None:
    a, b, c = media_url("a"), media_url("b"), media_url("c")
    await _sync(media_service, session, "p1", img(a, b))

    # The caller's previous body lost track of b; the registry still knows it.
    result = await _sync(media_service, session, "p1", img(c), previous_body=img(a))

    assert result.removed == frozenset({a, b})
    assert result.linked == frozenset({c})
    assert await _row(session, b) is None


@pytest.mark.asyncio
async def test_sync_to_empty_body_forgets_everything(session, media_service) -> None:
    a, b = media_url("a"), media_url("b")
    await _sync(media_service, session, "p1", img(a, b))

    result = await _sync(media_service, session, "p1", "")

    assert result.linked == frozenset()
    assert result.removed == frozenset({a, b})
    assert await _row_count(session) == 0


@pytest.mark.asyncio
async def test_sync_never_touches_other_entities(session, media_service, storage) -> None:
    a, b = media_url("a"), media_url("b")
    await _sync(media_service, session, "p1", img(a))
    await _sync(media_service, session, "p2", img(b))

    # A stale previous body claims b, but b belongs to p2.
    result = await _sync(media_service, session, "p1", "", previous_body=img(a, b), physical=True)

    assert result.removed == frozenset({a})
    assert storage.delete_calls == [a]
    other = await _row(session, b)
    assert other.entity_id == "p2"
    assert other.status == InlineMediaStatus.LINKED.value


@pytest.mark.asyncio
async def test_sync_skips_temp_rows_named_by_previous_body(session, media_service, storage) -> None:
    a = media_url("a")
    await _register(media_service, session, a)

    result = await _sync(media_service, session, "p1", "", previous_body=img(a), physical=True)

    assert result.removed == frozenset()
    assert storage.delete_calls == []
    assert (await _row(session, a)).status == InlineMediaStatus.TEMP.value


@pytest.mark.asyncio
async def test_linking_an_image_elsewhere_rebinds_it(session, media_service) -> None:
    a = media_url("a")
    await _sync(media_service, session, "p1", img(a))

    await _sync(media_service, session, "p2", img(a))

    row = await _row(session, a)
    assert row.status == InlineMediaStatus.LINKED.value
    assert row.entity_id == "p2"
    assert await inline_media_repo.list_linked_assets(session, entity_type=POST.value, entity_id="p1") == []


@pytest.mark.asyncio
async def test_remove_entity_images_deletes_objects_then_rows(session, media_service, storage) -> None:
    a, b, c = media_url("a"), media_url("b"), media_url("c")
    await _sync(media_service, session, "p1", img(b, a))
    await _sync(media_service, session, "p2", img(c))

    removed = await media_service.remove_entity_images(
        session, entity_type=POST, entity_id="p1", delete_physically=True
    )

    assert removed == [a, b]
    assert storage.delete_calls == [a, b]
    assert await _row(session, a) is None
    assert await _row(session, b) is None
    assert (await _row(session, c)).entity_id == "p2"


@pytest.mark.asyncio
async def test_remove_entity_images_failure_keeps_every_row(session, media_service, storage) -> None:
    a, b = media_url("a"), media_url("b")
    await _sync(media_service, session, "p1", img(a, b))
    storage.fail_urls.add(b)

    with pytest.raises(StorageDeleteFailedError) as exc_info:
        await media_service.remove_entity_images(
            session, entity_type=POST, entity_id="p1", delete_physically=True
        )

    assert exc_info.value.url == b
    assert storage.delete_calls == [a, b]
    assert await _row(session, a) is not None
    assert await _row(session, b) is not None


@pytest.mark.asyncio
async def test_remove_entity_images_without_physical_delete(session, media_service, storage) -> None:
    a = media_url("a")
    await _sync(media_service, session, "p1", img(a))

    removed = await media_service.remove_entity_images(
        session, entity_type=POST, entity_id="p1", delete_physically=False
    )

    assert removed == [a]
    assert storage.delete_calls == []
    assert await _row_count(session) == 0


@pytest.mark.asyncio
async def test_remove_entity_images_with_nothing_linked(session, media_service, storage) -> None:
    removed = await media_service.remove_entity_images(
        session, entity_type=POST, entity_id="missing", delete_physically=True
    )
    assert removed == []
    assert storage.delete_calls == []


@pytest.mark.asyncio
async def test_expired_uploads_are_purged_on_next_registration(session, media_service, storage, clock) -> None:
    stale, fresh = media_url("stale"), media_url("fresh")
    await _register(media_service, session, stale)
    clock.advance(minutes=61)

    await _register(media_service, session, fresh)

    assert await _row(session, stale) is None
    assert storage.deleted == [stale]
    assert (await _row(session, fresh)).status == InlineMediaStatus.TEMP.value
    assert counters_snapshot()["inline_media_purged_total"] == 1


@pytest.mark.asyncio
async def test_upload_is_purge_eligible_exactly_at_expiry(session, media_service, clock) -> None:
    url = media_url("a")
    await _register(media_service, session, url)

    clock.advance(minutes=59)
    early = await media_service.purge_expired_temp_uploads(session)
    assert early.purged == ()
    assert await _row(session, url) is not None

    clock.advance(minutes=1)
    result = await media_service.purge_expired_temp_uploads(session)
    assert result.purged == (url,)
    assert await _row(session, url) is None


@pytest.mark.asyncio
async def test_purge_skips_failed_deletes_and_keeps_their_rows(session, media_service, storage, clock) -> None:
    a, b = media_url("a"), media_url("b")
    await _register(media_service, session, a)
    clock.advance(seconds=1)
    await _register(media_service, session, b)
    storage.fail_urls.add(a)
    clock.advance(minutes=90)

    result = await media_service.purge_expired_temp_uploads(session)

    assert result.purged == (b,)
    assert result.failed == (a,)
    assert await _row(session, a) is not None
    assert await _row(session, b) is None
    counters = counters_snapshot()
    assert counters["inline_media_purge_skipped_total"] == 1


@pytest.mark.asyncio
async def test_purge_respects_batch_limit_oldest_first(session, media_service, storage, clock) -> None:
    urls = [media_url(name) for name in ("first", "second", "third")]
    for url in urls:
        await _register(media_service, session, url)
        clock.advance(minutes=1)
    clock.advance(minutes=120)

    result = await media_service.purge_expired_temp_uploads(session, limit=2)

    assert result.purged == tuple(urls[:2])
    assert await _row(session, urls[2]) is not None


@pytest.mark.asyncio
async def test_linked_rows_are_never_purged(session, media_service, clock) -> None:
    url = media_url("a")
    await _register(media_service, session, url)
    await _sync(media_service, session, "p1", img(url))
    clock.advance(days=3)

    result = await media_service.purge_expired_temp_uploads(session)

    assert result.purged == ()
    assert (await _row(session, url)).status == InlineMediaStatus.LINKED.value


@pytest.mark.asyncio
async def test_purge_database_failure_does_not_fail_registration(session, media_service, monkeypatch) -> None:
    async def _broken(*_args, **_kwargs):
        raise SQLAlchemyError("sweep query failed")

    monkeypatch.setattr(inline_media_repo, "list_expired_temp_assets", _broken)

    row = await _register(media_service, session, media_url("a"))

    assert row is not None
    assert row.status == InlineMediaStatus.TEMP.value


@pytest.mark.asyncio
async def test_missing_storage_in_production_blocks_physical_delete(session, clock) -> None:
    config = InlineMediaConfig(public_base_url=MEDIA_BASE_URL, temp_ttl_minutes=60, is_production=True)
    service = InlineMediaService(config, storage=None, clock=clock)
    a = media_url("a")
    await _sync(service, session, "p1", img(a))

    with pytest.raises(StorageUnavailableError):
        await service.remove_entity_images(session, entity_type=POST, entity_id="p1", delete_physically=True)

    assert await _row(session, a) is not None


@pytest.mark.asyncio
async def test_missing_storage_in_production_leaves_expired_rows(session, clock) -> None:
    config = InlineMediaConfig(public_base_url=MEDIA_BASE_URL, temp_ttl_minutes=60, is_production=True)
    service = InlineMediaService(config, storage=None, clock=clock)
    a = media_url("a")
    await _register(service, session, a)
    clock.advance(hours=2)

    result = await service.purge_expired_temp_uploads(session)

    assert result.purged == ()
    assert result.failed == (a,)
    assert await _row(session, a) is not None


@pytest.mark.asyncio
async def test_missing_storage_outside_production_is_a_no_op(session, clock) -> None:
    config = InlineMediaConfig(public_base_url=MEDIA_BASE_URL, temp_ttl_minutes=60, is_production=False)
    service = InlineMediaService(config, storage=None, clock=clock)
    a, stale = media_url("a"), media_url("stale")
    await _sync(service, session, "p1", img(a))
    await _register(service, session, stale)
    clock.advance(hours=2)

    removed = await service.remove_entity_images(session, entity_type=POST, entity_id="p1", delete_physically=True)
    purge = await service.purge_expired_temp_uploads(session)

    assert removed == [a]
    assert purge.purged == (stale,)
    assert await _row_count(session) == 0


@pytest.mark.asyncio
async def test_purge_with_zero_limit_does_nothing(session, media_service, storage, clock) -> None:
    url = media_url("expired")
    await _register(media_service, session, url)
    clock.advance(minutes=61)

    result = await media_service.purge_expired_temp_uploads(session, limit=0)

    assert result.purged == ()
    assert result.failed == ()
    assert storage.deleted == []
    assert await _row(session, url) is not None


@pytest.mark.asyncio
async def test_reregistering_an_expired_url_keeps_its_object(session, media_service, storage, clock) -> None:
    url = media_url("same-content")
    await _register(media_service, session, url)
    clock.advance(minutes=61)

    row = await _register(media_service, session, url, user_id="u2")

    assert storage.deleted == []
    assert row.status == InlineMediaStatus.TEMP.value
    assert row.uploaded_by_user_id == "u2"
    assert _naive(row.expires_at) == _naive(clock.now + timedelta(minutes=60))
