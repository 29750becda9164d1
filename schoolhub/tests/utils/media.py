from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from schoolhub.core.errors import StorageDeleteFailedError
from schoolhub.domain.models import UploadKind
from schoolhub.services.media.client import UploadedMedia


MEDIA_BASE_URL = "https://cdn.schoolhub.test/media"


def media_url(name: str) -> str:
    return f"{MEDIA_BASE_URL}/inline/{name}.webp"


def img(*urls: str) -> str:
    # Build a rich-text body embedding each URL once, in order.
    return "".join(f'<p><img src="{url}" alt="inline"></p>' for url in urls)


class FakeStorage:
    """Recording storage client; URLs in ``fail_urls`` fail to delete."""

    def __init__(self) -> None:
        self.uploads: list[tuple[str, int, str]] = []
        self.delete_calls: list[str] = []
        self.deleted: list[str] = []
        self.fail_urls: set[str] = set()

    async def upload_image(self, kind: UploadKind | str, content: bytes, content_type: str) -> UploadedMedia:
        url = media_url(uuid4().hex)
        self.uploads.append((UploadKind(kind).value, len(content), content_type))
        return UploadedMedia(url=url, size=len(content), width=None, height=None, mime_type=content_type)

    async def delete_image(self, url: str) -> None:
        self.delete_calls.append(url)
        if url in self.fail_urls:
            raise StorageDeleteFailedError(url, "media service returned 500", status_code=500)
        self.deleted.append(url)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)
