from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
import time
from typing import Any, Awaitable, Callable, Protocol

import httpx

from schoolhub.core.config import Settings, get_settings
from schoolhub.core.errors import (
    IntegrationUnavailableError,
    StorageDeleteFailedError,
    StorageUploadFailedError,
)
from schoolhub.domain.models import UploadKind
from schoolhub.services.resilience import CircuitBreaker, RetryPolicy, breaker_redis, retry_async
from schoolhub.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

MEDIA_INTEGRATION = "media.service"
MEDIA_TOKEN_HEADER = "x-media-token"


@dataclass(frozen=True)
class UploadedMedia:
    url: str
    size: int
    width: int | None
    height: int | None
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StorageClient(Protocol):
    async def upload_image(self, kind: UploadKind | str, content: bytes, content_type: str) -> UploadedMedia: ...

    async def delete_image(self, url: str) -> None: ...


class _UpstreamError(Exception):
    # Carries 5xx status so the retry helper treats it as transient.
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, TimeoutError)):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


def _error_message(response: httpx.Response, fallback: str) -> str:
    # The media service answers {"message": str | list[str]} on errors.
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if not isinstance(payload, dict):
        return fallback
    message = payload.get("message")
    if isinstance(message, list):
        return ", ".join(str(item) for item in message) or fallback
    if isinstance(message, str) and message.strip():
        return message
    return fallback


class MediaClient:
    """HTTP client for the internal media service (upload and delete by URL)."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.strip().rstrip("/")
        self._token = token.strip() if token and token.strip() else None
        self._retry_policy = retry_policy
        self._breaker = breaker
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        if self._token:
            return {MEDIA_TOKEN_HEADER: self._token}
        return {}

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=timeout_s, transport=self._transport)

    async def _get_breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            self._breaker = CircuitBreaker(MEDIA_INTEGRATION, redis=await breaker_redis())
        return self._breaker

    async def _guarded(
        self,
        call: Callable[[httpx.AsyncClient], Awaitable[httpx.Response]],
        *,
        policy: RetryPolicy,
    ) -> httpx.Response:
        # Breaker + bounded retries; 4xx answers are returned to the caller untouched.
        breaker = await self._get_breaker()
        await breaker.allow()
        start = time.monotonic()

        async def _attempt() -> httpx.Response:
            async with self._client(policy.timeout_s) as client:
                response = await call(client)
            if response.status_code >= 500:
                raise _UpstreamError(response.status_code, _error_message(response, "media service error"))
            return response

        try:
            response = await retry_async(_attempt, policy=policy, retryable=_retryable, name=MEDIA_INTEGRATION)
        except Exception:
            await breaker.failed()
            record_external_call(
                integration=MEDIA_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise
        await breaker.succeeded()
        record_external_call(
            integration=MEDIA_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.status_code < 400,
        )
        return response

    async def upload_image(self, kind: UploadKind | str, content: bytes, content_type: str) -> UploadedMedia:
        kind_value = UploadKind(kind).value
        # A retried upload would store a second object, so uploads get a single attempt.
        policy = (self._retry_policy or RetryPolicy.from_settings()).single_attempt()

        async def _call(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(
                f"/internal/uploads/{kind_value}",
                files={"file": ("upload", content, content_type)},
                headers=self._headers(),
            )

        try:
            response = await self._guarded(_call, policy=policy)
        except IntegrationUnavailableError:
            raise
        except _UpstreamError as exc:
            raise StorageUploadFailedError(str(exc), status_code=exc.status_code) from exc
        except (httpx.HTTPError, TimeoutError) as exc:
            raise StorageUploadFailedError(f"media upload failed: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            raise StorageUploadFailedError(
                _error_message(response, "Media service upload failed"),
                status_code=response.status_code,
            )
        payload = response.json()
        return UploadedMedia(
            url=str(payload["url"]),
            size=int(payload.get("size") or len(content)),
            width=payload.get("width"),
            height=payload.get("height"),
            mime_type=str(payload.get("mimeType") or content_type),
        )

    async def delete_image(self, url: str) -> None:
        policy = self._retry_policy or RetryPolicy.from_settings()

        async def _call(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(
                "/internal/uploads/delete",
                json={"url": url},
                headers=self._headers(),
            )

        try:
            response = await self._guarded(_call, policy=policy)
        except IntegrationUnavailableError as exc:
            raise StorageDeleteFailedError(url, str(exc)) from exc
        except _UpstreamError as exc:
            raise StorageDeleteFailedError(url, str(exc), status_code=exc.status_code) from exc
        except (httpx.HTTPError, TimeoutError) as exc:
            raise StorageDeleteFailedError(url, f"media delete failed: {exc.__class__.__name__}") from exc

        # An already-missing object is the state we wanted.
        if response.status_code == 404:
            logger.info("media_delete_not_found url=%s", url)
            return
        if response.status_code >= 400:
            raise StorageDeleteFailedError(
                url,
                _error_message(response, "Unable to delete media object"),
                status_code=response.status_code,
            )


def build_media_client(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MediaClient | None:
    # No endpoint means no physical storage; callers decide how strict to be about that.
    settings = settings or get_settings()
    base_url = (settings.media_service_url or "").strip()
    if not base_url:
        return None
    return MediaClient(base_url, token=settings.media_internal_token, transport=transport)
