from __future__ import annotations

from typing import Any

from schoolhub.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response("Bad request", code="BAD_REQUEST", message="Bad request"),
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="X-Tenant-Id and X-User-Id headers are required"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Insufficient role for this operation"),
    404: _response("Not found", code="NOT_FOUND", message="Resource not found"),
    422: _response(
        "Validation error",
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": ["body", "title"], "msg": "Field required", "type": "missing"}]},
    ),
    500: _response("Internal error", code="INTERNAL_ERROR", message="Internal server error"),
    502: _response(
        "Media storage failure",
        code="MEDIA_STORAGE_FAILED",
        message="Unable to delete media object",
        details={"url": "https://cdn.example.com/feed/abc.webp", "upstream_status": 500},
    ),
    503: _response(
        "Media storage unavailable",
        code="MEDIA_STORAGE_UNAVAILABLE",
        message="Media storage is not configured",
    ),
}

UPLOAD_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    413: _response("Upload too large", code="MEDIA_FILE_TOO_LARGE", message="Image exceeds the upload limit"),
    415: _response(
        "Unsupported image type",
        code="MEDIA_UNSUPPORTED_TYPE",
        message="Only JPEG, PNG or WebP images are accepted",
    ),
}
