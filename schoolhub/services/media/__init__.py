from schoolhub.services.media.client import (
    MediaClient,
    StorageClient,
    UploadedMedia,
    build_media_client,
)
from schoolhub.services.media.extractor import (
    IMG_SRC_PATTERN,
    InlineImageExtractor,
    ReferenceExtractor,
)
from schoolhub.services.media.inline_media import (
    DeletionPolicy,
    InlineMediaService,
    PurgeResult,
    SyncResult,
    build_inline_media_service,
)
from schoolhub.services.media.urls import ManagedUrlClassifier

__all__ = [
    "MediaClient",
    "StorageClient",
    "UploadedMedia",
    "build_media_client",
    "IMG_SRC_PATTERN",
    "InlineImageExtractor",
    "ReferenceExtractor",
    "DeletionPolicy",
    "InlineMediaService",
    "PurgeResult",
    "SyncResult",
    "build_inline_media_service",
    "ManagedUrlClassifier",
]
