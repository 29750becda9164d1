from __future__ import annotations

from dataclasses import dataclass

from schoolhub.core.config import LEGACY_INLINE_MEDIA_SEGMENT, InlineMediaConfig


@dataclass(frozen=True)
class ManagedUrlClassifier:
    """Tell URLs served by our own media store apart from external ones.

    With a public base URL configured, a URL is managed when it starts with
    ``<base>/``. Without one, older deployments are recognised by the legacy
    inline-image path segment. Anything else is foreign and is never tracked,
    extracted or deleted.
    """

    public_base_url: str | None = None
    legacy_path_segment: str = LEGACY_INLINE_MEDIA_SEGMENT

    @classmethod
    def from_config(cls, config: InlineMediaConfig) -> "ManagedUrlClassifier":
        return cls(
            public_base_url=config.public_base_url,
            legacy_path_segment=config.legacy_path_segment,
        )

    def is_managed(self, url: str | None) -> bool:
        if not url:
            return False
        candidate = url.strip()
        if not candidate:
            return False
        base = (self.public_base_url or "").strip().rstrip("/")
        if base:
            return candidate.startswith(f"{base}/")
        return self.legacy_path_segment in candidate
