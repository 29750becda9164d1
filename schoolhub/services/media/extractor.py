from __future__ import annotations

import re
from typing import Protocol

from schoolhub.services.media.urls import ManagedUrlClassifier


# Tag-shape match for <img ... src="..."> only; not an HTML parser.
# The leading \s keeps data-src and similar attributes from matching as src.
IMG_SRC_PATTERN = re.compile(r"""<img\b[^>]*?\ssrc\s*=\s*["']([^"']+)["']""", re.IGNORECASE)


class ReferenceExtractor(Protocol):
    def extract(self, body_html: str | None) -> frozenset[str]: ...


class InlineImageExtractor:
    """Collect managed image URLs embedded in a rich-text body.

    Malformed or truncated markup is tolerated: fragments that do not match
    the tag shape are ignored and no error is raised.
    """

    def __init__(self, classifier: ManagedUrlClassifier) -> None:
        self._classifier = classifier

    @property
    def classifier(self) -> ManagedUrlClassifier:
        return self._classifier

    def extract(self, body_html: str | None) -> frozenset[str]:
        if not body_html:
            return frozenset()
        urls: set[str] = set()
        for match in IMG_SRC_PATTERN.finditer(body_html):
            url = match.group(1).strip()
            if url and self._classifier.is_managed(url):
                urls.add(url)
        return frozenset(urls)
