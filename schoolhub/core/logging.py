from __future__ import annotations

import logging

from schoolhub.core.config import get_settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once per process; API and scripts share the format.
    global _configured
    resolved = (level or get_settings().log_level or "INFO").upper()
    if _configured:
        logging.getLogger().setLevel(resolved)
        return
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # Keep per-request httpx lines out of INFO logs; failures are logged by callers.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
