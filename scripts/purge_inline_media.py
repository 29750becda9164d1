from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone

from schoolhub.core.config import get_settings
from schoolhub.core.logging import configure_logging
from schoolhub.persistence.db import SessionLocal
from schoolhub.persistence.repos import inline_media as inline_media_repo
from schoolhub.services.media.inline_media import build_inline_media_service


async def _run_purge(limit: int | None, batches: int, dry_run: bool) -> None:
    # Reclaim abandoned inline uploads without waiting for the next lifecycle call.
    service = build_inline_media_service(get_settings())
    async with SessionLocal() as session:
        if dry_run:
            expired = await inline_media_repo.list_expired_temp_assets(
                session,
                now=datetime.now(timezone.utc),
                limit=limit or service.config.purge_batch_size,
            )
            print(f"dry_run=true expired_inline_media={len(expired)}")
            return

        purged = 0
        skipped = 0
        for _ in range(max(1, batches)):
            result = await service.purge_expired_temp_uploads(session, limit=limit)
            purged += len(result.purged)
            skipped += len(result.failed)
            # Stop once a batch reclaims nothing; skipped rows would only be retried.
            if not result.purged:
                break
        print(f"purged_inline_media={purged} skipped={skipped}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge expired TEMP inline media uploads")
    parser.add_argument("--limit", type=int, default=None, help="rows per batch (default: settings)")
    parser.add_argument("--batches", type=int, default=1)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(_run_purge(args.limit, args.batches, args.dry_run))


if __name__ == "__main__":
    main()
