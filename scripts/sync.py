"""Sync script: push goals from the local cache to the remote goal store.

Lists every cached page through the sync engine, which reconciles it with
the store and migrates goals the store has not seen yet.

Usage:
    # Dry run (show which goals still need pushing)
    python scripts/sync.py --cache ~/.goalsync/cache.json --dry-run

    # Real sync of every page in the cache
    python scripts/sync.py --cache ~/.goalsync/cache.json --base-url http://localhost:8000

    # Only some pages
    python scripts/sync.py --page-id P1 --page-id P2
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from goalsync.config import settings
from goalsync.logging_config import configure_logging
from goalsync.services.cache import LocalGoalCache
from goalsync.services.remote_client import RemoteGoalClient
from goalsync.services.sync_engine import GoalSyncEngine, SyncMode


class CacheSync:
    """Reconcile cached goals with the remote store, page by page."""

    def __init__(
        self,
        cache_path: Path,
        base_url: str,
        token: Optional[str] = None,
        page_ids: Optional[list[str]] = None,
        dry_run: bool = False,
    ):
        """Initialize sync.

        Args:
            cache_path: Path to the local cache file
            base_url: Goal store URL
            token: Optional bearer token for the store
            page_ids: Pages to sync (default: every page in the cache)
            dry_run: If True, don't contact the store, just show what would be pushed
        """
        self.cache = LocalGoalCache.from_path(cache_path)
        self.base_url = base_url
        self.token = token
        self.page_ids = page_ids
        self.dry_run = dry_run

        # Stats
        self.stats = {
            "pages": 0,
            "pending_before": 0,
            "pending_after": 0,
            "remote_goals": 0,
            "errors": 0,
        }

    def _pages(self, goals) -> list[str]:
        if self.page_ids:
            return self.page_ids
        return sorted({goal.page_id for goal in goals if goal.page_id})

    async def sync_pages(self, engine: GoalSyncEngine) -> None:
        """List each page through the engine and wait for migrations."""
        print("\n=== Syncing Pages ===")
        for page_id in self._pages(await engine.list_goals()):
            goals = await engine.list_goals(page_id=page_id)
            await engine.drain()
            self.stats["pages"] += 1
            if engine.mode is SyncMode.LOCAL_ONLY:
                print(f"  {page_id}: store unavailable, kept {len(goals)} goals locally")
                self.stats["errors"] += 1
                break
            print(f"  {page_id}: {len(goals)} goals")
            self.stats["remote_goals"] += len(goals)

        self.stats["pending_after"] = sum(1 for goal in self.cache.load_all() if goal.is_dirty)

    def show_pending(self, goals) -> None:
        print("\n=== Pending Goals ===")
        for page_id in self._pages(goals):
            for goal in goals:
                if goal.page_id == page_id and goal.is_dirty:
                    state = "new" if goal.is_pending else "edited"
                    print(f"  {page_id}: {goal.title} ({state})")

    async def run(self) -> None:
        """Run sync."""
        mode = "DRY RUN" if self.dry_run else "SYNC"
        print(f"=== {mode} MODE ===")
        print(f"Cache: {self.cache.storage.path}")
        print(f"Store: {self.base_url}")

        goals = self.cache.load_all()
        self.stats["pending_before"] = sum(1 for goal in goals if goal.is_dirty)

        if self.dry_run:
            self.show_pending(goals)
        else:
            async with RemoteGoalClient(base_url=self.base_url, token=self.token) as client:
                engine = GoalSyncEngine(self.cache, client)
                await self.sync_pages(engine)

        # Print summary
        print("\n=== Sync Summary ===")
        print(f"Pages synced: {self.stats['pages']}")
        print(f"Goals on store: {self.stats['remote_goals']}")
        print(f"Pending before: {self.stats['pending_before']}")
        if not self.dry_run:
            print(f"Pending after: {self.stats['pending_after']}")
        print(f"Errors: {self.stats['errors']}")

        if self.dry_run:
            print("\n(Dry run - no changes made)")


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Push cached goals to the remote goal store")
    parser.add_argument(
        "--cache",
        default=settings.cache_path,
        help="Path to the local cache file",
    )
    parser.add_argument(
        "--base-url",
        default=settings.remote_base_url,
        help="Goal store URL",
    )
    parser.add_argument(
        "--token",
        default=settings.remote_token,
        help="Bearer token for the goal store",
    )
    parser.add_argument(
        "--page-id",
        action="append",
        dest="page_ids",
        help="Page to sync (repeatable; default: all cached pages)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be synced without making changes",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Log level (DEBUG, INFO, WARNING, ...)",
    )

    args = parser.parse_args()
    configure_logging(args.log_level)

    cache_path = Path(args.cache).expanduser()
    if not cache_path.exists():
        print(f"Error: Cache file does not exist: {cache_path}")
        sys.exit(1)

    sync = CacheSync(
        cache_path=cache_path,
        base_url=args.base_url,
        token=args.token,
        page_ids=args.page_ids,
        dry_run=args.dry_run,
    )

    await sync.run()


if __name__ == "__main__":
    asyncio.run(main())
