#!/usr/bin/env python3
"""Operator script — inspect and maintain the imagery cache tables.

Usage:
  python scripts/cache_maintenance.py stats
  python scripts/cache_maintenance.py sweep
  python scripts/cache_maintenance.py clear archives|feasibility|orders

Reads DATABASE_URL (and the other settings) from the environment / .env.
"""

import argparse
import asyncio
import json
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def ok(msg: str) -> None:
    print(f"  ✅ {msg}")


def fail(msg: str) -> None:
    print(f"  ❌ {msg}")


async def run(command: str, kind: str | None) -> int:
    from imagery_cache.config import settings
    from imagery_cache.database import check_database, close_db, create_engine, create_session_factory
    from imagery_cache.errors import StorageUnavailableError
    from imagery_cache.services.store import CacheStore

    engine = create_engine(settings)
    try:
        if not await check_database(engine):
            fail("Database unreachable")
            return 1

        store = CacheStore(create_session_factory(engine), settings)
        try:
            if command == "stats":
                stats = await store.stats()
                print(json.dumps({k: v.model_dump(mode="json") for k, v in stats.items()}, indent=2))
            elif command == "sweep":
                removed = await store.sweep_expired()
                ok(f"Expired entries removed: {removed}")
            elif command == "clear":
                removed = await store.clear_kind(kind or "")
                ok(f"Cleared {removed} {kind} entries")
        except (StorageUnavailableError, KeyError) as e:
            fail(str(e))
            return 1
        finally:
            await store.close()
    finally:
        await close_db(engine)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("command", choices=["stats", "sweep", "clear"])
    parser.add_argument("kind", nargs="?", choices=["archives", "feasibility", "orders"])
    args = parser.parse_args()
    if args.command == "clear" and not args.kind:
        parser.error("clear needs a cache kind")
    return asyncio.run(run(args.command, args.kind))


if __name__ == "__main__":
    sys.exit(main())
