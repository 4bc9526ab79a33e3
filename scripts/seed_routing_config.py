#!/usr/bin/env python3
"""
Write the built-in routing config (model pricing, capability tags, fallback
chains, cost strategies, complexity configs) into the routing database.

By default only empty tables are seeded.  --overwrite replaces existing
built-ins with the shipped versions (operator-created entries are kept).

Usage:
    python scripts/seed_routing_config.py [--db data/routing.db] [--overwrite]
"""

import argparse
import asyncio
import pathlib
import sys

_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from botrouter import database  # noqa: E402
from botrouter.config import load_settings  # noqa: E402


async def seed(db_path: pathlib.Path, overwrite: bool) -> dict[str, int]:
    database.DB_PATH = db_path
    await database.init_db()
    return await database.seed_defaults(overwrite=overwrite)


def main() -> None:
    settings = load_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--db", type=pathlib.Path, default=settings.db_path,
                        help=f"SQLite file (default: {settings.db_path})")
    parser.add_argument("--overwrite", action="store_true",
                        help="Replace existing entries that share a built-in key.")
    args = parser.parse_args()

    print(f"Seeding {args.db} (overwrite={args.overwrite}) ...")
    counts = asyncio.run(seed(args.db, args.overwrite))

    print()
    for table, written in counts.items():
        note = "" if written else "  (already populated, skipped)"
        print(f"  {table:28s} {written:3d}{note}")


if __name__ == "__main__":
    main()
