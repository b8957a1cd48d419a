#!/usr/bin/env python3
"""Inspect or cancel an in-flight CSV import job through its cursor store keys."""

from __future__ import annotations

import argparse
import asyncio
import json

from redis.asyncio import Redis

from shortlinks.core.config import get_settings
from shortlinks.services.cursor_store import CursorStore


async def read_status(store: CursorStore) -> dict[str, object]:
    failed = await store.list_failed()
    return {
        "cursor": await store.get_cursor(),
        "created": await store.get_created(),
        "failed": len(failed),
        "domains": await store.list_domains(),
    }


async def cancel(store: CursorStore) -> list[str]:
    """Delete the job's keys. A continuation message already in the queue must be dropped there too."""
    results = await store.clear()
    return [key for key, error in zip(store.keys, results) if error is None]


def render_status(workspace_id: str, job_id: str, status: dict[str, object]) -> str:
    return json.dumps({"workspace_id": workspace_id, "job_id": job_id, **status}, indent=2, sort_keys=True)


async def _main(args: argparse.Namespace) -> int:
    redis = Redis.from_url(args.redis_url or get_settings().redis_url, decode_responses=True)
    store = CursorStore(redis, workspace_id=args.workspace_id, job_id=args.job_id)
    try:
        if args.command == "status":
            print(render_status(args.workspace_id, args.job_id, await read_status(store)))
        else:
            for key in await cancel(store):
                print(f"deleted={key}")
    finally:
        await redis.aclose()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect or cancel a CSV import job.")
    parser.add_argument("command", choices=["status", "cancel"])
    parser.add_argument("--workspace-id", required=True, help="Workspace that owns the import")
    parser.add_argument("--job-id", required=True, help="Import job id from the queue payload")
    parser.add_argument("--redis-url", default=None, help="Overrides SL_REDIS_URL")
    return asyncio.run(_main(parser.parse_args()))


if __name__ == "__main__":
    raise SystemExit(main())
