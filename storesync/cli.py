"""
Operator CLI.

Usage:
    storesync sync <connection_id> [--reason manual]
    storesync detect-gaps <brand_id> [--lookback-days 30]
    storesync backfill <brand_id> [--mode standard|deep|comprehensive]
    storesync deep-scan <brand_id>
    storesync status <brand_id> [--connection-id ID]
    storesync serve [--host 0.0.0.0] [--port 8000]
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from storesync.backfill import RefreshMode
from storesync.config import get_settings
from storesync.db.client import close_db, close_db_pool, init_db
from storesync.kernel.errors import StoreSyncError
from storesync.kernel.logging import configure_logging
from storesync.ledger import compute_sync_status
from storesync.services import Services, build_services
from storesync.sync.triggers import trigger_sync


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storesync", description="Commerce bulk-export sync operations")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Enqueue a sync for a connection")
    sync.add_argument("connection_id")
    sync.add_argument("--reason", default="manual")

    gaps = commands.add_parser("detect-gaps", help="Report missing and stale days for a brand")
    gaps.add_argument("brand_id")
    gaps.add_argument("--lookback-days", type=int, default=None)

    backfill = commands.add_parser("backfill", help="Enqueue a detector scan with repairs")
    backfill.add_argument("brand_id")
    backfill.add_argument(
        "--mode",
        choices=[mode.value for mode in RefreshMode],
        default=RefreshMode.STANDARD.value,
    )

    deep = commands.add_parser("deep-scan", help="One-time scan over the long lookback window")
    deep.add_argument("brand_id")

    status = commands.add_parser("status", help="Show the brand's sync status and milestones")
    status.add_argument("brand_id")
    status.add_argument("--connection-id", default=None)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    return parser


async def run_command(args: argparse.Namespace, services: Services) -> dict[str, Any]:
    if args.command == "sync":
        job_id = await trigger_sync(
            services.queue,
            services.connections,
            args.connection_id,
            reason=args.reason,
            settings=services.settings,
        )
        return {"job_id": job_id}

    if args.command == "detect-gaps":
        report: dict[str, Any] = {}
        for platform, result in (await services.detector.detect_all_gaps(args.brand_id, args.lookback_days)).items():
            stale = await services.detector.detect_stale_days(args.brand_id, platform, args.lookback_days)
            report[platform] = {"gaps": result.to_dict(), "stale": stale.to_dict()}
        return report

    if args.command == "backfill":
        return {"job_ids": await services.backfill.request_refresh(args.brand_id, args.mode)}

    if args.command == "deep-scan":
        return {"job_ids": await services.backfill.deep_scan(args.brand_id)}

    if args.command == "status":
        jobs = await services.ledger.list_for_brand(args.brand_id, connection_id=args.connection_id)
        return {
            **compute_sync_status(jobs).to_dict(),
            "jobs": [job.to_dict() for job in jobs],
        }

    raise ValueError(f"Unknown command: {args.command}")


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    await init_db()
    services = build_services(settings)
    try:
        output = await run_command(args, services)
    except StoreSyncError as exc:
        print(json.dumps(exc.to_public_dict(), indent=2))
        return 1
    finally:
        await services.aclose()
        await close_db_pool()
        await close_db()
    print(json.dumps(output, indent=2, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("storesync.api.main:app", host=args.host, port=args.port)
        return 0

    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())
