import argparse
import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

import httpx
from hypercorn.asyncio import serve as hypercorn_serve
from hypercorn.config import Config as HypercornConfig

from api.app import create_app
from core.entities import today_utc
from services.config import Config, load_config
from services.database import Database
from services.event_log import EventLog
from services.llm import build_providers
from services.logging import setup_logging
from services.scheduler import next_wakeup
from workflows.digest_pipeline import DigestPipeline

logger = logging.getLogger(__name__)

RUN_COMMANDS = ("fetch", "generate", "rebuild", "summarize", "enrich")


async def run_command(config: Config, command: str, date: Optional[str] = None) -> bool:
    """Run one pipeline command, returning True when it succeeded."""
    start_time = time.perf_counter()
    date = date or today_utc()

    db = Database(config.DATABASE_PATH)
    await db.init_tables()
    event_log = EventLog(db)

    async with httpx.AsyncClient(timeout=config.REQUEST_TIMEOUT) as client:
        pipeline = DigestPipeline(config, db, build_providers(config), event_log, client=client)
        logger.info(f"Running {command} for {date}")

        if command == "fetch":
            summary = await pipeline.fetch(date)
            logger.info(
                f"Fetched {summary.total_items} items ({summary.new_items} new) "
                f"from {summary.sources_ok}/{summary.sources_total} sources"
            )
            ok = True
        elif command == "enrich":
            summary = await pipeline.enrich_comments(date)
            logger.info(
                f"Enriched {summary.enriched}, skipped {summary.skipped}, {summary.remaining} remaining"
            )
            ok = True
        else:
            result = await getattr(pipeline, command)(date)
            logger.info(f"{command}: {result.status} - {result.message}")
            ok = result.ok

    logger.info(f"Total time: {time.perf_counter() - start_time:.1f}s")
    return ok


async def schedule(config: Config) -> None:
    """Sleep until each slot; fetch passes accumulate items, the daily slot generates."""
    while True:
        wake_at, is_digest = next_wakeup(config.SCHEDULE_HOUR)
        delay = (wake_at - datetime.now()).total_seconds()
        logger.info(f"Next {'digest' if is_digest else 'fetch'} run at {wake_at.isoformat()}")
        await asyncio.sleep(max(delay, 0))

        try:
            await run_command(config, "generate" if is_digest else "fetch")
        except Exception:
            # no caller on the scheduled path, only log
            logger.exception("Scheduled run failed")


def serve(config: Config, host: str, port: int) -> None:
    app = create_app(config)
    server_config = HypercornConfig()
    server_config.bind = [f"{host}:{port}"]
    server_config.accesslog = "-"

    logger.info(f"Starting feed-digest API on http://{host}:{port}")
    asyncio.run(hypercorn_serve(app, server_config))


def cli() -> None:
    parser = argparse.ArgumentParser(description="feed-digest")
    parser.add_argument("--config", help="Path to config.yml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one pipeline step")
    run_parser.add_argument("step", choices=RUN_COMMANDS)
    run_parser.add_argument("--date", help="Digest date, YYYY-MM-DD (default: today, UTC)")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8080)

    subparsers.add_parser("schedule", help="Fetch throughout the day and generate the daily digest")

    args = parser.parse_args()
    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    config = load_config(args.config)

    if args.command == "run":
        ok = asyncio.run(run_command(config, args.step, args.date))
        raise SystemExit(0 if ok else 1)
    elif args.command == "serve":
        serve(config, args.host, args.port)
    else:
        asyncio.run(schedule(config))


if __name__ == "__main__":
    cli()
