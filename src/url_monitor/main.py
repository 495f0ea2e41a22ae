import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from url_monitor.api import create_app
from url_monitor.config import load_config
from url_monitor.database import Database
from url_monitor.errors import ConfigurationError, StorageError
from url_monitor.models import AppConfig
from url_monitor.monitor import Monitor
from url_monitor.notifier import WebhookNotifier
from url_monitor.snapshot import write_snapshot

logger = logging.getLogger("url_monitor")

RETENTION_SWEEP_SECONDS = 3600


async def _retention_loop(db: Database, days: int) -> None:
    while True:
        try:
            await db.cleanup(days)
        except StorageError:
            logger.exception("Retention cleanup failed")
        await asyncio.sleep(RETENTION_SWEEP_SECONDS)


async def serve(config: AppConfig) -> None:
    """Run the monitor and the dashboard until the server is told to exit."""
    db = Database(config.global_.db_path)
    await db.init()
    logger.info("Database initialized at %s", config.global_.db_path)

    monitor = Monitor.from_config(config, db, WebhookNotifier(config.notifications))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await monitor.start(config.targets)
        retention = asyncio.create_task(_retention_loop(db, config.global_.cleanup_days))
        try:
            yield
        finally:
            retention.cancel()
            await monitor.stop()
            await monitor.drain()
            await db.close()
            logger.info("Shutdown complete")

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(db, lifespan=lifespan),
            host=config.dashboard.host,
            port=config.dashboard.port,
            log_config=None,
        )
    )
    logger.info("Dashboard at http://%s:%d", config.dashboard.host, config.dashboard.port)
    await server.serve()


async def snapshot(config: AppConfig, output_dir: str) -> None:
    """Probe every target once, export the static snapshot, prune old rows."""
    db = Database(config.global_.db_path)
    await db.init()
    try:
        monitor = Monitor.from_config(config, db, WebhookNotifier(config.notifications))
        await monitor.run_cycle(config.targets)
        await write_snapshot(db, output_dir)

        try:
            deleted = await db.cleanup(config.global_.cleanup_days)
        except StorageError as exc:
            logger.warning("Cleanup failed: %s", exc)
        else:
            if deleted:
                logger.info(
                    "Cleaned up %d records older than %d days",
                    deleted,
                    config.global_.cleanup_days,
                )
    finally:
        await db.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="URL Monitoring Service")
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--targets-csv",
        default=None,
        help="CSV file of targets (url,name,countryCode,group)",
    )
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("serve", help="Monitor continuously and serve the dashboard API")
    snapshot_parser = subcommands.add_parser(
        "snapshot", help="Run one check cycle and write static JSON files"
    )
    snapshot_parser.add_argument(
        "-o", "--output",
        default="public/api",
        help="Directory for the snapshot files",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )

    try:
        config = load_config(args.config, targets_csv=args.targets_csv)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logging.getLogger().setLevel(
        getattr(logging, config.global_.log_level.upper(), logging.INFO)
    )
    logger.info("Loaded %d targets", len(config.targets))

    try:
        if args.command == "snapshot":
            asyncio.run(snapshot(config, args.output))
        else:
            asyncio.run(serve(config))
    except StorageError as exc:
        logger.error("Storage unavailable: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
