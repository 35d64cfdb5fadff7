"""Stock Analyzer — CLI entrypoint.

Run the API, the update scheduler, or both::

    python -m stockanalyzer.main --server
    python -m stockanalyzer.main --scheduler
    python -m stockanalyzer.main --scheduler --once
    python -m stockanalyzer.main --all        # default
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from stockanalyzer import __version__
from stockanalyzer.config import get_settings
from stockanalyzer.services import build_services
from stockanalyzer.utils import setup_logging

logger = logging.getLogger("stockanalyzer")

BANNER = f"""
  Stock Analyzer v{__version__}
  Market data cache with quota-aware updates
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stockanalyzer",
        description="Stock Analyzer — market data cache and update scheduler",
    )
    group = parser.add_argument_group("components")
    group.add_argument("--server", action="store_true", help="Run the FastAPI server")
    group.add_argument("--scheduler", action="store_true", help="Run the background update scheduler")
    group.add_argument("--all", action="store_true", default=False, help="Run everything (default)")

    parser.add_argument("--once", action="store_true", help="Run a single scheduler tick then exit")
    parser.add_argument("--register", nargs="*", default=[], metavar="SYMBOL", help="Register symbols before starting")
    return parser


async def _run(args: argparse.Namespace) -> None:
    settings = get_settings()

    components: list[str] = []
    if args.scheduler:
        components.append("scheduler")
    if args.server:
        components.append("server")
    if args.all or not components:
        components = ["scheduler", "server"]

    logger.info("Starting components: %s", ", ".join(components))

    services = await build_services(settings)
    background_tasks: list[asyncio.Task] = []
    try:
        for symbol in args.register or [settings.default_symbol]:
            if await services.tracker.get_status(symbol) is None:
                await services.tracker.register_symbol(symbol)

        if "scheduler" in components:
            if args.once:
                await services.worker.run(once=True)
                logger.info("Scheduler single tick: %s", services.worker.get_stats())
                return
            background_tasks.append(asyncio.create_task(services.worker.run(), name="update-worker"))

        if "server" in components:
            import uvicorn
            from stockanalyzer.api.app import create_app

            app = create_app(settings, services=services)
            config = uvicorn.Config(
                app,
                host=settings.api_host,
                port=settings.api_port,
                log_level=settings.log_level.lower(),
            )
            server = uvicorn.Server(config)
            await server.serve()
        else:
            logger.info("Scheduler running — press Ctrl+C to stop")
            await asyncio.gather(*background_tasks)
    finally:
        for t in background_tasks:
            t.cancel()
        await asyncio.gather(*background_tasks, return_exceptions=True)
        await services.close()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    print(BANNER, file=sys.stderr)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted — shutting down")


if __name__ == "__main__":
    main()
