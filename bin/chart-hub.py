#!/usr/bin/env python3
"""hachart Hub - Main entry point.

Starts the chart hub with its FastAPI server, the shared Home Assistant
connection and the state_changed listener.

Usage:
    chart-hub.py [--port PORT] [--host HOST] [--log-level LEVEL] [--no-listen]

Options:
    --port PORT         FastAPI server port (default: 8000)
    --host HOST         FastAPI server host (default: 127.0.0.1)
    --log-level LEVEL   Logging level (default: INFO)
    --no-listen         Do not subscribe to HA state_changed events

Environment:
    HA_URL, HA_TOKEN                 Home Assistant connection
    HACHART_HISTORY_CACHE_SIZE       history cache entries (default: 64)
    HACHART_STATISTICS_CACHE_SIZE    statistics cache entries (default: 32)
    HACHART_API_KEY                  require X-API-Key on /api/* routes
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from hachart import __version__
from hachart.engine.config import AppConfig
from hachart.hub.api import create_api
from hachart.hub.core import ChartHub


def setup_logging(log_level: str = "INFO"):
    """Configure logging for hub and cards."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def shutdown_hub(hub: ChartHub):
    """Gracefully shutdown the hub (idempotent)."""
    if not hub.is_running():
        return
    await hub.shutdown()


def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="hachart Hub - Home Assistant data for ECharts options")
    parser.add_argument("--port", type=int, default=8000, help="FastAPI server port (default: 8000)")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="FastAPI server host (default: 127.0.0.1)")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--no-listen", action="store_true", help="Do not subscribe to HA state_changed events")
    return parser.parse_args()


async def main():
    """Main entry point."""
    args = parse_args()

    setup_logging(args.log_level)
    logger = logging.getLogger("main")

    try:
        config = AppConfig.from_env()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    logger.info("=" * 70)
    logger.info("hachart Hub v%s", __version__)
    logger.info("=" * 70)
    logger.info("Home Assistant: %s", config.ha.url)
    logger.info("Server: http://%s:%s", args.host, args.port)
    logger.info("WebSocket: ws://%s:%s/ws", args.host, args.port)
    logger.info("Log level: %s", args.log_level)
    logger.info("=" * 70)

    hub = ChartHub(config)
    try:
        await hub.initialize(listen=not args.no_listen)
    except Exception as e:
        logger.error("Failed to initialize hub: %s", e)
        await shutdown_hub(hub)
        return 1

    # uvicorn handles SIGINT/SIGTERM internally
    app = create_api(hub)
    server = uvicorn.Server(
        uvicorn.Config(app, host=args.host, port=args.port, log_level=args.log_level.lower(), access_log=True)
    )

    try:
        logger.info("Starting FastAPI server...")
        await server.serve()
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt")
    except Exception as e:
        logger.error("Server error: %s", e)
    finally:
        await shutdown_hub(hub)

    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown by user")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)
