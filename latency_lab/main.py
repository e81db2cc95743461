from __future__ import annotations

import argparse
import logging

import uvicorn

from latency_lab.config import default_config, load_config
from latency_lab.logging_utils import configure_logging, resolve_log_level
from latency_lab.server import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LatencyLab probe streaming server")
    parser.add_argument(
        "--config",
        help="Path to CFG configuration file (defaults are used when omitted)",
    )
    parser.add_argument("--host", help="Override the listen address")
    parser.add_argument("--port", type=int, help="Override the listen port")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    logger = logging.getLogger("latency_lab")
    config = load_config(args.config) if args.config else default_config()

    host = args.host or config.server.host
    port = args.port or config.server.port
    app = create_app(config)

    logger.info("LatencyLab backend listening on %s:%s", host, port)
    try:
        uvicorn.run(app, host=host, port=port, log_config=None, log_level=level)
    except KeyboardInterrupt:
        logger.info("LatencyLab stopped.")


if __name__ == "__main__":
    main()
