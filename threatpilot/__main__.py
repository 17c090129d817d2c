#!/usr/bin/env python3
"""
ThreatPilot Remediation API — server runner.

Usage examples
--------------
# Serve on the configured PORT (default 8080)
python -m threatpilot

# Bind to localhost only with verbose logging
python -m threatpilot --host 127.0.0.1 --port 9000 --log-level DEBUG
"""

from __future__ import annotations

import argparse

import uvicorn

from threatpilot.main import create_app
from threatpilot.utils.config import load_settings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="threatpilot",
        description="Run the ThreatPilot Remediation API.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port (default: $PORT or 8080)")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: $LOG_LEVEL or INFO)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    settings = load_settings(port=args.port, log_level=args.log_level)
    uvicorn.run(
        create_app(settings=settings),
        host=args.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
