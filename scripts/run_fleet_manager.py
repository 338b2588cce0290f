#!/usr/bin/env python3
"""Run the fleet manager with explicit args (avoids shell interpolation)."""
from __future__ import annotations

import argparse
from dataclasses import replace

import uvicorn

from fleet_manager.app import FleetManagerSettings, create_app
from fleet_manager.observability import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--json-logs", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument(
        "--background-sweeps",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Override FLEET_BACKGROUND_SWEEPS.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging(level=args.log_level, json_output=args.json_logs)

    settings = FleetManagerSettings.from_env()
    if args.background_sweeps is not None:
        settings = replace(settings, background_sweeps=args.background_sweeps)

    app = create_app(settings)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
