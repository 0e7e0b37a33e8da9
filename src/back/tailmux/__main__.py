"""Run the tailmux server: ``python -m tailmux``."""
from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from .api.app import create_app
from .api.config import APIConfig
from .observability import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    defaults = APIConfig()
    parser = argparse.ArgumentParser(prog='tailmux', description=__doc__)
    parser.add_argument('--host', default=defaults.host)
    parser.add_argument('--port', type=int, default=defaults.port)
    parser.add_argument('--max-terminals', type=int, default=defaults.max_terminals)
    parser.add_argument('--heartbeat-interval', type=int, default=defaults.heartbeat_interval_ms,
                        metavar='MS', help='heartbeat ping interval (0 disables)')
    parser.add_argument('--idle-timeout', type=int, default=defaults.idle_timeout_ms,
                        metavar='MS', help='close terminals idle this long (0 disables)')
    parser.add_argument('--shell', default=defaults.shell)
    parser.add_argument('--static-dir', type=Path, default=defaults.static_dir)
    parser.add_argument('--log-level', default=None)
    parser.add_argument('--json-logs', action=argparse.BooleanOptionalAction, default=None)
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> APIConfig:
    return APIConfig(
        host=args.host,
        port=args.port,
        max_terminals=args.max_terminals,
        heartbeat_interval_ms=args.heartbeat_interval,
        idle_timeout_ms=args.idle_timeout,
        shell=args.shell,
        static_dir=args.static_dir,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_output=args.json_logs)
    config = build_config(args)
    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
