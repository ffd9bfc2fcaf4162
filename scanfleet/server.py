#!/usr/bin/env python3
"""
scanfleet API server entrypoint.

    scanfleet --port 8080 --callback-address 203.0.113.10
"""

import argparse
import json
import sys

import uvicorn

from scanfleet.api.main import create_app
from scanfleet.app_config import AppConfig
from scanfleet.logconfig import (
    configure_root_logger,
    get_log_level_from_config,
    get_module_logger,
)

log = get_module_logger("server")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="scanfleet API server")
    parser.add_argument("-H", "--host", help="Host to bind to")
    parser.add_argument("-p", "--port", type=int, help="Port to bind to")
    parser.add_argument("-c", "--config", help="JSON configuration file (flat keys)")
    parser.add_argument("--callback-address",
                        help="Address scan nodes use to reach this server")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    return parser


def build_config(args: argparse.Namespace) -> AppConfig:
    """File, then environment, then command line."""
    if args.config:
        with open(args.config, "r", encoding="utf-8") as f:
            cfg = AppConfig.from_dict(json.load(f))
    else:
        cfg = AppConfig()
    cfg.apply_env_overrides()

    if args.host:
        cfg.api.host = args.host
    if args.port:
        cfg.api.port = args.port
    if args.callback_address:
        cfg.fleet.callback_address = args.callback_address
    if args.debug:
        cfg.core.debug = True
    return cfg


def main(argv=None):
    args = build_parser().parse_args(argv)
    cfg = build_config(args)

    configure_root_logger(level=get_log_level_from_config(cfg))

    errors = cfg.validate()
    if errors:
        for e in errors:
            log.error("Invalid configuration: %s", e)
        sys.exit(1)

    app = create_app(cfg)
    uvicorn.run(
        app,
        host=cfg.api.host,
        port=cfg.api.port,
        log_level=cfg.api.log_level.lower(),
    )


if __name__ == "__main__":
    main()
