"""Command line entry point: `hostpulse serve` and `hostpulse view`."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from textual.logging import TextualHandler

from hostpulse.config import Settings, setup_logging
from hostpulse.errors import ConfigError
from hostpulse.server import run
from hostpulse.viewer import DEFAULT_URL, PulseViewerApp


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostpulse", description="Live host metrics over WebSocket.")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="sample this host and stream to viewers")
    serve.add_argument("--host", help="listen address (default 0.0.0.0)")
    serve.add_argument("--port", type=int, help="listen port (default 3000)")
    serve.add_argument("--static-dir", type=Path, help="directory served as the browser viewer")
    serve.add_argument("--interval", type=float, help="seconds between snapshots (default 1.0)")
    serve.add_argument(
        "--no-tunnel",
        dest="tunnel",
        action="store_const",
        const=False,
        help="do not try to open a public tunnel",
    )
    serve.add_argument("--tunnel-host", help="localtunnel server (default https://localtunnel.me)")
    serve.add_argument("--subdomain", help="requested tunnel subdomain (default: random)")
    serve.add_argument(
        "--shared-sampling",
        action="store_const",
        const=True,
        help="sample once per tick for all viewers",
    )
    serve.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (default INFO)")

    view = commands.add_parser("view", help="open the terminal viewer")
    view.add_argument("url", nargs="?", default=DEFAULT_URL, help=f"server endpoint (default {DEFAULT_URL})")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the hostpulse command."""
    args = build_parser().parse_args(argv)

    if args.command == "view":
        logging.basicConfig(level=logging.INFO, handlers=[TextualHandler()])
        PulseViewerApp(args.url).run()
        return 0

    try:
        settings = Settings.from_env(
            host=args.host,
            port=args.port,
            static_dir=args.static_dir,
            interval=args.interval,
            tunnel=args.tunnel,
            tunnel_host=args.tunnel_host,
            subdomain=args.subdomain,
            shared_sampling=args.shared_sampling,
            log_level=args.log_level,
        )
    except ConfigError as exc:
        print(f"hostpulse: {exc}", file=sys.stderr)
        return 2

    setup_logging(settings.log_level)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
