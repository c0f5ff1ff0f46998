import argparse
import asyncio
import logging
import os

from teenpatti.models import SessionConfig

from .registry import SessionRegistry
from .server import HostConfig, HostServer


def build_parser() -> argparse.ArgumentParser:
    # CLI doubles as documentation for the session defaults.
    parser = argparse.ArgumentParser(description="Teen Patti live session host")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument(
        "--operator-token",
        default=os.environ.get("PATTI_OPERATOR_TOKEN"),
        help="Shared secret operators/admins send in hello (defaults to $PATTI_OPERATOR_TOKEN)",
    )
    parser.add_argument("--boot", type=int, default=5, help="Chips every dealt-in player pays per round")
    parser.add_argument("--stake", type=int, default=20, help="Opening chaal stake")
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=60.0,
        help="Seconds before an unresolved side show/show request auto-cancels",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    try:
        session_config = SessionConfig(
            boot=args.boot,
            opening_stake=args.stake,
            request_timeout_s=args.request_timeout,
        )
    except ValueError as exc:
        parser.error(str(exc))
    config = HostConfig(
        host=args.host,
        port=args.port,
        operator_token=args.operator_token,
        session=session_config,
    )

    registry = SessionRegistry(session_config)
    server = HostServer(config, registry=registry)
    asyncio.run(server.start())


if __name__ == "__main__":
    main()
