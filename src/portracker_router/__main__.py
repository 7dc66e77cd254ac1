"""portracker router -- command-line entry point.

Usage::

    python -m portracker_router [--config PATH] --host HOST --username USER COMMAND

Commands:
    test                       probe transports and report the pinned one
    list                       list redirect rules on the router
    add NAME EXT IP INT        create a rule
    update ID [--field ...]    change fields of a rule
    delete ID                  remove a rule
    enable ID / disable ID     toggle a rule
    encrypt-password           encrypt a password for storage

The router password is read from the ROUTER_PASSWORD environment variable,
or prompted for when unset.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from portracker_router.config import Settings, load_settings
from portracker_router.errors import RouterError
from portracker_router.router.client import RouterClient, create_client
from portracker_router.secrets.codec import CredentialCodec

logger = logging.getLogger("portracker_router")

PASSWORD_ENV = "ROUTER_PASSWORD"


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Parameters
    ----------
    argv:
        Argument list.  Defaults to ``sys.argv[1:]`` when ``None``.
    """
    parser = argparse.ArgumentParser(
        prog="portracker_router",
        description="Manage OpenWrt port forwarding over SSH or LuCI RPC",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument("--host", type=str, default=None, help="Router address or LuCI URL")
    parser.add_argument("--port", type=int, default=None, help="SSH port (default: 22)")
    parser.add_argument("--username", type=str, default="root", help="Router login (default: root)")
    parser.add_argument(
        "--transport",
        choices=["interactive", "rpc"],
        default=None,
        help="Skip auto-detection and use this transport",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=False)

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("test", help="Test the router connection")
    sub.add_parser("list", help="List port forwarding rules")

    add = sub.add_parser("add", help="Add a port forwarding rule")
    add.add_argument("name")
    add.add_argument("external_port", type=int)
    add.add_argument("internal_ip")
    add.add_argument("internal_port", type=int)
    add.add_argument("--protocol", choices=["tcp", "udp", "tcpudp"], default="tcp")

    update = sub.add_parser("update", help="Update a port forwarding rule")
    update.add_argument("native_id")
    update.add_argument("--name", default=None)
    update.add_argument("--protocol", choices=["tcp", "udp", "tcpudp"], default=None)
    update.add_argument("--external-port", dest="external_port", type=int, default=None)
    update.add_argument("--internal-ip", dest="internal_ip", default=None)
    update.add_argument("--internal-port", dest="internal_port", type=int, default=None)

    for name in ("delete", "enable", "disable"):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} a port forwarding rule")
        cmd.add_argument("native_id")

    sub.add_parser("encrypt-password", help="Encrypt a router password for storage")
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _read_password(prompt: str = "Router password: ") -> str:
    password = os.environ.get(PASSWORD_ENV)
    if password is not None:
        return password
    return getpass.getpass(prompt)


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run_command(client: RouterClient, args: argparse.Namespace) -> int:
    if args.command == "test":
        result = await client.test_connection()
        _emit(result.model_dump(mode="json"))
        return 0 if result.success else 1

    if args.command == "list":
        rules = await client.list_rules()
        _emit([rule.model_dump(mode="json") for rule in rules])
        return 0

    if args.command == "add":
        result = await client.add_rule({
            "name": args.name,
            "protocol": args.protocol,
            "external_port": args.external_port,
            "internal_ip": args.internal_ip,
            "internal_port": args.internal_port,
        })
    elif args.command == "update":
        fields = {
            key: getattr(args, key)
            for key in ("name", "protocol", "external_port", "internal_ip", "internal_port")
            if getattr(args, key) is not None
        }
        result = await client.update_rule(args.native_id, fields)
    elif args.command == "delete":
        result = await client.delete_rule(args.native_id)
    else:
        result = await client.set_enabled(args.native_id, args.command == "enable")

    _emit(result.model_dump(mode="json"))
    return 0


async def run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute the parsed command and return the process exit code."""
    if args.command == "encrypt-password":
        codec = CredentialCodec(settings.encryption.key)
        _emit(codec.encrypt_password(_read_password("Password to encrypt: ")))
        return 0

    if not args.host:
        logger.error("--host is required for %s", args.command)
        return 2

    client = create_client(
        {
            "host": args.host,
            "port": args.port,
            "username": args.username,
            "password": _read_password(),
        },
        settings=settings,
        transport_preference=args.transport,
    )
    async with client:
        return await _run_command(client, args)


def main(argv: list[str] | None = None) -> None:
    """Parse CLI args and run the requested command."""
    args = parse_args(argv)
    settings = load_settings(Path(args.config) if args.config else None)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.logging.level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        code = asyncio.run(run(args, settings))
    except RouterError as exc:
        logger.error("%s", exc)
        code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
