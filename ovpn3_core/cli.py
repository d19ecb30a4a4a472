"""Command line front end for the orchestrator.

Usage:
    ovpn3-core configs                       (list configurations)
    ovpn3-core import NAME FILE              (import a configuration file)
    ovpn3-core remove CONFIG_PATH            (remove a configuration)
    ovpn3-core sessions                      (list sessions)
    ovpn3-core new-tunnel CONFIG_PATH        (start a tunnel and follow its logs)
    ovpn3-core connect SESSION_PATH
    ovpn3-core disconnect SESSION_PATH
    ovpn3-core disconnect-all
    ovpn3-core has-session
    ovpn3-core logs                          (follow backend log signals)
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import List, Optional

from .constants import VERSION
from .errors import BusConnectionError
from .models import Config, DisconnectReport, ImportRequest, LogEvent, Session
from .platform import setup_logging
from .results import Result
from .settings import load_settings

log = logging.getLogger(__name__)

# Colors
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
BOLD = "\033[1m"
NC = "\033[0m"


def render_configs(configs: List[Config]) -> str:
    if not configs:
        return f"{YELLOW}No configurations. Use 'import' to add one.{NC}"
    lines = [f"{CYAN}Configurations:{NC}", ""]
    for config in configs:
        lines.append(f"  {BOLD}{config.name}{NC}")
        lines.append(f"    Path:       {config.path}")
        lines.append(f"    Used:       {config.used_count} time(s)")
        lines.append("")
    return "\n".join(lines).rstrip()


def render_sessions(sessions: List[Session]) -> str:
    if not sessions:
        return f"{YELLOW}No sessions.{NC}"
    lines = [f"{CYAN}Sessions:{NC}", ""]
    for session in sessions:
        created = datetime.fromtimestamp(session.created_at).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"  {BOLD}{session.path}{NC}")
        lines.append(f"    Status:     {session.status_name} {session.status_message}".rstrip())
        lines.append(f"    Created:    {created}")
        lines.append("")
    return "\n".join(lines).rstrip()


def render_disconnect_report(report: DisconnectReport) -> str:
    lines = [f"{GREEN}Disconnected {len(report.disconnected)} session(s){NC}"]
    for path, error in report.failed.items():
        lines.append(f"{RED}Failed to disconnect {path}: {error}{NC}")
    return "\n".join(lines)


def format_event(event: LogEvent) -> str:
    """One-line rendering of a log event."""
    return (
        f"{event.signal_member:<14} {event.group_name}/{event.level_name} "
        f"{event.session_path}: {event.message}"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ovpn3-core",
        description="Manage OpenVPN 3 configurations and sessions over D-Bus",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--json", "-j", action="store_true", help="Output raw JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("configs", help="List configurations")

    p = sub.add_parser("import", help="Import a configuration file")
    p.add_argument("name", help="Configuration name")
    p.add_argument("file", help="Path to the .ovpn file")
    p.add_argument("--single-use", action="store_true", help="Remove after first use")
    p.add_argument("--persistent", action="store_true", help="Keep across daemon restarts")

    p = sub.add_parser("remove", help="Remove a configuration")
    p.add_argument("path", help="Configuration object path")

    sub.add_parser("sessions", help="List sessions")

    p = sub.add_parser("new-tunnel", help="Start a tunnel for a configuration")
    p.add_argument("path", help="Configuration object path")
    p.add_argument("--no-follow", action="store_true", help="Do not follow logs afterwards")

    p = sub.add_parser("connect", help="Connect a session")
    p.add_argument("path", help="Session object path")

    p = sub.add_parser("disconnect", help="Disconnect a session")
    p.add_argument("path", help="Session object path")

    sub.add_parser("disconnect-all", help="Disconnect every session")
    sub.add_parser("has-session", help="Exit 0 if any session exists")
    sub.add_parser("logs", help="Follow backend log signals")

    return parser


def _report(result: Result, args, success_text: str, render=None) -> int:
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif result.success:
        print(render(result.value) if render else f"{GREEN}{success_text}{NC}")
    else:
        print(f"{RED}Error ({result.error_kind}): {result.error}{NC}", file=sys.stderr)
    return 0 if result.success else 1


async def follow_logs(client, args, subscription=None) -> int:
    """Print log events until interrupted."""
    subscription = subscription or client.subscribe_logs()
    if not args.json:
        print(f"{CYAN}Following backend logs (Ctrl+C to stop)...{NC}")
    async for event in subscription:
        if args.json:
            print(json.dumps(event.to_dict()), flush=True)
        else:
            print(format_event(event), flush=True)
    return 0


async def run_command(client, args) -> int:
    """Execute one parsed command against ``client``.

    Returns:
        Process exit code
    """
    command = args.command

    if command == "configs":
        return _report(await client.list_configs(), args, "", render_configs)

    if command == "import":
        request = ImportRequest(
            config_name=args.name,
            config_file_path=args.file,
            single_use=args.single_use,
            persistent=args.persistent,
        )
        result = await client.import_config(request)
        return _report(result, args, f"Imported as {result.value}")

    if command == "remove":
        return _report(await client.remove_config(args.path), args, "Configuration removed")

    if command == "sessions":
        return _report(await client.list_sessions(), args, "", render_sessions)

    if command == "new-tunnel":
        # Subscribe first so the handshake's own log lines are shown
        subscription = None if args.no_follow else client.subscribe_logs()
        result = await client.new_tunnel(args.path)
        code = _report(result, args, f"Session started: {result.value}")
        if subscription is None:
            return code
        if code != 0:
            subscription.close()
            return code
        return await follow_logs(client, args, subscription)

    if command == "connect":
        return _report(await client.connect_session(args.path), args, "Connecting...")

    if command == "disconnect":
        return _report(await client.disconnect_session(args.path), args, "Disconnected")

    if command == "disconnect-all":
        result = await client.disconnect_all()
        code = _report(result, args, "", render_disconnect_report)
        if result.success and not result.value.success:
            return 1
        return code

    if command == "has-session":
        result = await client.has_session()
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        elif not result.success:
            print(f"{RED}Error ({result.error_kind}): {result.error}{NC}", file=sys.stderr)
        else:
            print("yes" if result.value else "no")
        return 0 if result.success and result.value else 1

    if command == "logs":
        return await follow_logs(client, args)

    raise ValueError(f"Unknown command: {command}")


async def _main(args, settings) -> int:
    from .client import VPNClient

    try:
        client = await VPNClient.create(settings)
    except BusConnectionError as e:
        print(f"{RED}{e}{NC}", file=sys.stderr)
        return 1
    try:
        return await run_command(client, args)
    finally:
        await client.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # Handlers must exist before settings are loaded
    setup_logging("DEBUG" if args.verbose else "INFO")
    settings = load_settings()
    if not args.verbose:
        setup_logging(settings.log_level)
    try:
        return asyncio.run(_main(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
