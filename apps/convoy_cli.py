#!/usr/bin/env python3
"""
Convoy command line.

Sub-commands:
- code: print a fresh session code
- host / join: run a session from the terminal (see simulate_drive)
- roster: print the current roster of a session once
- api: serve the read-only HTTP API
"""

import argparse
import asyncio
import sys
import time
from typing import List, Optional

from convoy.config import get_api_host, get_api_port


def cmd_code(_args: argparse.Namespace) -> int:
    from convoy.session import generate_session_code

    print(generate_session_code())
    return 0


def cmd_drive(argv: List[str]) -> int:
    # Lazy import so env vars are read at run time
    from apps import simulate_drive

    return simulate_drive.main(argv)


async def _print_roster(code: str) -> int:
    from convoy.roster import RosterManager
    from convoy.session import normalize_code
    from convoy.store import open_store

    store = open_store()
    try:
        docs = await store.list_participants(normalize_code(code))
    finally:
        await store.close()
    if not docs:
        print(f"Session {code} not found", file=sys.stderr)
        return 1

    roster = RosterManager()
    roster.apply_snapshot(docs)
    now = time.time()
    for entry in roster.entries(now=now):
        p = entry.participant
        dist = "" if entry.distance_from_leader_km is None else f"{entry.distance_from_leader_km:8.2f} km"
        flags = []
        if p.is_leader:
            flags.append("leader")
        if entry.is_ghost:
            flags.append(f"ghost ({int(now - p.last_active)}s)")
        print(f"{p.display_name:<20} {p.color:<8} {p.lat:10.5f} {p.lng:10.5f} {dist:>11}  {' '.join(flags)}")
    for exc in roster.rejected:
        print(f"skipped: {exc}", file=sys.stderr)
    return 0


def cmd_roster(args: argparse.Namespace) -> int:
    return asyncio.run(_print_roster(args.code))


def cmd_api(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("apps.api_main:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convoy helper CLI (sessions, roster, API)")
    sub = parser.add_subparsers(dest="command", required=True)

    code_p = sub.add_parser("code", help="Print a new session code")
    code_p.set_defaults(func=cmd_code)

    # host/join arguments are parsed by simulate_drive
    sub.add_parser("host", help="Host a session (see 'convoy host -h')", add_help=False)
    sub.add_parser("join", help="Join a session (see 'convoy join -h')", add_help=False)

    roster_p = sub.add_parser("roster", help="Print a session's roster")
    roster_p.add_argument("code", help="Session code")
    roster_p.set_defaults(func=cmd_roster)

    api_p = sub.add_parser("api", help="Serve the HTTP API")
    api_p.add_argument("--host", default=get_api_host(), help="Bind host (env CONVOY_API_HOST)")
    api_p.add_argument("--port", type=int, default=get_api_port(), help="Bind port (env CONVOY_API_PORT)")
    api_p.set_defaults(func=cmd_api)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] in ("host", "join"):
        return cmd_drive(argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
