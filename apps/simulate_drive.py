#!/usr/bin/env python3
"""
Run a convoy session from the terminal.

Host a session (optionally replaying a fetched route as the leader's
drive, with a demo companion trailing behind), or join an existing one.
Positions can also be fed on stdin as "lat,lng[,speed_mps[,accuracy_m]]"
lines, e.g. from a GPS daemon pipe. Ctrl+C leaves the session.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from convoy.colors import DEFAULT_COLOR, PALETTE, color_name
from convoy.config import (
    DEFAULT_SIM_END,
    DEFAULT_SIM_START,
    SIM_COMPANION_COLOR,
    SIM_COMPANION_ID,
    SIM_COMPANION_LAG,
    SIM_COMPANION_NAME,
    get_log_level,
)
from convoy.errors import ConvoyError, TransientWriteError
from convoy.identity import load_identity
from convoy.models import TrailPoint
from convoy.roster import RosterEntry
from convoy.routing import RouteProvider
from convoy.session import SessionLifecycle, SessionState
from convoy.sources import PushPositionSource, SimulatedRouteSource
from convoy.store import SERVER_TIMESTAMP, DocumentStore, open_store

logger = logging.getLogger("convoy_drive")


def format_roster(entries: List[RosterEntry]) -> str:
    parts = []
    for entry in entries:
        p = entry.participant
        label = p.display_name
        if p.is_leader:
            label += " (leader)"
        elif entry.distance_from_leader_km is not None:
            label += f" {entry.distance_from_leader_km:.2f}km"
        if entry.is_ghost:
            label += " [ghost]"
        if entry.is_self:
            label = "*" + label
        parts.append(label)
    return f"{len(entries)} active: " + ", ".join(parts)


def parse_position(value: str) -> TrailPoint:
    try:
        lat_str, lng_str = value.split(",", 1)
        return TrailPoint(lat=float(lat_str), lng=float(lng_str))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected LAT,LNG, got {value!r}") from exc


async def companion_loop(store: DocumentStore, code: str, source: SimulatedRouteSource) -> None:
    """Demo participant that drives the same route a few points behind the host."""
    while True:
        await asyncio.sleep(source.tick_seconds)
        point = source.position_behind(SIM_COMPANION_LAG)
        if point is None:
            continue
        doc = {
            "id": SIM_COMPANION_ID,
            "name": SIM_COMPANION_NAME,
            "color": SIM_COMPANION_COLOR,
            "isLeader": False,
            "lat": point.lat,
            "lng": point.lng,
            "lastActive": SERVER_TIMESTAMP,
        }
        try:
            await store.set_participant(code, SIM_COMPANION_ID, doc)
        except TransientWriteError as exc:
            logger.debug("Companion update dropped: %s", exc)


async def feed_stdin(source: PushPositionSource) -> None:
    """Push "lat,lng[,speed[,accuracy]]" lines from stdin into a position source."""
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            await source.close()
            return
        fields = [f.strip() for f in line.strip().split(",")]
        if len(fields) < 2:
            continue
        try:
            values = [float(f) if f else None for f in fields[:4]]
        except ValueError:
            source.fail(f"unreadable fix: {line.strip()}")
            continue
        if values[0] is None or values[1] is None:
            continue
        speed = values[2] if len(values) > 2 else None
        accuracy = values[3] if len(values) > 3 else None
        source.push(values[0], values[1], speed=speed, accuracy_m=accuracy)


async def drive(args: argparse.Namespace) -> int:
    store = open_store()
    identity = load_identity()
    name = args.name or identity.name
    client = SessionLifecycle(
        store,
        identity,
        route_provider=RouteProvider(),
        on_status=lambda msg: print(f"[convoy] {msg}", flush=True),
        on_roster=lambda entries: print(f"[convoy] {format_roster(entries)}", flush=True),
    )

    push_source: Optional[PushPositionSource] = PushPositionSource() if args.stdin else None
    background: List[asyncio.Task] = []
    try:
        if args.command == "host":
            simulate = (args.simulate[0], args.simulate[1]) if args.simulate else None
            code = await client.host(name, args.color, position=args.position, source=push_source, simulate=simulate)
            print(f"[convoy] Hosting session {code}", flush=True)
        else:
            await client.join(args.code, name, args.color, position=args.position, source=push_source)
            print(f"[convoy] Joined session {client.code}", flush=True)
    except ConvoyError as exc:
        print(f"[convoy] Could not start session: {exc}", file=sys.stderr)
        await store.close()
        return 1

    if client.color != args.color.lower():
        print(f"[convoy] Color taken, using {color_name(client.color) or client.color}", flush=True)

    if push_source is not None and not client.simulating:
        background.append(asyncio.create_task(feed_stdin(push_source)))
    if getattr(args, "companion", False) and isinstance(client.source, SimulatedRouteSource):
        background.append(asyncio.create_task(companion_loop(store, client.code, client.source)))

    try:
        await asyncio.Event().wait()
    finally:
        for task in background:
            task.cancel()
        if client.state is SessionState.ACTIVE:
            await client.leave()
            print("[convoy] Left session", flush=True)
        await store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Host or join a convoy session")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--name", help="Display name (default: last name used on this device)")
        p.add_argument("--color", default=DEFAULT_COLOR, choices=PALETTE, help="Requested marker color")
        p.add_argument("--position", type=parse_position, help="Starting position as LAT,LNG")
        p.add_argument("--stdin", action="store_true", help="Read fixes from stdin (lat,lng[,speed[,accuracy]])")

    host_p = sub.add_parser("host", help="Create a session and lead it")
    add_common(host_p)
    host_p.add_argument(
        "--simulate",
        nargs=2,
        metavar=("FROM", "TO"),
        help=f"Replay a driving route between two places (e.g. {DEFAULT_SIM_START} {DEFAULT_SIM_END})",
    )
    host_p.add_argument("--companion", action="store_true", help="Add a demo participant trailing the simulated drive")

    join_p = sub.add_parser("join", help="Join an existing session")
    join_p.add_argument("code", help="Session code")
    add_common(join_p)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=get_log_level(), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return asyncio.run(drive(args))
    except KeyboardInterrupt:
        print("\n[convoy] Stopped.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
