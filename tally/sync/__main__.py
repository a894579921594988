"""
CLI participant for Tally scan sessions.

Reads decoded codes one per line (a keyboard-wedge scanner, a serial reader,
or a piped file) and syncs them with the server.

Usage:
    python -m tally.sync host catalog.xlsx --server http://192.168.1.20:8000
    python -m tally.sync join K7M2QX --server http://192.168.1.20:8000 < scans.txt
    python -m tally.sync join K7M2QX --backend relay --server ws://192.168.1.20:8000/ws --device /dev/ttyACM0
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tally.capture import LineReaderDevice, ScanSurface
from tally.handoff import advertised_url, build_payload, print_qr
from tally.reconcile.catalog import build_catalog
from tally.reconcile.errors import TallyError
from tally.reconcile.report import format_console, report_filename

from . import Participant, StoreSynchronizer, make_synchronizer, open_store

logger = logging.getLogger(__name__)


async def scan_lines(participant: Participant, surface: ScanSurface, decoded: list) -> int:
    """Read the device off the event loop, classify and submit on it."""
    count = 0
    with surface:
        while surface.active:
            text = await asyncio.to_thread(surface.read_once)
            if text is None:
                break
            while decoded:
                participant.scan(decoded.pop(0))
                count += 1
            # let background submits run between reads
            await asyncio.sleep(0)
    return count


async def _advertised_server(sync, server_url: str) -> str:
    """Ask a REST server for its LAN address so phones can reach it."""
    if not isinstance(sync, StoreSynchronizer):
        return server_url
    try:
        return advertised_url(server_url, await sync.lan_address())
    except TallyError as e:
        logger.warning(f"LAN address lookup failed: {e}")
        return server_url


async def run(args) -> int:
    sync = make_synchronizer(args.backend, args.server)
    participant = Participant(
        sync,
        store=open_store(args.state),
        poll_interval=args.poll_interval,
        notify=lambda message: print(message, file=sys.stderr),
    )

    try:
        if args.command == "host":
            from backend.core.parsers import parse_file

            parsed = parse_file(args.catalog)
            catalog = build_catalog(parsed["rows"], args.code_column, args.quantity_column)
            session = await participant.host(catalog)
            print(f"Session code: {session.id}")
            print_qr(build_payload(session.id, server_url=await _advertised_server(sync, args.server)))
        else:
            await participant.join(args.session)

        decoded: list = []
        surface = ScanSurface(LineReaderDevice(args.device or sys.stdin), decoded.append)
        scanned = await scan_lines(participant, surface, decoded)

        await participant.drain()
        await participant.sync_once()

        report = participant.report()
        if not args.quiet:
            print(f"\n{scanned} codes read, {len(participant.pending)} still pending")
            print(format_console(report))

        if args.output_csv:
            output = Path(args.output_csv)
            if output.is_dir():
                output = output / report_filename()
            output.write_text(participant.export_csv(), encoding="utf-8")
            print(f"Report written to {output}")
        return 0
    except TallyError as e:
        print(f"Error ({e.kind}): {e.detail}", file=sys.stderr)
        return 1
    finally:
        await participant.close()


def main():
    parser = argparse.ArgumentParser(
        prog="tally.sync",
        description="Tally participant - scan codes into a shared session",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    host = sub.add_parser("host", help="Publish a catalog and scan into the new session")
    host.add_argument("catalog", help="Catalog spreadsheet (.xlsx or .csv)")
    host.add_argument("--code-column", default=None, help="Header of the code column (auto-detected)")
    host.add_argument("--quantity-column", default=None, help="Header of the quantity column")

    join = sub.add_parser("join", help="Join an existing session")
    join.add_argument("session", help="6-character session code")

    for p in (host, join):
        p.add_argument("--server", required=True, help="Server URL (ws://.../ws for the relay backend)")
        p.add_argument("--backend", choices=["store", "relay"], default=None,
                       help="Sync backend (default: TALLY_SYNC_BACKEND or store)")
        p.add_argument("--device", default=None, metavar="PATH",
                       help="Scanner device or file, one code per line (default: stdin)")
        p.add_argument("--state", default=None, metavar="FILE", help="Local state file (JSON)")
        p.add_argument("--poll-interval", type=float, default=3.0, help="Seconds between polls")
        p.add_argument("--output-csv", metavar="FILE", help="Write the final report as CSV")
        p.add_argument("--quiet", "-q", action="store_true", help="Suppress the console report")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
