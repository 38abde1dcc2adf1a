"""
Command-line interface for linkledger.

Provides CLI commands for running the relay and inspecting the index:
- serve: Run the relay server
- links: Load the relay snapshot and print every mapping
- resolve: Resolve one (subject, url) pair to its identifier
- watch: Follow the relay's live feed and print each new mapping

Usage:
    linkledger serve [--host HOST] [--port PORT] [--data-dir DIR]
    linkledger links [--relay URL]
    linkledger resolve SUBJECT URL [--relay URL]
    linkledger watch [--relay URL]

Environment Variables:
    LINKLEDGER_RELAY_URL: Relay base URL (default: http://localhost:3000)
    LINKLEDGER_HOST: Host to bind the relay server (default: 0.0.0.0)
    LINKLEDGER_PORT: Port for the relay server (default: 3000)
    LINKLEDGER_DATA_DIR: Relay storage directory (default: data/relay)
    LINKLEDGER_LOG_LEVEL: Log level (default: INFO)
"""

import argparse
import asyncio
import sys
from pathlib import Path

from linkledger.config import RelaySettings, config, configure_logging
from linkledger.errors import ResolutionMiss
from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticsLog
from linkledger.index.keys import split_key
from linkledger.index.reconciler import FallbackReconciler
from linkledger.index.snapshot import SnapshotLoader
from linkledger.index.subscriber import LiveEventSubscriber
from linkledger.relay.client import RelayClient
from linkledger.types import LinkRecord

# Seconds uvicorn waits for open connections before forcing shutdown
SHUTDOWN_GRACE_SECONDS = 5


def _relay_settings(args: argparse.Namespace) -> RelaySettings:
    """Relay settings from config, with ``--relay`` taking precedence."""
    return RelaySettings(
        base_url=(args.relay or config.relay.base_url).rstrip("/"),
        timeout=config.relay.timeout,
        reconnect_delay=config.relay.reconnect_delay,
    )


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the relay server with uvicorn.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    import uvicorn

    from linkledger.relay.server import RelayState, create_app

    host = args.host or config.server.host
    port = args.port or config.server.port
    data_dir = Path(args.data_dir) if args.data_dir else config.storage.absolute_path

    state = RelayState.load(data_dir)
    print(f"Relay serving {len(state.links)} links on http://{host}:{port}")
    # Live-feed connections never finish on their own; bound the wait on shutdown.
    uvicorn.run(
        create_app(state),
        host=host,
        port=port,
        timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS,
    )
    return 0


async def _links(settings: RelaySettings) -> int:
    cache = ResolutionCache()
    diagnostics = DiagnosticsLog()
    async with RelayClient(settings) as relay:
        await SnapshotLoader(cache, relay, diagnostics).load()

    for entry in diagnostics.entries():
        print(f"warning: {entry.kind} {entry.key}: {entry.detail}", file=sys.stderr)
    for key, identifier in cache.items():
        subject, url = split_key(key)
        print(f"{identifier}  {subject}  {url}")
    return 0


def cmd_links(args: argparse.Namespace) -> int:
    """Print every mapping in the relay snapshot."""
    return asyncio.run(_links(_relay_settings(args)))


async def _resolve(settings: RelaySettings, subject: str, url: str) -> int:
    cache = ResolutionCache()
    async with RelayClient(settings) as relay:
        reconciler = FallbackReconciler(cache, SnapshotLoader(cache, relay))
        try:
            identifier = await reconciler.resolve(subject, url)
        except ResolutionMiss as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    print(identifier)
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve SUBJECT and URL to an identifier."""
    return asyncio.run(_resolve(_relay_settings(args), args.subject, args.url))


def _print_record(record: LinkRecord) -> None:
    print(f"{record.link_id}  {record.subject}  {record.url}", flush=True)


async def _watch(settings: RelaySettings) -> int:
    cache = ResolutionCache()
    async with RelayClient(settings) as relay:
        subscriber = LiveEventSubscriber(
            cache,
            relay,
            reconnect_delay=settings.reconnect_delay,
            on_merge=_print_record,
        )
        while True:
            await subscriber.consume_once()
            await asyncio.sleep(settings.reconnect_delay)


def cmd_watch(args: argparse.Namespace) -> int:
    """Follow the live feed until interrupted."""
    try:
        return asyncio.run(_watch(_relay_settings(args)))
    except KeyboardInterrupt:
        return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="linkledger",
        description="Ledger link identifier resolution and relay",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the relay server")
    serve_parser.add_argument("--host", help="Host to bind (default: from config)")
    serve_parser.add_argument("--port", type=int, help="Port to bind (default: from config)")
    serve_parser.add_argument("--data-dir", help="Storage directory (default: from config)")
    serve_parser.set_defaults(func=cmd_serve)

    relay_help = "Relay base URL (default: from config)"

    links_parser = subparsers.add_parser("links", help="Print the relay snapshot")
    links_parser.add_argument("--relay", help=relay_help)
    links_parser.set_defaults(func=cmd_links)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a link identifier")
    resolve_parser.add_argument("subject", help="Address that posted the link")
    resolve_parser.add_argument("url", help="The posted URL")
    resolve_parser.add_argument("--relay", help=relay_help)
    resolve_parser.set_defaults(func=cmd_resolve)

    watch_parser = subparsers.add_parser("watch", help="Follow the live feed")
    watch_parser.add_argument("--relay", help=relay_help)
    watch_parser.set_defaults(func=cmd_watch)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(config.logging)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
