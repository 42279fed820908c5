"""Command-line interface for relaychat.

Manages the persisted relay set and participant labels, derives thread
identifiers, and runs a connection session until interrupted.

Examples:
    ```bash
    python -m relaychat relays list
    python -m relaychat relays add relay.example.com
    python -m relaychat relays replace --connect wss://a.example --ignore wss://b.example
    python -m relaychat flares set npub1... "met at the conference"
    python -m relaychat thread-id npub1... npub1... --salt nostr-tools
    python -m relaychat --log-level DEBUG connect --duration 60
    ```
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from relaychat import __version__
from relaychat.core import CLIENT_INFO, Pool, Store, StoreConfig, start_metrics_server
from relaychat.core.logger import Logger, StructuredFormatter
from relaychat.core.yaml import load_yaml
from relaychat.exceptions import ConfigurationError, RelayChatError
from relaychat.models.constants import SessionState
from relaychat.services.annotations import ParticipantAnnotationCache
from relaychat.services.configs import AppConfig, ThreadConfig
from relaychat.services.registry import RelayRegistry
from relaychat.services.session import ConnectionSession, ConnectionSessionManager
from relaychat.services.threads import ThreadAddressing
from relaychat.utils.keys import KeysConfig


DEFAULT_CONFIG = Path("config") / "relaychat.yaml"

logger = Logger("cli")


# ---------------------------------------------------------------------------
# Argument Parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relaychat", description="relaychat client core")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Config path (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    relays = commands.add_parser("relays", help="Manage the persisted relay set")
    relay_actions = relays.add_subparsers(dest="action", required=True)
    relay_actions.add_parser("list", help="Show every relay and its preference")
    add = relay_actions.add_parser("add", help="Add a relay (wss:// is assumed)")
    add.add_argument("url")
    add.add_argument("--ignore", action="store_true", help="Store the relay as ignored")
    for name, text in (
        ("remove", "Delete a relay"),
        ("ignore", "Stop connecting to a relay"),
        ("allow", "Connect to a relay again"),
    ):
        relay_actions.add_parser(name, help=text).add_argument("url")
    replace = relay_actions.add_parser("replace", help="Replace the whole relay set")
    replace.add_argument("--connect", nargs="*", default=[], metavar="URL")
    replace.add_argument("--ignore", nargs="*", default=[], metavar="URL")
    relay_actions.add_parser("reset", help="Restore the configured default relays")

    flares = commands.add_parser("flares", help="Manage participant labels")
    flare_actions = flares.add_subparsers(dest="action", required=True)
    flare_actions.add_parser("list", help="Show every label")
    flare_actions.add_parser("get", help="Show one label").add_argument("pubkey")
    set_flare = flare_actions.add_parser("set", help="Label a participant")
    set_flare.add_argument("pubkey")
    set_flare.add_argument("label")
    flare_actions.add_parser("delete", help="Remove one label").add_argument("pubkey")
    flare_actions.add_parser("clear", help="Remove every label")

    thread = commands.add_parser("thread-id", help="Derive a thread identifier")
    thread.add_argument("pubkeys", nargs="+", metavar="PUBKEY")
    thread.add_argument("--salt", help="Override the configured salt")
    thread.add_argument("--self", dest="self_pubkey", help="Local user's key to include")

    connect = commands.add_parser("connect", help="Run a session until interrupted")
    connect.add_argument(
        "--duration", type=float, default=None, help="Stop after this many seconds"
    )

    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def setup_logging(level: str) -> None:
    """Install ``StructuredFormatter`` on the root handler."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def load_config(path: Path) -> AppConfig:
    """Load the application config; a missing file means all defaults."""
    data: dict[str, Any] = {}
    if path.exists():
        data = load_yaml(path)
    else:
        logger.debug("config_not_found", path=str(path))
    return AppConfig.from_dict(data)


def build_store(config: AppConfig) -> Store:
    try:
        pool = Pool(config.store.pool) if config.store.pool is not None else Pool()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid database configuration: {e}") from e
    return Store(pool=pool, config=StoreConfig(timeouts=config.store.timeouts))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def run_relays(args: argparse.Namespace, registry: RelayRegistry, config: AppConfig) -> int:
    if args.action == "list":
        for entry in await registry.list():
            print(f"{'connect' if entry.connect else 'ignore '}  {entry.url}")
    elif args.action == "add":
        entry = await registry.add(args.url, connect=not args.ignore)
        print(entry.url)
    elif args.action == "remove":
        if not await registry.remove(args.url):
            logger.warning("relay_not_found", url=args.url)
            return 1
    elif args.action in ("ignore", "allow"):
        if not await registry.set_connect(args.url, args.action == "allow"):
            logger.warning("relay_not_found", url=args.url)
            return 1
    elif args.action == "replace":
        await registry.replace_all(args.connect, args.ignore)
    elif args.action == "reset":
        await registry.reset(config.session.relays)
    return 0


async def run_flares(args: argparse.Namespace, cache: ParticipantAnnotationCache) -> int:
    if args.action == "list":
        for pubkey, label in (await cache.get_all()).items():
            print(f"{pubkey}  {label}")
    elif args.action == "get":
        label = await cache.get(args.pubkey)
        if label is None:
            return 1
        print(label)
    elif args.action == "set":
        await cache.set(args.pubkey, args.label)
    elif args.action == "delete":
        if not await cache.delete(args.pubkey):
            return 1
    elif args.action == "clear":
        print(await cache.clear())
    return 0


def run_thread_id(args: argparse.Namespace, config: AppConfig) -> int:
    thread_config = config.threads
    if args.salt is not None:
        thread_config = ThreadConfig(salt=args.salt, include_self=thread_config.include_self)
    threads = ThreadAddressing(thread_config, self_pubkey=args.self_pubkey)
    print(threads.thread_id(args.pubkeys))
    return 0


async def run_connect(args: argparse.Namespace, store: Store, config: AppConfig) -> int:
    """Load the registry, run the session and serve metrics until stopped."""
    keys = KeysConfig(keys_env=config.session.keys_env).keys if config.session.keys_env else None
    registry = RelayRegistry(store)

    CLIENT_INFO.info({"client_name": config.session.client_name or "", "version": __version__})
    metrics_server = await start_metrics_server(config.metrics)
    if config.metrics.enabled:
        logger.info(
            "metrics_server_started",
            host=config.metrics.host,
            port=config.metrics.port,
            path=config.metrics.path,
        )

    stop = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    def on_state(session: ConnectionSession, state: SessionState) -> None:
        logger.info(
            "relay_status",
            generation=session.generation,
            state=state,
            connected=session.connected_count(),
            relays=len(session.relay_urls),
        )

    try:
        async with ConnectionSessionManager(config.session, keys=keys) as manager:
            manager.add_listener(on_state)
            session = await manager.load(registry)
            if not session.relay_urls:
                logger.warning("no_autoconnect_relays", hint="run 'relaychat relays reset'")
            with contextlib.suppress(TimeoutError):
                async with asyncio.timeout(args.duration):
                    await stop.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await metrics_server.stop()
    return 0


async def main(argv: Sequence[str] | None = None) -> int:
    """Parse args, load config, and dispatch the requested command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config)

        if args.command == "thread-id":
            return run_thread_id(args, config)

        store = build_store(config)
        async with store:
            await store.ensure_schema()
            if args.command == "relays":
                return await run_relays(args, RelayRegistry(store), config)
            if args.command == "flares":
                return await run_flares(args, ParticipantAnnotationCache(store))
            return await run_connect(args, store, config)
    except RelayChatError as e:
        logger.error(f"{args.command}_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
