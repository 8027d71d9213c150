"""HubCache - Offline-first caching proxy for web apps."""

import argparse
import logging
import signal
import sys
from threading import Event
from typing import Optional

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load_config_or_exit(config_path: str):
    from .config import ConfigError, load_config

    try:
        return load_config(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)


def _open_storage_or_exit(path: str):
    from .store import SqliteCacheStorage, StoreError

    try:
        return SqliteCacheStorage.from_path(path)
    except StoreError as e:
        logger.error("Cache storage error: %s", e)
        sys.exit(1)


def _build_interceptor(config, storage):
    from .fetcher import Fetcher
    from .interceptor import OfflineInterceptor

    fetcher = Fetcher(config.origin, timeout=config.fetch.timeout, user_agent=config.fetch.user_agent)
    return OfflineInterceptor(
        storage=storage,
        fetcher=fetcher,
        cache_name=config.cache.name,
        manifest=config.manifest,
        fallback_path=config.fallback,
        origin=config.origin,
    )


def _install_and_activate(interceptor) -> bool:
    """Run the install and activate phases. Returns False on failure."""
    from .interceptor import InstallError
    from .store import StoreError

    try:
        interceptor.install()
        deleted = interceptor.activate()
    except InstallError as e:
        logger.error("Install failed: %s", e)
        return False
    except StoreError as e:
        logger.error("Activation failed: %s", e)
        return False

    if deleted:
        logger.info("Purged %d old cache(s): %s", len(deleted), ", ".join(deleted))
    return True


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - install the cache and start the proxy."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("HubCache %s starting...", __version__)

    from .proxy import ProxyError, ProxyServer

    # 1. Load configuration
    config = _load_config_or_exit(args.config)
    logger.info("Configuration loaded from %s", args.config)
    logger.info("Caching %d resources from %s", len(config.manifest), config.origin)

    # 2. Open cache storage
    storage = _open_storage_or_exit(config.cache.path)
    logger.info("Cache storage opened at %s", config.cache.path)

    # 3. Install and activate the current cache
    interceptor = _build_interceptor(config, storage)
    if not _install_and_activate(interceptor):
        storage.close()
        sys.exit(1)

    # 4. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 5. Start proxy
    proxy = ProxyServer(config.proxy, interceptor)

    try:
        try:
            proxy.start()
        except ProxyError as e:
            logger.error("Failed to start proxy server: %s", e)
            sys.exit(1)

        logger.info("Serving offline cache '%s', waiting for shutdown signal...", config.cache.name)

        # 6. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        # 7. Cleanup
        logger.info("Shutting down components...")
        proxy.stop()
        storage.close()
        logger.info("Shutdown complete")


def _cmd_install(args: argparse.Namespace) -> None:
    """Execute the install command - pre-cache the manifest and purge old caches."""
    _setup_logging(args.verbose)

    config = _load_config_or_exit(args.config)
    storage = _open_storage_or_exit(config.cache.path)
    try:
        interceptor = _build_interceptor(config, storage)
        if not _install_and_activate(interceptor):
            sys.exit(1)
        print(f"Cached {len(config.manifest)} resources in '{config.cache.name}'.")
    finally:
        storage.close()


def _cmd_stores(args: argparse.Namespace) -> None:
    """Execute the stores command - list cache stores and entry counts."""
    from pathlib import Path

    from .store import StoreError

    config = _load_config_or_exit(args.config)

    if not Path(config.cache.path).expanduser().exists():
        print(f"Error: Cache database not found at {config.cache.path}")
        sys.exit(1)

    storage = _open_storage_or_exit(config.cache.path)
    try:
        names = storage.keys()
        if not names:
            print("No cache stores.")
            return
        for name in names:
            marker = "*" if name == config.cache.name else " "
            print(f"{marker} {name} ({storage.count(name)} entries)")
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        storage.close()


def _cmd_purge(args: argparse.Namespace) -> None:
    """Execute the purge command - delete old (or all) cache stores."""
    from .store import StoreError

    config = _load_config_or_exit(args.config)
    storage = _open_storage_or_exit(config.cache.path)
    try:
        deleted = [
            name for name in storage.keys()
            if (args.all or name != config.cache.name) and storage.delete(name)
        ]
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        storage.close()

    if deleted:
        print(f"Deleted {len(deleted)} cache store(s): {', '.join(deleted)}")
    else:
        print("Nothing to delete.")


def _cmd_service_worker(args: argparse.Namespace) -> None:
    """Execute the service-worker command - render the browser service worker."""
    from ._pwa import render_service_worker

    config = _load_config_or_exit(args.config)
    script = render_service_worker(config.cache.name, config.manifest, config.fallback)

    if args.output is None:
        sys.stdout.write(script)
        return

    try:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(script)
    except OSError as e:
        print(f"Error: Failed to write {args.output}: {e}")
        sys.exit(1)
    print(f"Service worker written to {args.output}")


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )


def main() -> None:
    """Main entry point for the hubcache package."""
    parser = argparse.ArgumentParser(
        description="HubCache - Offline-first caching proxy for web apps"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hubcache {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Install the cache and start the proxy (default)",
    )
    _add_config_argument(run_parser)
    run_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Install subcommand
    install_parser = subparsers.add_parser(
        "install",
        help="Pre-cache the manifest and purge old caches, then exit",
    )
    _add_config_argument(install_parser)
    install_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    install_parser.set_defaults(func=_cmd_install)

    # Stores subcommand
    stores_parser = subparsers.add_parser(
        "stores",
        help="List cache stores (current store marked with *)",
    )
    _add_config_argument(stores_parser)
    stores_parser.set_defaults(func=_cmd_stores)

    # Purge subcommand
    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete cache stores other than the current one",
    )
    _add_config_argument(purge_parser)
    purge_parser.add_argument(
        "--all",
        action="store_true",
        help="Delete every cache store, including the current one",
    )
    purge_parser.set_defaults(func=_cmd_purge)

    # Service-worker subcommand
    sw_parser = subparsers.add_parser(
        "service-worker",
        help="Render the browser service worker for the configured cache",
    )
    _add_config_argument(sw_parser)
    sw_parser.add_argument(
        "-o", "--output",
        help="Write to this file instead of stdout",
    )
    sw_parser.set_defaults(func=_cmd_service_worker)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
