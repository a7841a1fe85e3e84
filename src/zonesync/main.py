from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from dnslib.server import DNSLogger, DNSServer

from .config import ZoneSyncConfig, load_config
from .errors import ConfigError, ZoneSyncError
from .hosts import HostsWatcher, parse_hosts
from .logging_config import init_logging
from .membership import CentralClient, MembershipSource, central_token
from .names import domain_or_default, domain_to_text
from .resolver import ZoneResolver
from .resync import ResyncLoop
from .zone import ZoneBuilder, ZoneStore

logger = logging.getLogger("zonesync.main")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Publish virtual network members as DNS records"
    )
    parser.add_argument("--config", help="Path to YAML config")
    parser.add_argument("--network", help="16 hex digit network id")
    parser.add_argument("--domain", help="DNS suffix for published names")
    parser.add_argument("--hosts", dest="hosts_file", help="Hosts file to merge into the zone")
    parser.add_argument(
        "--wildcard",
        dest="wildcard_names",
        action="store_const",
        const=True,
        default=None,
        help="Publish wildcard records for member names",
    )
    parser.add_argument("--token-file", help="File containing the API token")
    parser.add_argument("--listen", dest="listen_address", help="DNS listen address")
    parser.add_argument("--port", type=int, help="DNS listen port")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single resync, print the zone as JSON and exit",
    )
    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "network": args.network,
        "domain": args.domain,
        "hosts_file": args.hosts_file,
        "wildcard_names": args.wildcard_names,
        "token_file": args.token_file,
        "listen": {"address": args.listen_address, "port": args.port},
    }


def _make_source(cfg: ZoneSyncConfig) -> MembershipSource:
    token = central_token(cfg.token_file)
    return CentralClient(
        cfg.network,
        token,
        base_url=cfg.central_url,
        timeout=cfg.request_timeout_seconds,
    )


def build_loop(cfg: ZoneSyncConfig, source: MembershipSource) -> ResyncLoop:
    """Brief: Wire a store, builder and resync loop from validated config.

    Inputs:
      - cfg: Validated configuration.
      - source: Membership source to poll.

    Outputs:
      - ResyncLoop whose ``store`` starts out empty.

    Raises:
      - HostsFileError when the configured hosts file cannot be parsed.
    """

    domain = domain_or_default(cfg.domain)
    # Fail at startup, not in the first cycle, when the hosts file is unusable.
    parse_hosts(cfg.hosts_file, domain)

    store = ZoneStore(domain)
    builder = ZoneBuilder(
        domain,
        wildcard_names=cfg.wildcard_names,
        primary_member_id=cfg.primary_member_id,
    )
    return ResyncLoop(
        source,
        builder,
        store,
        hosts_path=cfg.hosts_file,
        interval=cfg.resync_interval_seconds,
        backoff_initial=cfg.backoff_initial_seconds,
        backoff_max=cfg.backoff_max_seconds,
    )


def _start_servers(cfg: ZoneSyncConfig, store: ZoneStore) -> List[DNSServer]:
    resolver = ZoneResolver(store, ttl=cfg.ttl)
    dns_log = logging.getLogger("zonesync.dns")
    dns_logger = DNSLogger(log="-request,-reply,-truncated", prefix=False, logf=dns_log.debug)

    servers = [
        DNSServer(resolver, port=cfg.listen.port, address=cfg.listen.address, logger=dns_logger)
    ]
    if cfg.listen.tcp:
        servers.append(
            DNSServer(
                resolver,
                port=cfg.listen.port,
                address=cfg.listen.address,
                tcp=True,
                logger=dns_logger,
            )
        )
    for server in servers:
        server.start_thread()
    logger.info(
        "serving %s on %s:%d (tcp=%s)",
        domain_to_text(store.domain),
        cfg.listen.address,
        cfg.listen.port,
        cfg.listen.tcp,
    )
    return servers


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the zonesync daemon.

    Inputs:
      - argv: Command line arguments (defaults to sys.argv[1:]).

    Outputs:
      - int exit code: 0 on clean shutdown, 1 when --once fails, 2 for
        configuration errors.

    Example:
      zonesync --config /etc/zonesync.yaml
      zonesync --network 8056c2e21c000001 --domain zt --once
    """
    args = _build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config, _overrides_from_args(args))
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    init_logging(cfg.logging)
    logger.info("zonesync starting for network %s", cfg.network)

    try:
        loop = build_loop(cfg, _make_source(cfg))
    except ZoneSyncError as exc:
        logger.error("startup failed: %s", exc)
        return 2

    if args.once:
        result = loop.run_once()
        loop.source.close()
        if not result.ok:
            return 1
        print(json.dumps(loop.store.current.to_dict(), indent=2))
        return 0

    # Serve whatever the first cycle produced; failures are retried by the loop.
    loop.run_once()

    shutdown_event = threading.Event()

    def _sighup_handler(_signum, _frame):
        logger.info("Received SIGHUP, requesting resync")
        loop.trigger()

    def _shutdown_handler(signum, _frame):
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _shutdown_handler)
    signal.signal(signal.SIGINT, _shutdown_handler)
    try:
        signal.signal(signal.SIGHUP, _sighup_handler)
    except (AttributeError, ValueError):  # pragma: no cover - non-POSIX platforms
        logger.warning("Could not install SIGHUP handler on this platform")

    watcher: Optional[HostsWatcher] = None
    if cfg.hosts_file and cfg.watch_hosts_file:
        watcher = HostsWatcher(cfg.hosts_file, loop.trigger)
        if not watcher.start():
            watcher = None

    servers: List[DNSServer] = []
    try:
        servers = _start_servers(cfg, loop.store)
        loop.start()
        while not shutdown_event.is_set():
            shutdown_event.wait(1.0)
    except OSError as exc:
        logger.error("cannot start DNS listener: %s", exc)
        return 1
    finally:
        loop.stop()
        if watcher is not None:
            watcher.stop()
        for server in servers:
            server.stop()
        logger.info("zonesync stopped")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
