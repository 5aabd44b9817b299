from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

import httpx

from api.server import create_app, serve
from metric_agent.reporter import Reporter
from metric_agent.runner import AgentRunner
from metric_agent.sampler import AgentSnapshot, Sampler
from metric_ledger import __version__
from metric_ledger.persistence import SnapshotError, open_store
from metric_ledger.service import CollectorService
from metric_ledger.settings import DEFAULT_ADDRESS, AgentSettings, CollectorSettings

logger = logging.getLogger("metrics")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def install_signal_handlers(stop: threading.Event) -> None:
    """SIGINT/SIGTERM set `stop`; the main thread does the actual shutdown."""
    def _handler(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, stopping")
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _parse_bool(v: str) -> bool:
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def cmd_server(args) -> int:
    settings = CollectorSettings.load(CollectorSettings(
        ADDRESS=args.address,
        STORE_INTERVAL=args.store_interval,
        FILE_STORAGE_PATH=args.file_storage_path,
        RESTORE=args.restore,
        LOG_LEVEL=args.log_level,
    ))
    setup_logging(settings.LOG_LEVEL)
    logger.info(f"Collector settings: {settings}")

    try:
        store, autosaver = open_store(settings)
    except SnapshotError as e:
        logger.error(f"Cannot start collector: {e}")
        return 1

    stop = threading.Event()
    install_signal_handlers(stop)
    if autosaver is not None:
        autosaver.start()

    try:
        serve(create_app(CollectorService(store)), settings, stop)
    finally:
        if autosaver is not None:
            autosaver.stop()
        store.close()
    logger.info("Collector stopped")
    return 0


def cmd_agent(args) -> int:
    settings = AgentSettings.load(AgentSettings(
        ADDRESS=args.address,
        POLL_INTERVAL=args.poll_interval,
        REPORT_INTERVAL=args.report_interval,
        REPORT_MODE=args.mode,
        LOG_LEVEL=args.log_level,
    ))
    setup_logging(settings.LOG_LEVEL)
    logger.info(f"Agent settings: {settings}")

    snapshot = AgentSnapshot()
    stop = threading.Event()
    install_signal_handlers(stop)

    with httpx.Client(base_url=settings.base_url, timeout=settings.REQUEST_TIMEOUT) as client:
        runner = AgentRunner(
            Sampler(snapshot),
            Reporter(snapshot, client, mode=settings.REPORT_MODE),
            poll_interval=settings.POLL_INTERVAL,
            report_interval=settings.REPORT_INTERVAL,
        )
        runner.start()
        stop.wait()
        runner.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="metrics")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--log-level", default="INFO", help="Logging level (env LOG_LEVEL wins)")
    sub = p.add_subparsers(dest="cmd", required=True)

    # server
    s = sub.add_parser("server", help="Run the metric collector")
    s.add_argument("-a", dest="address", default=DEFAULT_ADDRESS, help="Listen address host:port")
    s.add_argument("-i", dest="store_interval", type=float, default=300,
                   help="Snapshot interval in seconds, 0 = write-through")
    s.add_argument("-f", dest="file_storage_path", default="/tmp/metrics-db.json",
                   help="Snapshot file path, empty disables persistence")
    s.add_argument("-r", dest="restore", type=_parse_bool, default=True,
                   help="Restore metrics from the snapshot at startup (true/false)")
    s.set_defaults(func=cmd_server)

    # agent
    a = sub.add_parser("agent", help="Run the sampling agent")
    a.add_argument("-a", dest="address", default=DEFAULT_ADDRESS, help="Collector address host:port")
    a.add_argument("-p", dest="poll_interval", type=float, default=2, help="Poll interval in seconds")
    a.add_argument("-r", dest="report_interval", type=float, default=10, help="Report interval in seconds")
    a.add_argument("--mode", choices=["json", "path"], default="json",
                   help="Wire form: gzip JSON to /update/ or path-form URLs")
    a.set_defaults(func=cmd_agent)

    return p


def main(argv=None) -> None:
    p = build_parser()
    args = p.parse_args(argv)
    try:
        code = args.func(args)
    except ValueError as e:
        p.error(str(e))
    sys.exit(code)


if __name__ == "__main__":
    main()
