"""
Tests for configuration loading and the CLI wiring.
"""

import socket
import threading

import httpx
import pytest

from api.server import create_app, serve
from cli.main import build_parser
from metric_ledger.service import CollectorService
from metric_ledger.settings import AgentSettings, CollectorSettings, parse_address
from metric_ledger.store import MemoryStore


class TestAddress:

    def test_host_port(self):
        assert parse_address("localhost:8080") == ("localhost", 8080)

    def test_empty_host_binds_all(self):
        assert parse_address(":9000") == ("0.0.0.0", 9000)

    @pytest.mark.parametrize("bad", ["localhost", "host:abc", "host:70000", ""])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            parse_address(bad)


class TestCollectorSettings:

    def test_defaults(self, monkeypatch):
        for name in ("ADDRESS", "STORE_INTERVAL", "FILE_STORAGE_PATH", "RESTORE"):
            monkeypatch.delenv(name, raising=False)
        s = CollectorSettings.load()
        assert s.ADDRESS == "localhost:8080"
        assert s.STORE_INTERVAL == 300
        assert s.RESTORE is True

    def test_env_wins_over_flag_defaults(self, monkeypatch):
        monkeypatch.setenv("STORE_INTERVAL", "0")
        monkeypatch.setenv("RESTORE", "false")
        monkeypatch.setenv("FILE_STORAGE_PATH", "")
        s = CollectorSettings.load(CollectorSettings(STORE_INTERVAL=60, RESTORE=True))
        assert s.STORE_INTERVAL == 0
        assert s.RESTORE is False
        assert s.FILE_STORAGE_PATH == ""

    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError):
            CollectorSettings(STORE_INTERVAL=-1)

    def test_non_numeric_env_rejected(self, monkeypatch):
        monkeypatch.setenv("STORE_INTERVAL", "often")
        with pytest.raises(ValueError, match="STORE_INTERVAL"):
            CollectorSettings.load()


class TestAgentSettings:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "1")
        monkeypatch.setenv("REPORT_INTERVAL", "5s")
        monkeypatch.setenv("ADDRESS", "collector:9090")
        s = AgentSettings.load()
        assert s.POLL_INTERVAL == 1
        assert s.REPORT_INTERVAL == 5
        assert s.base_url == "http://collector:9090"

    @pytest.mark.parametrize("field", ["POLL_INTERVAL", "REPORT_INTERVAL", "REQUEST_TIMEOUT"])
    def test_intervals_must_be_positive(self, field):
        with pytest.raises(ValueError):
            AgentSettings(**{field: 0})

    def test_report_mode_checked(self):
        with pytest.raises(ValueError):
            AgentSettings(REPORT_MODE="udp")


class TestCli:

    def test_server_flags(self):
        args = build_parser().parse_args(["server", "-a", ":9000", "-i", "0", "-f", "db.json", "-r", "false"])
        assert args.address == ":9000"
        assert args.store_interval == 0
        assert args.file_storage_path == "db.json"
        assert args.restore is False

    def test_agent_flags(self):
        args = build_parser().parse_args(["agent", "-p", "1", "-r", "4", "--mode", "path"])
        assert (args.poll_interval, args.report_interval, args.mode) == (1, 4, "path")


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestServe:
    """Real listener with graceful drain."""

    def test_serves_until_stopped(self):
        settings = CollectorSettings(ADDRESS=f"127.0.0.1:{_free_port()}", SHUTDOWN_GRACE=5)
        service = CollectorService(MemoryStore())
        stop, ready = threading.Event(), threading.Event()
        outcome = {}

        worker = threading.Thread(
            target=lambda: outcome.setdefault("drained", serve(create_app(service), settings, stop, ready))
        )
        worker.start()
        assert ready.wait(5)

        response = httpx.post(f"http://{settings.ADDRESS}/update/counter/PollCount/2", timeout=5)
        assert response.status_code == 200

        stop.set()
        worker.join(10)
        assert outcome["drained"] is True
        assert service.get_metric("PollCount").delta == 2
