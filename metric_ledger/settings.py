"""
Collector and agent configuration.

Values come from environment variables; the CLI passes its flag values as
defaults, so an environment variable always wins over a flag.

Collector:
- ADDRESS: host:port to listen on (default: localhost:8080)
- STORE_INTERVAL: seconds between autosaves, 0 = write-through (default: 300)
- FILE_STORAGE_PATH: snapshot file, empty disables persistence
- RESTORE: load the snapshot at startup (default: true)
- ATOMIC_SNAPSHOT: temp file + rename instead of truncate-rewrite (default: false)
- SHUTDOWN_GRACE: seconds to wait for in-flight requests (default: 5)

Agent:
- ADDRESS: collector host:port (default: localhost:8080)
- POLL_INTERVAL / REPORT_INTERVAL: seconds (defaults: 2 / 10)
- REQUEST_TIMEOUT: per-request timeout in seconds (default: 10)
- REPORT_MODE: json | path (default: json)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_ADDRESS = "localhost:8080"
REPORT_MODES = ("json", "path")


def _opt(name: str, default: str) -> str:
    """Get optional environment variable with default."""
    return os.getenv(name, default)


def _opt_bool(name: str, default: bool) -> bool:
    """Parse boolean environment variable."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _opt_float(name: str, default: float) -> float:
    """Parse numeric environment variable (seconds, an optional 's' suffix is allowed)."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return float(default)
    v = v.strip()
    if v.endswith("s"):
        v = v[:-1]
    try:
        return float(v)
    except ValueError:
        raise ValueError(f"Env var {name} must be a number of seconds, got {v!r}") from None


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split host:port.

    Raises:
        ValueError: If not host:port or port outside 0-65535
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid address {address!r}, expected host:port")
    port_num = int(port)
    if port_num > 65535:
        raise ValueError(f"Invalid port in address {address!r}")
    return host or "0.0.0.0", port_num


@dataclass(frozen=True)
class CollectorSettings:
    """Collector server configuration."""

    ADDRESS: str = DEFAULT_ADDRESS
    STORE_INTERVAL: float = 300
    FILE_STORAGE_PATH: str = "/tmp/metrics-db.json"
    RESTORE: bool = True
    ATOMIC_SNAPSHOT: bool = False
    SHUTDOWN_GRACE: float = 5
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        parse_address(self.ADDRESS)
        if self.STORE_INTERVAL < 0:
            raise ValueError("STORE_INTERVAL must be >= 0")
        if self.SHUTDOWN_GRACE < 0:
            raise ValueError("SHUTDOWN_GRACE must be >= 0")

    @property
    def host_port(self) -> Tuple[str, int]:
        return parse_address(self.ADDRESS)

    @staticmethod
    def load(defaults: Optional[CollectorSettings] = None) -> CollectorSettings:
        """Load settings from environment variables on top of `defaults`."""
        d = defaults or CollectorSettings()
        return CollectorSettings(
            ADDRESS=_opt("ADDRESS", d.ADDRESS),
            STORE_INTERVAL=_opt_float("STORE_INTERVAL", d.STORE_INTERVAL),
            FILE_STORAGE_PATH=_opt("FILE_STORAGE_PATH", d.FILE_STORAGE_PATH),
            RESTORE=_opt_bool("RESTORE", d.RESTORE),
            ATOMIC_SNAPSHOT=_opt_bool("ATOMIC_SNAPSHOT", d.ATOMIC_SNAPSHOT),
            SHUTDOWN_GRACE=_opt_float("SHUTDOWN_GRACE", d.SHUTDOWN_GRACE),
            LOG_LEVEL=_opt("LOG_LEVEL", d.LOG_LEVEL),
        )


@dataclass(frozen=True)
class AgentSettings:
    """Agent configuration."""

    ADDRESS: str = DEFAULT_ADDRESS
    POLL_INTERVAL: float = 2
    REPORT_INTERVAL: float = 10
    REQUEST_TIMEOUT: float = 10
    REPORT_MODE: str = "json"
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        parse_address(self.ADDRESS)
        for name in ("POLL_INTERVAL", "REPORT_INTERVAL", "REQUEST_TIMEOUT"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.REPORT_MODE not in REPORT_MODES:
            raise ValueError(f"REPORT_MODE must be one of {REPORT_MODES}")

    @property
    def base_url(self) -> str:
        return f"http://{self.ADDRESS}"

    @staticmethod
    def load(defaults: Optional[AgentSettings] = None) -> AgentSettings:
        """Load settings from environment variables on top of `defaults`."""
        d = defaults or AgentSettings()
        return AgentSettings(
            ADDRESS=_opt("ADDRESS", d.ADDRESS),
            POLL_INTERVAL=_opt_float("POLL_INTERVAL", d.POLL_INTERVAL),
            REPORT_INTERVAL=_opt_float("REPORT_INTERVAL", d.REPORT_INTERVAL),
            REQUEST_TIMEOUT=_opt_float("REQUEST_TIMEOUT", d.REQUEST_TIMEOUT),
            REPORT_MODE=_opt("REPORT_MODE", d.REPORT_MODE),
            LOG_LEVEL=_opt("LOG_LEVEL", d.LOG_LEVEL),
        )
