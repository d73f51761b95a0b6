"""
config.py — runtime settings for the relay server and client.

Defaults live here as module constants; anything can be overridden through
RELAYCHAT_* environment variables or by the command-line runner.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 9080
MIN_PORT = 1024
MAX_PORT = 65535
DEFAULT_CONNECT_TIMEOUT = 5.0  # seconds
MAX_FRAME_SIZE = 1024 * 1024  # 1 MiB per envelope
DEFAULT_LOG_LEVEL = "INFO"


def validate_port(port) -> int:
    """Return `port` as an int, or raise ValueError if it is outside 1024-65535."""
    try:
        value = int(port)
    except (TypeError, ValueError):
        raise ValueError(f"Port must be a number between {MIN_PORT} and {MAX_PORT}, got {port!r}")
    if value < MIN_PORT or value > MAX_PORT:
        raise ValueError(f"Port must be between {MIN_PORT} and {MAX_PORT}, got {value}")
    return value


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a "host:port" connect address.

    Raises ValueError for anything that isn't exactly one host and one valid port,
    e.g. "localhost:8080" or "192.168.1.100:9080".
    """
    if not address or ":" not in address:
        raise ValueError(f"Address must look like host:port (e.g. localhost:{DEFAULT_PORT}), got {address!r}")
    parts = address.split(":")
    if len(parts) != 2 or not parts[0]:
        raise ValueError(f"Address must look like host:port (e.g. localhost:{DEFAULT_PORT}), got {address!r}")
    return parts[0], validate_port(parts[1])


@dataclass
class RelayConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    max_frame_size: int = MAX_FRAME_SIZE
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """Build a config from RELAYCHAT_* variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        cfg = cls()
        if env.get("RELAYCHAT_HOST"):
            cfg.host = env["RELAYCHAT_HOST"]
        if env.get("RELAYCHAT_PORT"):
            cfg.port = validate_port(env["RELAYCHAT_PORT"])
        if env.get("RELAYCHAT_CONNECT_TIMEOUT"):
            cfg.connect_timeout = float(env["RELAYCHAT_CONNECT_TIMEOUT"])
        if env.get("RELAYCHAT_MAX_FRAME_SIZE"):
            cfg.max_frame_size = int(env["RELAYCHAT_MAX_FRAME_SIZE"])
        if env.get("RELAYCHAT_LOG_LEVEL"):
            cfg.log_level = env["RELAYCHAT_LOG_LEVEL"].upper()
        return cfg
