"""Config loading for the queue purger.

Sources, lowest to highest precedence:
  1. Built-in defaults (purger.constants)
  2. Optional YAML file — ``--config`` flag, else ``PURGER_CONFIG`` env var,
     else ``.purger/config.yaml``. A missing file is not an error.
  3. Command-line flags (only when ``load_config`` is given an argv list)
  4. Environment variable overrides:
       AMQP_CONNECTION_STRING, AMQP_QUEUE_NAME, AMQP_JSON_PATH (non-empty wins)
       PURGER_PORT, LOG_LEVEL, JSON_LOGS

Any invalid value writes a ``CONFIG ERROR:`` line to stderr and raises
SystemExit(1); the service refuses to start on a bad config.
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional, Sequence
from urllib.parse import urlsplit

import yaml

from purger.constants import (
    AMQP_DEFAULT_PORTS,
    DEFAULT_CONNECTION_STRING,
    DEFAULT_HOST,
    DEFAULT_JSONPATH,
    DEFAULT_PORT,
    DEFAULT_QUEUE_NAME,
    DEFAULT_STARTUP_TIMEOUT_S,
    DEFAULT_WAIT_RETRY_INTERVAL_S,
    SCAN_IDLE_TIMEOUT_S,
)
from purger.scanner.extract import compile_jsonpath
from purger.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".purger/config.yaml",
]

# "1h2m3.5s", "500ms", "10s" ...
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class AmqpConfig:
    """Broker connection and target queue."""

    connection_string: str = DEFAULT_CONNECTION_STRING
    queue_name: str = DEFAULT_QUEUE_NAME

    def broker_address(self) -> tuple[str, int]:
        """Return the ``(host, port)`` probed by the readiness gate."""
        parts = urlsplit(self.connection_string)
        port = parts.port or AMQP_DEFAULT_PORTS[parts.scheme]
        return parts.hostname or "", port


@dataclass
class ScanConfig:
    """Scan engine settings."""

    jsonpath: str = DEFAULT_JSONPATH
    idle_timeout_s: float = SCAN_IDLE_TIMEOUT_S


@dataclass
class StartupConfig:
    """Readiness gate settings."""

    timeout_s: float = DEFAULT_STARTUP_TIMEOUT_S
    retry_interval_s: float = DEFAULT_WAIT_RETRY_INTERVAL_S


@dataclass
class ServerConfig:
    """Webhook listener binding."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class LogConfig:
    level: str = "INFO"
    json: bool = True


@dataclass
class Config:
    """Root configuration object.

    All fields have safe defaults; the purger can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    amqp: AmqpConfig = field(default_factory=AmqpConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    startup: StartupConfig = field(default_factory=StartupConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log: LogConfig = field(default_factory=LogConfig)
    path: Optional[str] = None  # Path to the loaded config file, if any

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.
        Duration values accept the same forms as the command-line flags.

        Raises:
            SystemExit(1): On an unparsable duration.
        """
        amqp_raw = raw.get("amqp", {}) or {}
        amqp = AmqpConfig(
            connection_string=amqp_raw.get("connection_string", DEFAULT_CONNECTION_STRING),
            queue_name=amqp_raw.get("queue_name", DEFAULT_QUEUE_NAME),
        )

        scan_raw = raw.get("scan", {}) or {}
        scan = ScanConfig(
            jsonpath=scan_raw.get("jsonpath", DEFAULT_JSONPATH),
            idle_timeout_s=_duration_value(
                scan_raw.get("idle_timeout", SCAN_IDLE_TIMEOUT_S), "scan.idle_timeout"
            ),
        )

        startup_raw = raw.get("startup", {}) or {}
        startup = StartupConfig(
            timeout_s=_duration_value(
                startup_raw.get("timeout", DEFAULT_STARTUP_TIMEOUT_S), "startup.timeout"
            ),
            retry_interval_s=_duration_value(
                startup_raw.get("retry_interval", DEFAULT_WAIT_RETRY_INTERVAL_S),
                "startup.retry_interval",
            ),
        )

        server_raw = raw.get("server", {}) or {}
        server = ServerConfig(
            host=server_raw.get("host", DEFAULT_HOST),
            port=server_raw.get("port", DEFAULT_PORT),
        )

        log_raw = raw.get("log", {}) or {}
        log = LogConfig(
            level=str(log_raw.get("level", "INFO")).upper(),
            json=bool(log_raw.get("json", True)),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            amqp=amqp,
            scan=scan,
            startup=startup,
            server=server,
            log=log,
            path=path,
        )


# ─── Durations ───────────────────────────────────────────────────────────────


def parse_duration(value: str) -> float:
    """Parse a Go-style duration (``"10s"``, ``"1m30s"``, ``"500ms"``) into seconds.

    A bare number is taken as seconds.

    Raises:
        ValueError: If *value* is empty, negative or not a duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        while pos < len(text):
            match = _DURATION_PART.match(text, pos)
            if match is None:
                raise ValueError(f"invalid duration {value!r}")
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
    if seconds < 0:
        raise ValueError(f"negative duration {value!r}")
    return seconds


def _duration_value(raw: Any, name: str) -> float:
    if isinstance(raw, bool):
        _config_error(f"{name} must be a duration, got {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return parse_duration(str(raw))
    except ValueError as exc:
        _config_error(f"{name}: {exc}")


def _duration_arg(value: str) -> float:
    """argparse type wrapper around parse_duration()."""
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


# ─── Command line ────────────────────────────────────────────────────────────


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the command-line parser. Every flag defaults to None (= not given)."""
    parser = argparse.ArgumentParser(
        prog="queue-purger",
        description="Remove one message, selected by a JSON field, from an AMQP queue on webhook.",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument(
        "--timeout", type=_duration_arg, default=None,
        help="Host wait timeout (default: 10s)",
    )
    parser.add_argument(
        "--wait-retry-interval", type=_duration_arg, default=None,
        help="Duration to wait before retrying (default: 1s)",
    )
    parser.add_argument(
        "--connection-string", default=None,
        help="AMQP connection string",
    )
    parser.add_argument(
        "--queue-name", default=None,
        help="Consume messages from the given AMQP queue name",
    )
    parser.add_argument(
        "--jsonpath", default=None,
        help="Path of JSON field to read from message queue events",
    )
    parser.add_argument(
        "--scan-idle-timeout", type=_duration_arg, default=None,
        help="End a scan when no message arrives for this long (default: 1s)",
    )
    parser.add_argument("--host", default=None, help="Webhook listen address")
    parser.add_argument("--port", type=int, default=None, help="Webhook listen port")
    return parser


def _apply_args(config: Config, args: argparse.Namespace) -> None:
    if args.timeout is not None:
        config.startup.timeout_s = args.timeout
    if args.wait_retry_interval is not None:
        config.startup.retry_interval_s = args.wait_retry_interval
    if args.connection_string is not None:
        config.amqp.connection_string = args.connection_string
    if args.queue_name is not None:
        config.amqp.queue_name = args.queue_name
    if args.jsonpath is not None:
        config.scan.jsonpath = args.jsonpath
    if args.scan_idle_timeout is not None:
        config.scan.idle_timeout_s = args.scan_idle_timeout
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(
    argv: Optional[Sequence[str]] = None,
    config_path: Optional[str] = None,
) -> Config:
    """Load and validate purger configuration.

    Args:
        argv:        Command-line arguments (without program name). ``None`` skips
                     flag parsing entirely, which is what the app lifespan does.
        config_path: Explicit YAML path; ``--config`` in *argv* takes precedence.

    Returns:
        Config with file values, flags and env overrides merged onto defaults.

    Raises:
        SystemExit(1): On YAML parse error, unsupported version, bad duration,
                       bad connection string, bad JSON path or bad port.
        SystemExit(2): On unknown or malformed flags (argparse).
    """
    args: Optional[argparse.Namespace] = None
    if argv is not None:
        args = build_arg_parser().parse_args(list(argv))
        if args.config:
            config_path = args.config

    config = _load_file(config_path)
    if args is not None:
        _apply_args(config, args)
    _apply_env_overrides(config)
    _validate(config)

    logger.info(
        "Config loaded",
        path=config.path,
        queue=config.amqp.queue_name,
        jsonpath=config.scan.jsonpath,
        startup_timeout_s=config.startup.timeout_s,
    )
    return config


def _load_file(config_path: Optional[str]) -> Config:
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("PURGER_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.debug("No config file found, using defaults", searched=search_paths)
        return Config.defaults()

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(f"Failed to parse {found_path}: {exc}")
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    return Config.from_dict(raw, path=found_path)


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Empty AMQP_* values are ignored, so an exported-but-blank variable never
    clears a configured value.
    """
    if os.environ.get("AMQP_CONNECTION_STRING"):
        config.amqp.connection_string = os.environ["AMQP_CONNECTION_STRING"]
    if os.environ.get("AMQP_QUEUE_NAME"):
        config.amqp.queue_name = os.environ["AMQP_QUEUE_NAME"]
    if os.environ.get("AMQP_JSON_PATH"):
        config.scan.jsonpath = os.environ["AMQP_JSON_PATH"]

    env_port = os.environ.get("PURGER_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _config_error(f"PURGER_PORT environment variable is not a valid integer: '{env_port}'")

    env_level = os.environ.get("LOG_LEVEL")
    if env_level:
        config.log.level = env_level.upper()
    env_json = os.environ.get("JSON_LOGS")
    if env_json is not None:
        config.log.json = env_json.lower() == "true"


def _validate(config: Config) -> None:
    parts = urlsplit(config.amqp.connection_string)
    if parts.scheme not in AMQP_DEFAULT_PORTS:
        _config_error(
            f"bad connection string scheme {parts.scheme!r}: expected one of "
            f"{sorted(AMQP_DEFAULT_PORTS)}"
        )
    try:
        parts.port
    except ValueError as exc:
        _config_error(f"bad hostname provided: {config.amqp.connection_string}. {exc}")
    if not parts.hostname:
        _config_error(f"bad hostname provided: {config.amqp.connection_string}")

    if not config.amqp.queue_name:
        _config_error("queue name must not be empty")

    try:
        compile_jsonpath(config.scan.jsonpath)
    except ValueError as exc:
        _config_error(str(exc))

    if config.scan.idle_timeout_s <= 0:
        _config_error("scan idle timeout must be positive")
    if config.startup.timeout_s <= 0:
        _config_error("startup timeout must be positive")

    if not isinstance(config.server.port, int) or not 0 < config.server.port < 65536:
        _config_error(f"invalid port: {config.server.port!r}")

    if config.log.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        _config_error(f"invalid log level: {config.log.level!r}")


def _config_error(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)
