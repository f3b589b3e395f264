from __future__ import annotations

import os
from pathlib import Path
from types import SimpleNamespace
import warnings

import yaml

DEFAULT_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "config.yaml"

STANDARD_BAUD_RATES = (9600, 19200, 38400, 57600, 115200, 230400, 460800, 921600)
TRANSPORTS = ("serial", "websocket")
WIRE_FORMATS = ("json", "csv")

# Built-in values used when neither the YAML file nor the environment set a key.
_DEFAULTS: dict[str, dict] = {
    "server": {
        "host": "0.0.0.0",
        "port": 3001,
        "cors_origins": ["*"],
        "client_build_dir": "client/build",
    },
    "device": {
        "transport": "serial",
        "serial_port": "/dev/ttyUSB0",
        "baud_rate": 115200,
        "wire_format": "json",
        "open_attempts": 4,
        "open_backoff_s": 1.0,
        "reconnect_delay_s": 1.0,
        "ack_timeout_s": 1.0,
        "write_timeout_s": 1.0,
    },
    "relay": {
        "debounce_ms": 400,
        "speed_window": 10,
        "speed_full_scale": 2000.0,
        "min_interval_ms": 100,
        "max_interval_ms": 5000,
        "log_db": "logs/relay.db",
    },
    "uploads": {"dir": "uploads", "limit": 10, "max_bytes": 100 * 1024 * 1024},
    "logging": {"level": "INFO"},
}

# env var -> (attribute, type)
_ENV_OVERRIDES = {
    "HOST": ("host", str),
    "PORT": ("port", int),
    "DEVICE_TRANSPORT": ("transport", str),
    "SERIAL_PORT": ("serial_port", str),
    "BAUD_RATE": ("baud_rate", int),
    "SCROLL_DEBOUNCE_MS": ("debounce_ms", int),
    "UPLOADS_DIR": ("uploads_dir", str),
    "RELAY_LOG_DB": ("log_db", str),
}

# Keys that would collide once sections are flattened get a section prefix.
_PREFIXED = {("uploads", "dir"): "uploads_dir", ("uploads", "limit"): "uploads_limit",
             ("uploads", "max_bytes"): "upload_max_bytes", ("logging", "level"): "log_level"}


def load_config(path: str | Path) -> dict:
    """Load a YAML configuration file. Missing files yield an empty dict."""
    path = Path(path)
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def validate_config(args: SimpleNamespace) -> None:
    """Emit warnings for out-of-range or inconsistent parameters."""

    def warn(msg: str) -> None:
        warnings.warn(msg, stacklevel=2)

    if getattr(args, "transport", "serial") not in TRANSPORTS:
        warn(f"transport should be one of {TRANSPORTS}")
    if getattr(args, "wire_format", "json") not in WIRE_FORMATS:
        warn(f"wire_format should be one of {WIRE_FORMATS}")
    if getattr(args, "baud_rate", 115200) not in STANDARD_BAUD_RATES:
        warn(f"baud_rate {args.baud_rate} is not a standard rate")
    if not 50 <= getattr(args, "debounce_ms", 400) <= 2000:
        warn("debounce_ms should be between 50 and 2000")
    if getattr(args, "open_attempts", 1) < 1:
        warn("open_attempts should be >= 1")
    if getattr(args, "speed_window", 1) < 1:
        warn("speed_window should be >= 1")
    if getattr(args, "speed_full_scale", 1.0) <= 0:
        warn("speed_full_scale should be > 0")
    if getattr(args, "min_interval_ms", 0) > getattr(args, "max_interval_ms", 0):
        warn("min_interval_ms should be <= max_interval_ms")
    if not 1 <= getattr(args, "port", 3001) <= 65535:
        warn("port should be between 1 and 65535")


def apply_defaults(args: SimpleNamespace, cfg: dict) -> None:
    """Fill missing attributes in ``args`` with values from ``cfg``."""
    for section, defaults in _DEFAULTS.items():
        values = {**defaults, **(cfg.get(section) or {})}
        for key, val in values.items():
            name = _PREFIXED.get((section, key), key)
            if not hasattr(args, name) or getattr(args, name) in (None, ""):
                setattr(args, name, val)
    validate_config(args)


def apply_env(args: SimpleNamespace, environ=None) -> None:
    """Override attributes from environment variables."""
    environ = os.environ if environ is None else environ
    for var, (name, cast) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw in (None, ""):
            continue
        try:
            setattr(args, name, cast(raw))
        except ValueError:
            warnings.warn(f"ignoring invalid {var}={raw!r}", stacklevel=2)


def load_settings(path: str | Path | None = None, environ=None, **overrides) -> SimpleNamespace:
    """Build the runtime settings namespace.

    Precedence, highest first: keyword ``overrides``, environment variables,
    the YAML file, built-in defaults.
    """
    args = SimpleNamespace()
    apply_env(args, environ)
    for key, val in overrides.items():
        if val is not None:
            setattr(args, key, val)
    apply_defaults(args, load_config(path or DEFAULT_CONFIG))
    return args
