"""Service configuration: defaults, an optional YAML file and environment overrides."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

ENV_PREFIX = "FFWEBAPI"
CONFIG_NAME = "ffwebapi_config"
DEFAULT_CONFIG_PATHS = (".", "/etc/ffwebapi/")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "byte": 1,
    "bytes": 1,
    "k": 1 << 10,
    "kb": 1 << 10,
    "kib": 1 << 10,
    "m": 1 << 20,
    "mb": 1 << 20,
    "mib": 1 << 20,
    "g": 1 << 30,
    "gb": 1 << 30,
    "gib": 1 << 30,
    "t": 1 << 40,
    "tb": 1 << 40,
    "tib": 1 << 40,
    "p": 1 << 50,
    "pb": 1 << 50,
    "pib": 1 << 50,
    "e": 1 << 60,
    "eb": 1 << 60,
    "eib": 1 << 60,
}
_SIZE_RE = re.compile(r"^\s*(\d+)\s*([a-z]*)\s*$")

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


class ConfigError(ValueError):
    """Raised when configuration values cannot be read or converted."""


@dataclass
class Config:
    """Runtime settings of the service."""

    ff_bin: str = "ffmpeg"
    ff_timeout: timedelta = timedelta(minutes=12, seconds=3)
    output_local_lifetime: timedelta = timedelta(hours=1, minutes=23)
    max_input_size: int = 200 * 1024 * 1024
    max_concurrency: int = 1
    throttle_cpu: float = 50.0
    throttle_freemem: int = 200 * 1024 * 1024
    throttle_freedisk: int = 200 * 1024 * 1024
    auth_enable: bool = False
    auth_key: str = "123456"
    port: str = "8080"
    base_url: str = ""
    temp_dir: str = field(default="")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``12m3s`` or ``1.5h``."""
    original = text
    text = text.strip()
    sign = 1
    if text[:1] in "+-" and text:
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {original!r}")
    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration {original!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {original!r}")
    return timedelta(seconds=sign * total)


def parse_byte_size(text: str) -> int:
    """Parse a size such as ``200MB`` into bytes (binary multiples)."""
    match = _SIZE_RE.match(text.lower())
    if not match or match.group(2) not in _SIZE_UNITS:
        raise ValueError(f"invalid byte size {text!r}")
    return int(match.group(1)) * _SIZE_UNITS[match.group(2)]


def _to_duration(key: str, value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(microseconds=value / 1000)
    try:
        return parse_duration(str(value))
    except ValueError as exc:
        raise ConfigError(f"{key}: {exc}") from exc


def _to_size(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value)
    try:
        return parse_byte_size(text)
    except ValueError:
        pass
    try:
        return int(text.strip(), 0)
    except ValueError as exc:
        raise ConfigError(f"{key}: cannot parse {text!r} as a size") from exc


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip(), 0)
    except ValueError as exc:
        raise ConfigError(f"{key}: cannot parse {value!r} as an integer") from exc


def _to_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key}: cannot parse {value!r} as a number") from exc


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value)
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key}: cannot parse {value!r} as a boolean")


_FIELDS = {
    "FF_BIN": ("ff_bin", lambda k, v: str(v)),
    "FF_TIMEOUT": ("ff_timeout", _to_duration),
    "OUTPUT_LOCAL_LIFETIME": ("output_local_lifetime", _to_duration),
    "MAX_INPUT_SIZE": ("max_input_size", _to_size),
    "MAX_CONCURRENCY": ("max_concurrency", _to_int),
    "THROTTLE_CPU": ("throttle_cpu", _to_float),
    "THROTTLE_FREEMEM": ("throttle_freemem", _to_size),
    "THROTTLE_FREEDISK": ("throttle_freedisk", _to_size),
    "AUTH_ENABLE": ("auth_enable", _to_bool),
    "AUTH_KEY": ("auth_key", lambda k, v: str(v)),
    "PORT": ("port", lambda k, v: str(v)),
    "BASE": ("base_url", lambda k, v: "" if v is None else str(v)),
}


def _read_config_file(paths: Iterable[str | os.PathLike]) -> dict[str, Any]:
    for directory in paths:
        for suffix in (".yaml", ".yml", ""):
            candidate = Path(directory) / f"{CONFIG_NAME}{suffix}"
            if candidate.is_file():
                try:
                    data = yaml.safe_load(candidate.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    raise ConfigError(f"cannot parse {candidate}: {exc}") from exc
                if data is None:
                    return {}
                if not isinstance(data, dict):
                    raise ConfigError(f"{candidate}: top level must be a mapping")
                return {str(k).upper(): v for k, v in data.items()}
    return {}


def load(
    environ: Mapping[str, str] | None = None,
    config_paths: Iterable[str | os.PathLike] | None = None,
) -> Config:
    """Build a Config from defaults, the config file and ``FFWEBAPI_*`` variables."""
    if environ is None:
        environ = os.environ
    if config_paths is None:
        config_paths = DEFAULT_CONFIG_PATHS
    raw = _read_config_file(config_paths)
    for key in _FIELDS:
        value = environ.get(f"{ENV_PREFIX}_{key}")
        if value:
            raw[key] = value
    cfg = Config()
    for key, (attr, convert) in _FIELDS.items():
        if key in raw:
            setattr(cfg, attr, convert(key, raw[key]))
    return cfg