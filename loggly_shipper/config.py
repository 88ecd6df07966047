"""Configuration module — frozen dataclass loaded from YAML, env vars and CLI args."""

import os
import argparse
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

import yaml

from loggly_shipper.errors import ConfigurationError
from loggly_shipper.models import Level, RecordKind

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "logs-01.loggly.com:443"

# Block "type" values, named after the two appender factories of the
# Dropwizard integration.
BLOCK_TYPES = {
    "loggly": RecordKind.LOG,
    "loggly-request": RecordKind.ACCESS,
}

# camelCase keys as they appear in a Dropwizard-style appender block.
_FIELD_ALIASES = {
    "customFields": "custom_fields",
    "batchMaxRecords": "batch_max_records",
    "batchMaxAge": "batch_max_age",
    "maxAttempts": "max_attempts",
    "retryBaseDelay": "retry_base_delay",
    "requestTimeout": "request_timeout",
    "maxPending": "max_pending",
}


def parse_server(server: str) -> tuple[str, Optional[int]]:
    """Split ``host[:port]`` (IPv6 hosts in brackets) into host and port."""
    text = (server or "").strip()
    if not text:
        raise ConfigurationError("server must not be empty")

    if text.startswith("["):
        end = text.find("]")
        if end == -1:
            raise ConfigurationError(f"Malformed server address: {server!r}")
        host = text[1:end]
        rest = text[end + 1:]
        if rest and not rest.startswith(":"):
            raise ConfigurationError(f"Malformed server address: {server!r}")
        port_text = rest[1:] if rest else None
    elif text.count(":") == 1:
        host, port_text = text.split(":")
    elif ":" in text:
        raise ConfigurationError(f"IPv6 server addresses need brackets: {server!r}")
    else:
        host, port_text = text, None

    if not host or any(c in host for c in "/?#@ "):
        raise ConfigurationError(f"Malformed server address: {server!r}")

    port = None
    if port_text is not None:
        if not port_text.isdigit() or not 1 <= int(port_text) <= 65535:
            raise ConfigurationError(f"Invalid port in server address: {server!r}")
        port = int(port_text)
    return host, port


@dataclass(frozen=True)
class LogglyConfig:
    token: str = ""
    server: str = DEFAULT_SERVER
    tag: Optional[str] = None
    custom_fields: Mapping[str, str] = field(default_factory=dict)
    threshold: Level = Level.ALL
    batch_max_records: int = 100
    batch_max_age: float = 3.0
    max_attempts: int = 3
    retry_base_delay: float = 0.5
    request_timeout: float = 5.0
    max_pending: int = 0

    def __post_init__(self):
        if not self.token or not str(self.token).strip():
            raise ConfigurationError("A non-empty Loggly token is required")
        parse_server(self.server)

        try:
            threshold = Level.parse(self.threshold)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        object.__setattr__(self, "threshold", threshold)

        # Copy so later changes to the caller's dict cannot leak in.
        object.__setattr__(
            self,
            "custom_fields",
            MappingProxyType({str(k): v for k, v in dict(self.custom_fields or {}).items()}),
        )

        if self.batch_max_records < 1:
            raise ConfigurationError("batch_max_records must be at least 1")
        if self.batch_max_age <= 0:
            raise ConfigurationError("batch_max_age must be positive")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.retry_base_delay < 0:
            raise ConfigurationError("retry_base_delay must not be negative")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.max_pending < 0:
            raise ConfigurationError("max_pending must not be negative")


def resolve_tag(config: LogglyConfig, application_name: Optional[str]) -> str:
    """The configured tag, falling back to the application name."""
    tag = config.tag or application_name
    if not tag:
        raise ConfigurationError("No tag configured and no application name given")
    return tag


def unwrap_block(block: Optional[Mapping]) -> Mapping:
    """Accept either a bare block or one nested under a ``loggly:`` key."""
    if not block:
        return {}
    if "loggly" in block and isinstance(block["loggly"], Mapping):
        return block["loggly"]
    return block


def block_kind(block: Optional[Mapping]) -> RecordKind:
    """Record kind selected by a config block's ``type`` (default ``loggly``)."""
    block_type = unwrap_block(block).get("type", "loggly")
    try:
        return BLOCK_TYPES[block_type]
    except KeyError:
        raise ConfigurationError(
            f"Unknown appender type {block_type!r}, expected one of {sorted(BLOCK_TYPES)}"
        ) from None


def normalize_block(block: Optional[Mapping]) -> dict:
    """Turn a (possibly camelCase, possibly ``loggly:``-nested) mapping into
    LogglyConfig keyword arguments."""
    block = unwrap_block(block)
    known = LogglyConfig.__dataclass_fields__
    settings = {}
    for key, value in block.items():
        if key == "type":
            continue
        name = _FIELD_ALIASES.get(key, key)
        if name not in known:
            logger.warning("Ignoring unknown Loggly config key %r", key)
            continue
        settings[name] = value
    return settings


def config_from_mapping(block: Optional[Mapping]) -> LogglyConfig:
    """Build a LogglyConfig from a config block, e.g. parsed YAML."""
    try:
        return LogglyConfig(**normalize_block(block))
    except TypeError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_yaml_config(path: Optional[str]) -> dict:
    """Load a config block from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def parse_custom_fields(value: str) -> dict:
    """Parse ``key=value,key2=value2`` into a dict."""
    fields = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, val = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Malformed custom field {pair!r}, expected key=value")
        fields[key.strip()] = val.strip()
    return fields


def _env_settings() -> dict:
    env = os.environ
    settings: dict = {}
    for name, var in (("server", "LOGGLY_SERVER"), ("token", "LOGGLY_TOKEN"),
                      ("tag", "LOGGLY_TAG"), ("threshold", "LOGGLY_THRESHOLD")):
        if var in env:
            settings[name] = env[var]
    if "LOGGLY_CUSTOM_FIELDS" in env:
        settings["custom_fields"] = parse_custom_fields(env["LOGGLY_CUSTOM_FIELDS"])

    try:
        for name, var, cast in (
            ("batch_max_records", "LOGGLY_BATCH_MAX_RECORDS", int),
            ("batch_max_age", "LOGGLY_BATCH_MAX_AGE", float),
            ("max_attempts", "LOGGLY_MAX_ATTEMPTS", int),
            ("retry_base_delay", "LOGGLY_RETRY_BASE_DELAY", float),
            ("request_timeout", "LOGGLY_REQUEST_TIMEOUT", float),
            ("max_pending", "LOGGLY_MAX_PENDING", int),
        ):
            if var in env:
                settings[name] = cast(env[var])
    except ValueError as exc:
        raise ConfigurationError(f"Invalid numeric environment value: {exc}") from exc
    return settings


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Loggly shipper")
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    parser.add_argument("--server", type=str, default=None)
    parser.add_argument("--token", type=str, default=None)
    parser.add_argument("--tag", type=str, default=None)
    parser.add_argument("--threshold", type=str, default=None)
    parser.add_argument("--custom-fields", type=str, default=None)
    parser.add_argument("--batch-max-records", type=int, default=None)
    parser.add_argument("--batch-max-age", type=float, default=None)
    parser.add_argument("--application-name", type=str, default="loggly-shipper")
    parser.add_argument("--logs-per-second", type=int, default=5)
    parser.add_argument("--run-time", type=int, default=10)
    return parser


def load_settings(args: argparse.Namespace) -> dict:
    """Merge YAML block <- env vars <- CLI args (highest priority).

    The returned dict still carries the block ``type`` so callers can pick the
    record kind.
    """
    yaml_data = unwrap_block(load_yaml_config(args.config or os.environ.get("LOGGLY_CONFIG")))

    settings = normalize_block(yaml_data)
    settings.update(_env_settings())

    cli = {
        "server": args.server,
        "token": args.token,
        "tag": args.tag,
        "threshold": args.threshold,
        "batch_max_records": args.batch_max_records,
        "batch_max_age": args.batch_max_age,
    }
    if args.custom_fields is not None:
        cli["custom_fields"] = parse_custom_fields(args.custom_fields)
    settings.update({k: v for k, v in cli.items() if v is not None})

    if "type" in yaml_data:
        settings["type"] = yaml_data["type"]
    return settings


def load_config(argv=None) -> LogglyConfig:
    """Build LogglyConfig from YAML, env vars and CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_arg_parser().parse_args(argv)
    settings = load_settings(args)
    settings.pop("type", None)
    return LogglyConfig(**settings)
