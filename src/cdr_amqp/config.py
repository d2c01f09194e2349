"""
CDR AMQP configuration: the immutable snapshot and the loader that builds it.

Reads config/cdr_amqp.yaml, whose single `global` section accepts:
    loguniqueid   bool    include the call's uniqueid (default no)
    loguserfield  bool    include the call's userfield (default no)
    connection    string  connection name from amqp.yaml (default "")
    queue         string  routing key to publish with (default asterisk_cdr)
    exchange      string  exchange to publish to (default "", the default exchange)

A snapshot is built completely, including a freshly opened broker handle,
before anything is installed. A failed build leaves the running configuration
untouched.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol

import yaml

from cdr_amqp.errors import CdrAmqpError, ConfigError, ConnectionUnavailable

if TYPE_CHECKING:
    from cdr_amqp.config_store import ConfigStore

logger = logging.getLogger(__name__)

DEFAULT_ROUTING_KEY = "asterisk_cdr"

# on-disk option name -> (snapshot field, default)
_OPTIONS: dict[str, tuple[str, Any]] = {
    "loguniqueid": ("include_unique_id", False),
    "loguserfield": ("include_user_field", False),
    "connection": ("connection_name", ""),
    "queue": ("routing_key", DEFAULT_ROUTING_KEY),
    "exchange": ("exchange", ""),
}

_TRUE = {"yes", "true", "on", "1", "y"}
_FALSE = {"no", "false", "off", "0", "n"}


class BrokerHandle(Protocol):
    """What the backend needs from a broker connection."""

    def basic_publish(
        self, exchange: str, routing_key: str, body: bytes, properties: Any, mandatory: bool = False
    ) -> None: ...

    def close(self) -> None: ...


class ConnectionSource(Protocol):
    def get_connection(self, name: str) -> Optional[BrokerHandle]: ...


@dataclass(frozen=True)
class ConfigSnapshot:
    """One complete, never-mutated configuration plus the connection it owns."""

    include_unique_id: bool = False
    include_user_field: bool = False
    connection_name: str = ""
    exchange: str = ""
    routing_key: str = DEFAULT_ROUTING_KEY
    broker_handle: Optional[BrokerHandle] = None
    config_hash: str = ""


def hash_options(options: dict[str, Any]) -> str:
    """
    Hash normalised option values.

    Same options always produce the same 64-char hex digest, regardless of
    key order. Used in log lines to identify which configuration is live.
    """
    json_str = json.dumps(options, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(json_str.encode("utf-8")).hexdigest()


def parse_options(raw_config: Any) -> dict[str, Any]:
    """
    Validate a parsed cdr_amqp.yaml document and apply defaults.

    Args:
        raw_config: Result of yaml.safe_load(); None is treated as empty.

    Returns:
        Dict keyed by snapshot field name (include_unique_id, routing_key, ...).

    Raises:
        ConfigError: On unknown sections/options or wrongly typed values.
    """
    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("cdr_amqp configuration must be a mapping")

    unknown_sections = set(raw_config) - {"global"}
    if unknown_sections:
        raise ConfigError(f"Unknown section(s): {', '.join(sorted(map(str, unknown_sections)))}")

    section = raw_config.get("global") or {}
    if not isinstance(section, dict):
        raise ConfigError("'global' section must be a mapping")

    options = {field: default for field, default in _OPTIONS.values()}
    for key, value in section.items():
        if key not in _OPTIONS:
            raise ConfigError(f"Unknown option '{key}' in global section")
        field, default = _OPTIONS[key]
        if isinstance(default, bool):
            options[field] = _parse_bool(key, value)
        elif value is None:
            options[field] = default
        elif isinstance(value, (str, int)) and not isinstance(value, bool):
            options[field] = str(value)
        else:
            raise ConfigError(f"Option '{key}' must be a string, got {type(value).__name__}")
    return options


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ConfigError(f"Option '{key}' must be a boolean, got {value!r}")


class ConfigLoader:
    """
    Builds snapshots and installs them into a ConfigStore.

    Usage:
        loader = ConfigLoader(store, connections, "config/cdr_amqp.yaml")
        loader.initial_load()     # raises on failure
        loader.reload()           # returns False on failure, old config stays
    """

    DEFAULT_CONFIG_PATH = "config/cdr_amqp.yaml"

    def __init__(
        self,
        store: "ConfigStore",
        connections: ConnectionSource,
        config_path: str = DEFAULT_CONFIG_PATH,
    ) -> None:
        self._store = store
        self._connections = connections
        self._config_path = config_path

    def load_config(self) -> Any:
        """
        Read and parse the YAML file.

        Raises:
            ConfigError: If the file cannot be read or is not valid YAML.
        """
        try:
            with open(self._config_path) as f:
                return yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read {self._config_path}: {exc}") from exc

    def build(self, raw_config: Any) -> ConfigSnapshot:
        """
        Build a snapshot from a parsed document.

        No side effect is visible until the caller installs the result. The
        broker handle is always newly obtained, even when the connection name
        did not change, so a rebuild also recovers a broken connection.

        Raises:
            ConfigError: Invalid options.
            ConnectionUnavailable: No handle could be obtained for the connection.
        """
        options = parse_options(raw_config)
        config_hash = hash_options(options)

        handle = self._connections.get_connection(options["connection_name"])
        if handle is None:
            raise ConnectionUnavailable(options["connection_name"])

        return ConfigSnapshot(broker_handle=handle, config_hash=config_hash, **options)

    def initial_load(self) -> ConfigSnapshot:
        """
        Load, build, and install the first snapshot.

        Raises:
            CdrAmqpError: Any failure; the backend must decline activation.
        """
        snapshot = self.build(self.load_config())
        self._store.install(snapshot)
        logger.info(
            "CDR AMQP config loaded | connection=%s | exchange=%r | routing_key=%s | config_hash=%s",
            snapshot.connection_name,
            snapshot.exchange,
            snapshot.routing_key,
            snapshot.config_hash[:12],
        )
        return snapshot

    def reload(self) -> bool:
        """
        Rebuild from the file and hot-swap on success.

        Returns:
            True if a new snapshot was installed. On False the previous
            configuration and connection keep serving publishes.
        """
        try:
            snapshot = self.build(self.load_config())
        except CdrAmqpError as exc:
            logger.error("CDR AMQP reload failed, keeping previous configuration: %s", exc)
            return False

        self._store.install(snapshot)
        logger.info(
            "CDR AMQP config reloaded | connection=%s | config_hash=%s",
            snapshot.connection_name,
            snapshot.config_hash[:12],
        )
        return True
