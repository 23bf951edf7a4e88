# dns_track_exporter/config.py
# Version: 1.0.0
# YAML configuration loading with defaults

"""
Exporter Configuration

Loads the YAML configuration file into dataclasses and fills in defaults for
anything missing or zero. Only the structure is checked (mappings where
mappings belong, numbers where numbers belong); problems are reported as a
ConfigError with a suggestion for fixing them.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_INTERVAL,
    DEFAULT_LISTEN_ADDRESS,
    DEFAULT_LISTEN_PORT,
    DEFAULT_MAX_SERIES,
    DEFAULT_TIMEOUT,
    MAX_PORT_NUMBER,
    MIN_PORT_NUMBER,
)
from .resolver import RecordType

logger = logging.getLogger(__name__)

# Go time.ParseDuration units
DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
DURATION_PART_PATTERN = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
BARE_NUMBER_PATTERN = re.compile(r"^\d+(?:\.\d*)?$|^\.\d+$")


class ConfigError(Exception):
    """Configuration error with helpful message"""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


@dataclass
class ServerConfig:
    """HTTP listener configuration"""

    port: int = DEFAULT_LISTEN_PORT
    address: str = DEFAULT_LISTEN_ADDRESS


@dataclass
class MonitoringConfig:
    """Resolution loop configuration (seconds)"""

    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY


@dataclass
class MetricsConfig:
    max_series: int = DEFAULT_MAX_SERIES


@dataclass
class DNSServer:
    """A DNS server to query; empty address means the system resolver"""

    name: str
    address: str = ""

    def __str__(self):
        return f"{self.name} ({self.address or 'system default'})"


@dataclass
class Target:
    """A domain name and the record types to resolve it with"""

    fqdn: str
    record_types: List[RecordType] = field(default_factory=list)


@dataclass
class ExporterConfig:
    """Complete exporter configuration"""

    server: ServerConfig = field(default_factory=ServerConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    dns_servers: List[DNSServer] = field(default_factory=list)
    targets: List[Target] = field(default_factory=list)

    def listen_address(self) -> str:
        """Listen address in host:port form (':9653' for all interfaces)"""
        return f"{self.server.address}:{self.server.port}"


def parse_duration(value: Any, field_name: str = "duration") -> float:
    """
    Parse a duration into seconds

    Accepts Go-style duration strings ('30s', '1m30s', '500ms', '2h') and
    plain numbers, which are taken as seconds. None and zero give 0.0.

    Raises:
        ConfigError: for unparseable or negative durations
    """
    suggestion = "Use a number of seconds or a duration like 30s, 1m30s or 500ms"

    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a duration, got '{value}'", suggestion)

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        seconds = _parse_duration_string(value.strip(), field_name, suggestion)
    else:
        raise ConfigError(f"{field_name} must be a duration, got '{value}'", suggestion)

    if seconds < 0:
        raise ConfigError(f"{field_name} must not be negative, got '{value}'", suggestion)
    return seconds


def _parse_duration_string(text: str, field_name: str, suggestion: str) -> float:
    if not text:
        return 0.0

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if BARE_NUMBER_PATTERN.match(text):
        return sign * float(text)

    total = 0.0
    position = 0
    while position < len(text):
        match = DURATION_PART_PATTERN.match(text, position)
        if not match:
            raise ConfigError(f"Invalid {field_name} '{text}'", suggestion)
        total += float(match.group(1)) * DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


def _require_mapping(value: Any, where: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(
            f"'{where}' must be a mapping, got {type(value).__name__}",
            f"Write '{where}:' followed by indented 'key: value' lines",
        )
    return value


def _require_list(value: Any, where: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(
            f"'{where}' must be a list, got {type(value).__name__}",
            f"Write each entry of '{where}' on its own line starting with '- '",
        )
    return value


def _get_int(section: Dict[str, Any], key: str, where: str, default: int) -> int:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{where}.{key}' must be a whole number, got '{value}'")
    return value


def _parse_server(section: Dict[str, Any]) -> ServerConfig:
    port = _get_int(section, "port", "server", 0) or DEFAULT_LISTEN_PORT
    if not MIN_PORT_NUMBER <= port <= MAX_PORT_NUMBER:
        raise ConfigError(
            f"'server.port' must be between {MIN_PORT_NUMBER} and {MAX_PORT_NUMBER}",
            f"Got '{port}'",
        )
    address = section.get("address") or DEFAULT_LISTEN_ADDRESS
    return ServerConfig(port=port, address=str(address))


def _parse_monitoring(section: Dict[str, Any]) -> MonitoringConfig:
    interval = parse_duration(section.get("interval"), "monitoring.interval") or DEFAULT_INTERVAL
    timeout = parse_duration(section.get("timeout"), "monitoring.timeout") or DEFAULT_TIMEOUT
    concurrency = _get_int(section, "concurrency", "monitoring", DEFAULT_CONCURRENCY)
    if concurrency < 1:
        raise ConfigError(
            "'monitoring.concurrency' must be at least 1", f"Got '{concurrency}'"
        )
    return MonitoringConfig(interval=interval, timeout=timeout, concurrency=concurrency)


def _parse_metrics(section: Dict[str, Any]) -> MetricsConfig:
    max_series = _get_int(section, "max_series", "metrics", DEFAULT_MAX_SERIES)
    if max_series < 0:
        raise ConfigError(
            "'metrics.max_series' must not be negative",
            "Use 0 to keep every series for the lifetime of the process",
        )
    return MetricsConfig(max_series=max_series)


def _parse_dns_servers(entries: List[Any]) -> List[DNSServer]:
    servers = []
    for i, entry in enumerate(entries):
        entry = _require_mapping(entry, f"dns_servers[{i}]")
        address = entry.get("address")
        address = "" if address is None else str(address).strip()
        name = entry.get("name")
        name = str(name) if name else (address or "system")
        servers.append(DNSServer(name=name, address=address))
    return servers


def _parse_targets(entries: List[Any]) -> List[Target]:
    targets = []
    for i, entry in enumerate(entries):
        entry = _require_mapping(entry, f"targets[{i}]")
        fqdn = entry.get("fqdn")
        if not fqdn or not isinstance(fqdn, str):
            raise ConfigError(
                f"'targets[{i}]' is missing required 'fqdn' field",
                "Add 'fqdn: <domain name>' to this target",
            )

        raw_types = entry.get("record_types")
        if isinstance(raw_types, str):
            raw_types = [raw_types]
        raw_types = _require_list(raw_types, f"targets[{i}].record_types")

        record_types = []
        for raw_type in raw_types:
            try:
                record_types.append(RecordType.parse(raw_type))
            except ValueError as e:
                raise ConfigError(f"In target '{fqdn}': {e}", "Use A, AAAA or \"\" (both)")

        if not record_types:
            logger.warning(f"Target {fqdn} has no record_types and will not be resolved")
        targets.append(Target(fqdn=fqdn.strip(), record_types=record_types))
    return targets


def parse_config(data: Any) -> ExporterConfig:
    """Build an ExporterConfig from already-parsed YAML data"""
    data = _require_mapping(data, "<root>")

    config = ExporterConfig(
        server=_parse_server(_require_mapping(data.get("server"), "server")),
        monitoring=_parse_monitoring(_require_mapping(data.get("monitoring"), "monitoring")),
        metrics=_parse_metrics(_require_mapping(data.get("metrics"), "metrics")),
        dns_servers=_parse_dns_servers(_require_list(data.get("dns_servers"), "dns_servers")),
        targets=_parse_targets(_require_list(data.get("targets"), "targets")),
    )

    if not config.dns_servers:
        logger.warning("No dns_servers configured - nothing will be resolved")
    if not config.targets:
        logger.warning("No targets configured - nothing will be resolved")

    return config


def load_config(filename: str) -> ExporterConfig:
    """
    Load configuration from a YAML file

    Raises:
        ConfigError: if the file cannot be read, parsed or has the wrong shape
    """
    try:
        with open(filename, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(
            f"Failed to read config file {filename}: {e}",
            "Check the path passed with -c/--config",
        )
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {filename}: {e}")

    return parse_config(data)
