# dns_track_exporter/constants.py
# Version: 1.0.0
# Exporter constants - all defaults in one place for easy configuration

"""
DNS Track Exporter Constants

All hardcoded values are defined here at the top of the module for easy
visibility and modification.
"""

# =============================================================================
# DNS PROTOCOL CONSTANTS
# =============================================================================
DNS_DEFAULT_PORT = 53

# =============================================================================
# HTTP SERVER SETTINGS
# =============================================================================
DEFAULT_LISTEN_PORT = 9653
DEFAULT_LISTEN_ADDRESS = ""  # All IPv4 interfaces
METRICS_PATH = b"metrics"

# =============================================================================
# MONITORING SETTINGS
# =============================================================================
DEFAULT_INTERVAL = 30.0  # Seconds between ticks
DEFAULT_TIMEOUT = 10.0  # Seconds allowed for a single lookup
DEFAULT_CONCURRENCY = 1  # Lookups in flight per tick (1 = serial)

# =============================================================================
# METRICS SETTINGS
# =============================================================================
METRIC_NAMESPACE = "dns"
EXPORTER_INFO_NAME = "dns_track_exporter"
DEFAULT_MAX_SERIES = 0  # 0 = unbounded, series live for the process lifetime

RESPONSE_TIME_METRIC = f"{METRIC_NAMESPACE}_response_time_seconds"
RESOLUTION_SUCCESS_METRIC = f"{METRIC_NAMESPACE}_resolution_success"
RESOLVED_IP_COUNT_METRIC = f"{METRIC_NAMESPACE}_resolved_ip_count"
QUERY_TOTAL_METRIC = f"{METRIC_NAMESPACE}_query_total"
RESOLVED_IP_ADDRESS_METRIC = f"{METRIC_NAMESPACE}_resolved_ip_address"

BASE_LABELS = ("fqdn", "record_type", "dns_server")
STATUS_LABEL = "status"
ADDRESS_LABEL = "ip_address"

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"

# =============================================================================
# CLI / VALIDATION
# =============================================================================
DEFAULT_CONFIG_PATH = "config.yaml"
MIN_PORT_NUMBER = 1
MAX_PORT_NUMBER = 65535

# =============================================================================
# LOGGING
# =============================================================================
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5
