# dns_track_exporter/metrics.py
# Version: 1.0.0
# Metrics model for DNS lookup outcomes

"""
DNS Track Exporter Metrics

Folds LookupOutcomes into Prometheus-compatible gauges and counters held in a
private registry (no process/platform collectors), and serves that registry
over HTTP at /metrics.

Series are created on first observation and, by default, live for the whole
process. With max_series > 0 the least recently observed series are evicted
once the limit is exceeded.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Info
from prometheus_client.twisted import MetricsResource
from twisted.web import resource, server

from .constants import (
    ADDRESS_LABEL,
    BASE_LABELS,
    DEFAULT_LISTEN_ADDRESS,
    DEFAULT_LISTEN_PORT,
    DEFAULT_MAX_SERIES,
    EXPORTER_INFO_NAME,
    METRICS_PATH,
    QUERY_TOTAL_METRIC,
    RESOLUTION_SUCCESS_METRIC,
    RESOLVED_IP_ADDRESS_METRIC,
    RESOLVED_IP_COUNT_METRIC,
    RESPONSE_TIME_METRIC,
    STATUS_FAILURE,
    STATUS_LABEL,
    STATUS_SUCCESS,
)
from .resolver import LookupOutcome
from .version import __version__

logger = logging.getLogger(__name__)

SeriesKey = Tuple[str, Tuple[str, ...]]


@dataclass(frozen=True)
class MeasurementSeries:
    """One labelled sample as seen by a snapshot"""

    name: str
    labels: Tuple[Tuple[str, str], ...]
    value: float
    kind: str

    def label(self, key: str) -> Optional[str]:
        return dict(self.labels).get(key)


class SeriesTracker:
    """Thread-safe LRU of live series keys"""

    def __init__(self, max_series: int):
        if max_series < 1:
            raise ValueError("max_series must be at least 1")
        self.max_series = max_series
        self._series: "OrderedDict[SeriesKey, None]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = {"evictions": 0}

    def touch(self, metric_name: str, label_values: Tuple[str, ...]) -> List[SeriesKey]:
        """
        Mark a series as just observed

        Returns:
            Keys of the series that fell out of the LRU and must be removed
        """
        key = (metric_name, tuple(label_values))
        with self._lock:
            if key in self._series:
                self._series.move_to_end(key)
                return []

            self._series[key] = None
            evicted = []
            while len(self._series) > self.max_series:
                old_key, _ = self._series.popitem(last=False)
                evicted.append(old_key)
                self._stats["evictions"] += 1
            return evicted

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._series), "max_size": self.max_series, **self._stats}

    def __len__(self) -> int:
        with self._lock:
            return len(self._series)


class MetricsSink:
    """Owns every DNS measurement series and updates them from lookup outcomes"""

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        max_series: int = DEFAULT_MAX_SERIES,
    ):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.max_series = max_series
        self._tracker = SeriesTracker(max_series) if max_series > 0 else None
        self._families: Dict[str, object] = {}

        self._init_resolution_metrics()
        self._init_address_metrics()
        self._init_exporter_info()

        logger.info(f"Metrics sink initialized (series mode: {self.series_mode})")

    @property
    def series_mode(self) -> str:
        if self._tracker is None:
            return "unbounded"
        return f"lru:{self.max_series}"

    def _register(self, name: str, family):
        self._families[name] = family
        return family

    def _init_resolution_metrics(self):
        """Initialize per-lookup metrics"""
        self.response_time = self._register(
            RESPONSE_TIME_METRIC,
            Gauge(
                RESPONSE_TIME_METRIC,
                "DNS response time in seconds",
                BASE_LABELS,
                registry=self.registry,
            ),
        )

        self.resolution_success = self._register(
            RESOLUTION_SUCCESS_METRIC,
            Gauge(
                RESOLUTION_SUCCESS_METRIC,
                "DNS resolution success (1 = success, 0 = failure)",
                BASE_LABELS,
                registry=self.registry,
            ),
        )

        self.query_total = self._register(
            QUERY_TOTAL_METRIC,
            Counter(
                QUERY_TOTAL_METRIC,
                "Total number of DNS queries performed",
                BASE_LABELS + (STATUS_LABEL,),
                registry=self.registry,
            ),
        )

    def _init_address_metrics(self):
        """Initialize resolved address metrics"""
        self.resolved_ip_count = self._register(
            RESOLVED_IP_COUNT_METRIC,
            Gauge(
                RESOLVED_IP_COUNT_METRIC,
                "Number of IP addresses resolved for FQDN",
                BASE_LABELS,
                registry=self.registry,
            ),
        )

        self.resolved_ip_address = self._register(
            RESOLVED_IP_ADDRESS_METRIC,
            Gauge(
                RESOLVED_IP_ADDRESS_METRIC,
                "Resolved IP addresses for FQDN (1 = IP exists)",
                BASE_LABELS + (ADDRESS_LABEL,),
                registry=self.registry,
            ),
        )

    def _init_exporter_info(self):
        """Publish version and the active cardinality mode"""
        self.info = Info(
            EXPORTER_INFO_NAME, "DNS track exporter version and series mode", registry=self.registry
        )
        self.info.info({"version": __version__, "series_mode": self.series_mode})

    def record(self, outcome: LookupOutcome):
        """
        Fold one lookup outcome into the metrics

        Raises:
            InvalidOutcomeError: if the outcome breaks its invariant; nothing
                is updated in that case
        """
        outcome.check()
        labels = (outcome.target_name, outcome.record_type.value, outcome.server_address)

        self._set(RESPONSE_TIME_METRIC, labels, outcome.elapsed)

        if not outcome.succeeded:
            # Address count and presence keep their last values
            self._set(RESOLUTION_SUCCESS_METRIC, labels, 0)
            self._inc(QUERY_TOTAL_METRIC, labels + (STATUS_FAILURE,))
            return

        self._set(RESOLUTION_SUCCESS_METRIC, labels, 1)
        self._set(RESOLVED_IP_COUNT_METRIC, labels, len(outcome.addresses))
        self._inc(QUERY_TOTAL_METRIC, labels + (STATUS_SUCCESS,))

        for address in outcome.addresses:
            self._set(RESOLVED_IP_ADDRESS_METRIC, labels + (address,), 1)

    def _set(self, metric_name: str, label_values: Tuple[str, ...], value: float):
        self._families[metric_name].labels(*label_values).set(value)
        self._touch(metric_name, label_values)

    def _inc(self, metric_name: str, label_values: Tuple[str, ...]):
        self._families[metric_name].labels(*label_values).inc()
        self._touch(metric_name, label_values)

    def _touch(self, metric_name: str, label_values: Tuple[str, ...]):
        if self._tracker is None:
            return
        for evicted_name, evicted_labels in self._tracker.touch(metric_name, label_values):
            try:
                self._families[evicted_name].remove(*evicted_labels)
            except KeyError:
                pass  # Already gone
            logger.debug(f"Evicted series {evicted_name}{evicted_labels}")

    def snapshot(self) -> List[MeasurementSeries]:
        """Current value of every DNS series (counter _created samples excluded)"""
        series = []
        for family in self.registry.collect():
            if family.type == "info":
                continue
            for sample in family.samples:
                if sample.name.endswith("_created"):
                    continue
                series.append(
                    MeasurementSeries(
                        name=sample.name,
                        labels=tuple(sample.labels.items()),
                        value=sample.value,
                        kind=family.type,
                    )
                )
        return series

    def get_statistics(self) -> Dict[str, object]:
        """Get sink statistics"""
        stats: Dict[str, object] = {"series_mode": self.series_mode}
        if self._tracker is not None:
            stats.update(self._tracker.stats())
        return stats


class MetricsServer:
    """HTTP server for the Prometheus metrics endpoint"""

    def __init__(
        self,
        sink: MetricsSink,
        listen_address: str = DEFAULT_LISTEN_ADDRESS,
        listen_port: int = DEFAULT_LISTEN_PORT,
        reactor=None,
    ):
        if reactor is None:
            from twisted.internet import reactor
        self.sink = sink
        self.listen_address = listen_address
        self.listen_port = listen_port
        self.reactor = reactor
        self.site = None

    def build_site(self) -> server.Site:
        """Site exposing only GET /metrics"""
        root = resource.Resource()
        root.putChild(METRICS_PATH, MetricsResource(registry=self.sink.registry))
        return server.Site(root)

    def start(self):
        """Start metrics HTTP server; CannotListenError propagates to the caller"""
        self.site = self.reactor.listenTCP(
            self.listen_port, self.build_site(), interface=self.listen_address
        )
        logger.info(
            f"Metrics server listening on {self.listen_address or '0.0.0.0'}:"
            f"{self.listen_port}/metrics"
        )
        return self.site

    def stop(self):
        """Stop metrics HTTP server"""
        if self.site:
            self.site.stopListening()
            logger.info("Metrics server stopped")
