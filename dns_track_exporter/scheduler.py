# dns_track_exporter/scheduler.py
# Version: 1.0.0
# Periodic resolution loop feeding the metrics sink

"""
Monitoring loop

Every tick walks targets x servers x record types in a fixed order, resolves
each triple and records the outcome. Ticks are anchored to the start time so
the schedule does not drift with the amount of work done. A tick that runs past
the next boundary is followed immediately by the next one; ticks never overlap.
"""

import logging
from typing import List, Tuple

from twisted.internet import defer

from .config import DNSServer, ExporterConfig, Target
from .resolver import RecordType

logger = logging.getLogger(__name__)

Triple = Tuple[Target, DNSServer, RecordType]


class MonitorLoop:
    """Resolves every configured triple on a fixed interval"""

    def __init__(self, config: ExporterConfig, resolver, sink, reactor=None):
        if reactor is None:
            from twisted.internet import reactor
        self.config = config
        self.resolver = resolver
        self.sink = sink
        self.reactor = reactor

        self.interval = config.monitoring.interval
        self.timeout = config.monitoring.timeout
        self.concurrency = config.monitoring.concurrency

        self._call = None
        self._running = False
        self._anchor = 0.0
        self._tick_count = 0

        self.ticks_completed = 0
        self.ticks_coalesced = 0

    @property
    def running(self) -> bool:
        return self._running

    def triples(self) -> List[Triple]:
        """All (target, server, record type) combinations: targets outer, types inner"""
        return [
            (target, server, record_type)
            for target in self.config.targets
            for server in self.config.dns_servers
            for record_type in target.record_types
        ]

    def start(self):
        """Run the first tick now and schedule the rest on the interval grid"""
        if self._running:
            logger.warning("Monitor loop already started")
            return

        self._running = True
        self._anchor = self.reactor.seconds()
        self._tick_count = 0

        mode = "serial" if self.concurrency == 1 else f"up to {self.concurrency} concurrent lookups"
        logger.info(
            f"Started DNS monitoring of {len(self.triples())} lookups every {self.interval}s "
            f"(timeout {self.timeout}s, {mode})"
        )
        self._tick()

    def stop(self):
        """Stop scheduling further ticks"""
        self._running = False
        if self._call is not None and self._call.active():
            self._call.cancel()
        self._call = None
        logger.info("Stopped DNS monitoring")

    def _tick(self):
        self._call = None
        if not self._running:
            return

        self._tick_count += 1
        d = self.run_tick()
        d.addErrback(self._tick_failed)
        d.addCallback(self._schedule_next)

    def _tick_failed(self, reason):
        logger.error(f"Unexpected error during monitoring tick: {reason.getTraceback()}")

    def _schedule_next(self, _=None):
        self.ticks_completed += 1
        if not self._running:
            return

        now = self.reactor.seconds()
        due_at = self._anchor + self._tick_count * self.interval

        if now < due_at:
            self._call = self.reactor.callLater(due_at - now, self._tick)
            return

        if now > due_at:
            # Boundaries passed during the overrun collapse into one tick
            boundary = int((now - self._anchor) // self.interval)
            coalesced = max(0, boundary - self._tick_count)
            self.ticks_coalesced += coalesced
            logger.warning(
                f"Monitoring tick took longer than the {self.interval}s interval, "
                f"starting the next one immediately ({coalesced} missed boundaries merged)"
            )
            self._tick_count = max(self._tick_count, boundary)

        self._call = self.reactor.callLater(0, self._tick)

    def run_tick(self) -> defer.Deferred:
        """Resolve and record every triple once; fires when all are done"""
        triples = self.triples()
        if self.concurrency > 1 and len(triples) > 1:
            return self._run_parallel(triples)
        return self._run_serial(triples)

    def _resolve(self, target: Target, server: DNSServer, record_type: RecordType):
        logger.info(
            f"Resolving {target.fqdn} ({record_type.value}) via {server.name} ({server.address})"
        )
        return self.resolver.lookup(
            target.fqdn, server.address, record_type, self.timeout, server_name=server.name
        )

    @defer.inlineCallbacks
    def _run_serial(self, triples: List[Triple]):
        for target, server, record_type in triples:
            try:
                outcome = yield self._resolve(target, server, record_type)
            except Exception:
                logger.exception(f"Lookup of {target.fqdn} via {server.name} raised")
                continue
            self._record(outcome)

    @defer.inlineCallbacks
    def _run_parallel(self, triples: List[Triple]):
        semaphore = defer.DeferredSemaphore(self.concurrency)
        results = yield defer.DeferredList(
            [semaphore.run(self._resolve, *triple) for triple in triples],
            consumeErrors=True,
        )

        # Record in triple order regardless of completion order
        for (target, server, _), (success, value) in zip(triples, results):
            if not success:
                logger.error(
                    f"Lookup of {target.fqdn} via {server.name} raised: {value.getTraceback()}"
                )
                continue
            self._record(value)

    def _record(self, outcome):
        try:
            self.sink.record(outcome)
        except Exception:
            logger.exception(
                f"Failed to record outcome for {outcome.target_name} "
                f"via {outcome.server_address or 'system'}"
            )
