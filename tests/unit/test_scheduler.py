#!/usr/bin/env python3
"""Unit tests for the monitoring loop"""

import logging

import pytest
from twisted.internet import defer, task

from dns_track_exporter.config import (
    DNSServer,
    ExporterConfig,
    MonitoringConfig,
    Target,
)
from dns_track_exporter.resolver import FailureKind, LookupOutcome, RecordType
from dns_track_exporter.scheduler import MonitorLoop


class FakeResolver:
    """Answers every lookup after a fixed (or per-name) delay on the clock"""

    def __init__(self, clock, delay=0.0, delays=None, broken=()):
        self.clock = clock
        self.delay = delay
        self.delays = delays or {}
        self.broken = set(broken)
        self.calls = []
        self.started_at = []
        self.in_flight = 0
        self.max_in_flight = 0

    def lookup(self, target_name, server_address, record_type, timeout, server_name=""):
        self.calls.append((target_name, server_address, record_type))
        self.started_at.append(self.clock.seconds())
        if target_name in self.broken:
            return defer.fail(RuntimeError(f"resolver blew up on {target_name}"))

        outcome = LookupOutcome(
            target_name=target_name,
            record_type=record_type,
            server_name=server_name,
            server_address=server_address,
            addresses=("192.0.2.1",),
            elapsed=0.01,
            succeeded=True,
        )
        delay = self.delays.get(target_name, self.delay)
        if not delay:
            return defer.succeed(outcome)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        d = defer.Deferred()

        def finish():
            self.in_flight -= 1
            d.callback(outcome)

        self.clock.callLater(delay, finish)
        return d


class RecordingSink:
    def __init__(self, broken=()):
        self.broken = set(broken)
        self.recorded = []

    def record(self, outcome):
        if outcome.target_name in self.broken:
            raise ValueError(f"cannot record {outcome.target_name}")
        self.recorded.append(outcome)


def make_config(fqdns=("example.com",), servers=(("google", "8.8.8.8"),),
                record_types=(RecordType.A,), interval=30.0, timeout=10.0, concurrency=1):
    return ExporterConfig(
        monitoring=MonitoringConfig(interval=interval, timeout=timeout, concurrency=concurrency),
        dns_servers=[DNSServer(name=name, address=address) for name, address in servers],
        targets=[Target(fqdn=fqdn, record_types=list(record_types)) for fqdn in fqdns],
    )


@pytest.fixture
def clock():
    return task.Clock()


def advance(clock, seconds, step=1.0):
    for _ in range(int(seconds / step)):
        clock.advance(step)


class TestTriples:
    """Test the order lookups are made in"""

    def test_targets_then_servers_then_types(self, clock):
        config = make_config(
            fqdns=("a.example", "b.example"),
            servers=(("one", "192.0.2.53"), ("system", "")),
            record_types=(RecordType.A, RecordType.AAAA),
        )
        resolver = FakeResolver(clock)
        loop = MonitorLoop(config, resolver, RecordingSink(), reactor=clock)

        loop.start()

        assert resolver.calls == [
            ("a.example", "192.0.2.53", RecordType.A),
            ("a.example", "192.0.2.53", RecordType.AAAA),
            ("a.example", "", RecordType.A),
            ("a.example", "", RecordType.AAAA),
            ("b.example", "192.0.2.53", RecordType.A),
            ("b.example", "192.0.2.53", RecordType.AAAA),
            ("b.example", "", RecordType.A),
            ("b.example", "", RecordType.AAAA),
        ]

    def test_each_triple_recorded_once_per_tick(self, clock):
        config = make_config(fqdns=("a.example", "b.example"))
        sink = RecordingSink()
        loop = MonitorLoop(config, FakeResolver(clock), sink, reactor=clock)

        loop.start()

        assert [o.target_name for o in sink.recorded] == ["a.example", "b.example"]
        assert loop.ticks_completed == 1

    def test_server_name_and_timeout_passed(self, clock):
        class Capturing(FakeResolver):
            def lookup(self, target_name, server_address, record_type, timeout, server_name=""):
                self.seen = (timeout, server_name)
                return super().lookup(
                    target_name, server_address, record_type, timeout, server_name
                )

        resolver = Capturing(clock)
        loop = MonitorLoop(make_config(timeout=2.5), resolver, RecordingSink(), reactor=clock)

        loop.start()

        assert resolver.seen == (2.5, "google")

    def test_nothing_configured(self, clock):
        sink = RecordingSink()
        loop = MonitorLoop(make_config(fqdns=()), FakeResolver(clock), sink, reactor=clock)

        loop.start()
        advance(clock, 60)

        assert sink.recorded == []
        assert loop.ticks_completed == 3


class TestSchedule:
    """Test tick timing"""

    def test_ticks_do_not_drift(self, clock):
        resolver = FakeResolver(clock, delay=5.0)
        loop = MonitorLoop(make_config(interval=30.0), resolver, RecordingSink(), reactor=clock)

        loop.start()
        advance(clock, 65)

        assert resolver.started_at == [0.0, 30.0, 60.0]

    def test_overrun_starts_next_tick_immediately(self, clock, caplog):
        resolver = FakeResolver(clock, delay=45.0)
        loop = MonitorLoop(make_config(interval=30.0), resolver, RecordingSink(), reactor=clock)

        with caplog.at_level(logging.WARNING, logger="dns_track_exporter.scheduler"):
            loop.start()
            advance(clock, 140)

        assert resolver.started_at == [0.0, 45.0, 90.0, 135.0]
        assert loop.ticks_coalesced == 1
        assert "took longer than the 30.0s interval" in caplog.text

    def test_ticks_never_overlap(self, clock):
        resolver = FakeResolver(clock, delay=45.0)
        loop = MonitorLoop(make_config(interval=30.0), resolver, RecordingSink(), reactor=clock)

        loop.start()
        for _ in range(200):
            clock.advance(1)
            assert resolver.in_flight <= 1

    def test_stop_cancels_pending_tick(self, clock):
        resolver = FakeResolver(clock)
        loop = MonitorLoop(make_config(), resolver, RecordingSink(), reactor=clock)

        loop.start()
        assert loop.running
        loop.stop()
        advance(clock, 120)

        assert not loop.running
        assert len(resolver.calls) == 1
        assert clock.getDelayedCalls() == []

    def test_stop_during_tick(self, clock):
        resolver = FakeResolver(clock, delay=5.0)
        sink = RecordingSink()
        loop = MonitorLoop(make_config(), resolver, sink, reactor=clock)

        loop.start()
        loop.stop()
        advance(clock, 60)

        assert len(sink.recorded) == 1
        assert len(resolver.calls) == 1

    def test_start_twice_is_ignored(self, clock):
        resolver = FakeResolver(clock)
        loop = MonitorLoop(make_config(), resolver, RecordingSink(), reactor=clock)

        loop.start()
        loop.start()

        assert len(resolver.calls) == 1


class TestFailures:
    """Test that one bad triple never stops the others"""

    def test_failed_outcome_is_recorded(self, clock):
        class Failing(FakeResolver):
            def lookup(self, target_name, server_address, record_type, timeout, server_name=""):
                return defer.succeed(
                    LookupOutcome(
                        target_name=target_name,
                        record_type=record_type,
                        server_name=server_name,
                        server_address=server_address,
                        elapsed=timeout,
                        succeeded=False,
                        failure_reason=f"timeout: no response within {timeout}s",
                        failure_kind=FailureKind.TIMEOUT,
                    )
                )

        sink = RecordingSink()
        loop = MonitorLoop(
            make_config(fqdns=("a.example", "b.example")), Failing(clock), sink, reactor=clock
        )

        loop.start()

        assert [o.succeeded for o in sink.recorded] == [False, False]

    def test_resolver_error_skips_only_that_triple(self, clock, caplog):
        resolver = FakeResolver(clock, broken={"a.example"})
        sink = RecordingSink()
        loop = MonitorLoop(
            make_config(fqdns=("a.example", "b.example")), resolver, sink, reactor=clock
        )

        with caplog.at_level(logging.ERROR):
            loop.start()

        assert [o.target_name for o in sink.recorded] == ["b.example"]
        assert "Lookup of a.example via google raised" in caplog.text
        assert loop.ticks_completed == 1

    def test_sink_error_is_logged(self, clock, caplog):
        sink = RecordingSink(broken={"a.example"})
        loop = MonitorLoop(
            make_config(fqdns=("a.example", "b.example")), FakeResolver(clock), sink, reactor=clock
        )

        with caplog.at_level(logging.ERROR):
            loop.start()
            advance(clock, 30)

        assert [o.target_name for o in sink.recorded] == ["b.example", "b.example"]
        assert "Failed to record outcome for a.example via 8.8.8.8" in caplog.text
        assert loop.ticks_completed == 2


class TestConcurrency:
    """Test the bounded worker pool"""

    def test_in_flight_bounded(self, clock):
        fqdns = tuple(f"host{i}.example" for i in range(6))
        resolver = FakeResolver(clock, delay=2.0)
        loop = MonitorLoop(
            make_config(fqdns=fqdns, concurrency=2), resolver, RecordingSink(), reactor=clock
        )

        loop.start()
        advance(clock, 10)

        assert resolver.max_in_flight == 2
        assert len(resolver.calls) == 6

    def test_parallel_tick_is_faster(self, clock):
        fqdns = tuple(f"host{i}.example" for i in range(4))
        resolver = FakeResolver(clock, delay=5.0)
        sink = RecordingSink()
        loop = MonitorLoop(make_config(fqdns=fqdns, concurrency=4), resolver, sink, reactor=clock)

        loop.start()
        advance(clock, 5)

        assert len(sink.recorded) == 4
        assert resolver.started_at == [0.0] * 4

    def test_recorded_in_triple_order(self, clock):
        fqdns = ("slow.example", "medium.example", "fast.example")
        resolver = FakeResolver(
            clock, delays={"slow.example": 3.0, "medium.example": 2.0, "fast.example": 1.0}
        )
        sink = RecordingSink()
        loop = MonitorLoop(make_config(fqdns=fqdns, concurrency=3), resolver, sink, reactor=clock)

        loop.start()
        advance(clock, 3)

        assert [o.target_name for o in sink.recorded] == list(fqdns)

    def test_parallel_errors_do_not_stop_tick(self, clock):
        resolver = FakeResolver(clock, delay=1.0, broken={"a.example"})
        sink = RecordingSink()
        loop = MonitorLoop(
            make_config(fqdns=("a.example", "b.example"), concurrency=2),
            resolver,
            sink,
            reactor=clock,
        )

        loop.start()
        advance(clock, 1)

        assert [o.target_name for o in sink.recorded] == ["b.example"]
        assert loop.ticks_completed == 1
