# dns_track_exporter/resolver.py
# Version: 1.0.0
# Single-shot DNS lookups against arbitrary servers with a bounded timeout

"""
DNS Lookup Resolver

Runs one address lookup per call against either a specific DNS server or the
platform resolver, and folds every possible result (answers, timeouts, DNS
error codes, transport errors) into a LookupOutcome. The Deferred returned by
Resolver.lookup never errbacks.
"""

import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from twisted.internet import defer
from twisted.names import client, dns, error, hosts, resolve
from twisted.python import failure

from .constants import DNS_DEFAULT_PORT

logger = logging.getLogger(__name__)

RESOLV_CONF_PATH = "/etc/resolv.conf"
HOSTS_FILE_PATH = b"/etc/hosts"


class RecordType(Enum):
    """Address family requested by a lookup"""

    A = "A"
    AAAA = "AAAA"
    ANY = "ANY"

    @classmethod
    def parse(cls, value: Any) -> "RecordType":
        """Accept a RecordType or a config string; empty string means ANY"""
        if isinstance(value, cls):
            return value
        text = "" if value is None else str(value).strip().upper()
        if text in ("", "ANY"):
            return cls.ANY
        try:
            return cls(text)
        except ValueError:
            raise ValueError(
                f"Unknown record type '{value}' (expected 'A', 'AAAA' or '' for both)"
            )


class FailureKind(Enum):
    """Classification of a failed lookup"""

    TIMEOUT = "timeout"
    NXDOMAIN = "nxdomain"
    SERVFAIL = "servfail"
    REFUSED = "refused"
    NO_ANSWER = "no_answer"
    ERROR = "error"


class InvalidOutcomeError(ValueError):
    """A LookupOutcome violates its success/failure invariant"""


class NoAnswerError(Exception):
    """The server answered, but without address records of the requested family"""


@dataclass(frozen=True)
class LookupOutcome:
    """Result of one resolution attempt"""

    target_name: str
    record_type: RecordType
    server_name: str
    server_address: str
    addresses: Tuple[str, ...] = ()
    elapsed: float = 0.0
    succeeded: bool = False
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    def check(self) -> "LookupOutcome":
        """Raise InvalidOutcomeError unless the outcome is internally consistent"""
        if self.elapsed < 0:
            raise InvalidOutcomeError(f"Negative elapsed time {self.elapsed} for {self.target_name}")
        if not isinstance(self.record_type, RecordType):
            raise InvalidOutcomeError(f"Unknown record type {self.record_type!r}")
        if self.succeeded:
            if self.failure_reason is not None or self.failure_kind is not None:
                raise InvalidOutcomeError(
                    f"Successful outcome for {self.target_name} carries a failure reason"
                )
        else:
            if self.addresses:
                raise InvalidOutcomeError(
                    f"Failed outcome for {self.target_name} carries {len(self.addresses)} addresses"
                )
            if not self.failure_reason:
                raise InvalidOutcomeError(
                    f"Failed outcome for {self.target_name} has no failure reason"
                )
        return self


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def describe_failure(
    reason: failure.Failure, target_name: str, timeout: float
) -> Tuple[FailureKind, str]:
    """Map a lookup failure to a FailureKind and a human readable reason"""
    if reason.check(defer.TimeoutError, defer.CancelledError):
        return FailureKind.TIMEOUT, f"timeout: no response within {timeout}s"
    if reason.check(NoAnswerError):
        return FailureKind.NO_ANSWER, f"no_answer: {reason.getErrorMessage()}"
    # Order matters: the rcode errors below all subclass DomainError
    if reason.check(error.DNSQueryRefusedError):
        return FailureKind.REFUSED, f"refused: server refused query for {target_name}"
    if reason.check(error.DNSServerError):
        return FailureKind.SERVFAIL, f"servfail: server failure resolving {target_name}"
    if reason.check(error.DNSNameError):
        return FailureKind.NXDOMAIN, f"nxdomain: no such host {target_name}"
    if reason.check(error.DomainError):
        if reason.type is error.DomainError:
            return FailureKind.NXDOMAIN, f"nxdomain: no such host {target_name}"
        return FailureKind.ERROR, f"error: {reason.type.__name__} resolving {target_name}"

    message = reason.getErrorMessage() or reason.type.__name__
    return FailureKind.ERROR, f"error: {reason.type.__name__}: {message}"


class Resolver:
    """Performs single DNS address lookups and reports LookupOutcomes"""

    def __init__(
        self,
        reactor=None,
        client_factory: Optional[Callable[[str], Any]] = None,
        dns_port: int = DNS_DEFAULT_PORT,
        resolv_conf: str = RESOLV_CONF_PATH,
        hosts_file: bytes = HOSTS_FILE_PATH,
    ):
        """
        Initialize resolver

        Args:
            reactor: Reactor used for timing and timeouts (global reactor if None)
            client_factory: Callable mapping a server address ('' = system
                resolver) to an IResolver; defaults to twisted.names clients
            dns_port: Port used for directed queries
            resolv_conf: resolv.conf used by the system resolver
            hosts_file: hosts file consulted before the system resolver
        """
        if reactor is None:
            from twisted.internet import reactor
        self.reactor = reactor
        self.dns_port = dns_port
        self.resolv_conf = resolv_conf
        self.hosts_file = hosts_file
        self._client_factory = client_factory or self._create_client
        self._clients: Dict[str, Any] = {}

    def _create_client(self, server_address: str):
        """Build a twisted.names resolver for one server"""
        if server_address:
            return client.Resolver(
                servers=[(server_address, self.dns_port)], reactor=self.reactor
            )
        # No cache layer: every tick must reach the network
        return resolve.ResolverChain(
            [
                hosts.Resolver(file=self.hosts_file),
                client.Resolver(resolv=self.resolv_conf, reactor=self.reactor),
            ]
        )

    def _cached_client(self, server_address: str):
        """Get (or lazily create) the resolver for a server IP address"""
        if server_address not in self._clients:
            self._clients[server_address] = self._client_factory(server_address)
        return self._clients[server_address]

    def _client_for(self, server_address: str, timeout: float) -> defer.Deferred:
        """
        Fire with the resolver for a server

        Servers given by name are looked up through the reactor on every call,
        inside the lookup timeout.
        """
        if not server_address or is_ip_address(server_address):
            return defer.succeed(self._cached_client(server_address))
        d = self.reactor.resolve(server_address, timeout=(timeout,))
        d.addCallback(self._cached_client)
        return d

    def lookup(
        self,
        target_name: str,
        server_address: str,
        record_type,
        timeout: float,
        server_name: str = "",
    ) -> defer.Deferred:
        """
        Resolve target_name and fire with a LookupOutcome

        Args:
            target_name: Domain name to resolve
            server_address: DNS server to query directly, '' for system default
            record_type: RecordType or config string ('A', 'AAAA', '' for ANY)
            timeout: Upper bound for the lookup in seconds
            server_name: Human-friendly server name carried into the outcome

        Returns:
            Deferred firing with a LookupOutcome; never errbacks
        """
        record_type = RecordType.parse(record_type)
        server_address = server_address or ""
        started = self.reactor.seconds()

        d = defer.maybeDeferred(self._dispatch, target_name, server_address, record_type, timeout)
        d.addTimeout(timeout, self.reactor)

        def succeeded(addresses):
            outcome = LookupOutcome(
                target_name=target_name,
                record_type=record_type,
                server_name=server_name,
                server_address=server_address,
                addresses=tuple(addresses),
                elapsed=self._elapsed_since(started),
                succeeded=True,
            )
            logger.debug(
                f"{target_name} ({record_type.value}) via {server_address or 'system'}: "
                f"{len(outcome.addresses)} addresses in {outcome.elapsed * 1000:.1f}ms"
            )
            return outcome

        def failed(reason):
            kind, detail = describe_failure(reason, target_name, timeout)
            outcome = LookupOutcome(
                target_name=target_name,
                record_type=record_type,
                server_name=server_name,
                server_address=server_address,
                elapsed=self._elapsed_since(started),
                succeeded=False,
                failure_reason=detail,
                failure_kind=kind,
            )
            logger.info(
                f"{target_name} ({record_type.value}) via {server_address or 'system'} "
                f"failed after {outcome.elapsed * 1000:.1f}ms: {detail}"
            )
            return outcome

        d.addCallbacks(succeeded, failed)
        return d

    def _elapsed_since(self, started: float) -> float:
        return max(0.0, self.reactor.seconds() - started)

    def _dispatch(self, target_name, server_address, record_type, timeout):
        """Issue the query (or queries, for ANY) for one lookup"""
        d = self._client_for(server_address, timeout)
        if record_type is RecordType.ANY:
            d.addCallback(self._lookup_any, target_name, timeout)
        else:
            d.addCallback(self._lookup_family, target_name, record_type, timeout)
        return d

    def _lookup_family(self, resolver, target_name, record_type, timeout):
        """Query a single address family"""
        if record_type is RecordType.A:
            d = resolver.lookupAddress(target_name, timeout=(timeout,))
            wanted = dns.A
        else:
            d = resolver.lookupIPV6Address(target_name, timeout=(timeout,))
            wanted = dns.AAAA
        d.addCallback(self._extract_addresses, wanted, target_name, record_type)
        return d

    def _lookup_any(self, resolver, target_name, timeout):
        """Query both families concurrently and merge the answers"""
        d = defer.DeferredList(
            [
                self._lookup_family(resolver, target_name, RecordType.A, timeout),
                self._lookup_family(resolver, target_name, RecordType.AAAA, timeout),
            ],
            consumeErrors=True,
        )
        d.addCallback(self._merge_families, target_name)
        return d

    @staticmethod
    def _extract_addresses(result, wanted: int, target_name: str, record_type: RecordType):
        """Pull address records of one type out of an (answers, authority, additional) tuple"""
        answers = result[0]
        addresses = []
        for rr in answers:
            if rr.type != wanted:
                continue  # CNAMEs and anything else
            address = str(ipaddress.ip_address(rr.payload.address))
            if address not in addresses:
                addresses.append(address)
        if not addresses:
            raise NoAnswerError(f"no {record_type.value} records for {target_name}")
        return addresses

    @staticmethod
    def _merge_families(results, target_name: str):
        """IPv4 first, then IPv6; fail only if both families failed"""
        addresses = []
        failures = []
        for success, value in results:
            if success:
                addresses.extend(value)
            else:
                failures.append(value)

        if addresses:
            return addresses

        for reason in failures:
            if not reason.check(NoAnswerError):
                return reason
        return failure.Failure(NoAnswerError(f"no A or AAAA records for {target_name}"))
