#!/usr/bin/env python3
"""
Main entry point for DNS Track Exporter
Resolves configured targets periodically and serves the results on /metrics
"""

import argparse
import errno
import logging
import logging.handlers
import os
import sys

from twisted.internet.error import CannotListenError
from twisted.python import log as twisted_log

from dns_track_exporter.config import ConfigError, ExporterConfig, load_config
from dns_track_exporter.constants import (
    DEFAULT_CONFIG_PATH,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_FORMAT,
    MAX_PORT_NUMBER,
    MIN_PORT_NUMBER,
)

_twisted_observer = None


def setup_logging(log_file=None, log_level="INFO"):
    """Setup logging for the exporter and route Twisted's log events through it"""
    global _twisted_observer

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file and log_file.lower() != "none":
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, mode=0o755)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        except OSError as e:
            print(f"Warning: Could not setup file logging to {log_file}: {e}")

    # Twisted reports every DNS datagram protocol start and stop at INFO
    twisted_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    logging.getLogger("twisted").setLevel(twisted_level)

    if _twisted_observer is None:
        _twisted_observer = twisted_log.PythonLoggingObserver(loggerName="twisted")
        _twisted_observer.start()


def _validate_port(value):
    """Validate port number is in valid range"""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")
    if port < MIN_PORT_NUMBER or port > MAX_PORT_NUMBER:
        raise argparse.ArgumentTypeError(
            f"Port must be between {MIN_PORT_NUMBER} and {MAX_PORT_NUMBER}"
        )
    return port


def _validate_max_series(value):
    try:
        max_series = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid series limit: {value}")
    if max_series < 0:
        raise argparse.ArgumentTypeError("Series limit must be 0 (unbounded) or positive")
    return max_series


def _parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="DNS Track Exporter: periodically resolves domain names against "
        "a set of DNS servers and exposes latency and results as Prometheus metrics.",
    )
    parser.add_argument(
        "-c", "--config", default=DEFAULT_CONFIG_PATH, help="Path to configuration file"
    )
    parser.add_argument(
        "-p", "--port", type=_validate_port, help="Metrics listen port (overrides config)"
    )
    parser.add_argument("-l", "--logfile", help="Log file path")
    parser.add_argument(
        "-L",
        "--loglevel",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--max-series",
        type=_validate_max_series,
        help="Evict least recently observed series beyond this many "
        "(0 = keep every series; overrides config)",
    )
    parser.add_argument("-v", "--version", action="store_true", help="Show version")

    return parser.parse_args(argv)


def _handle_version_check(args):
    """Handle version check and exit if requested"""
    if args.version:
        from dns_track_exporter import __version__

        print(f"DNS Track Exporter version {__version__}")
        sys.exit(0)


def _load_configuration(config_path, logger) -> ExporterConfig:
    """Load configuration or exit with status 1"""
    logger.info(f"Loading configuration from: {config_path}")
    try:
        return load_config(config_path)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e.message}")
        if e.suggestion:
            logger.error(f"Suggestion: {e.suggestion}")
        sys.exit(1)


def _apply_overrides(config: ExporterConfig, args) -> ExporterConfig:
    """Apply command line overrides to the loaded configuration"""
    if args.port:
        config.server.port = args.port
    if args.max_series is not None:
        config.metrics.max_series = args.max_series
    return config


def _log_configuration(config: ExporterConfig, logger):
    """Log the effective configuration"""
    logger.info(f"Starting DNS track exporter on port {config.server.port}")
    logger.info(f"Monitoring interval: {config.monitoring.interval}s")
    logger.info(f"DNS timeout: {config.monitoring.timeout}s")
    logger.info("  DNS servers:")
    for server in config.dns_servers:
        logger.info(f"    - {server}")
    logger.info("  Targets:")
    for target in config.targets:
        types = ", ".join(t.value for t in target.record_types) or "none"
        logger.info(f"    - {target.fqdn} [{types}]")
    if config.metrics.max_series:
        logger.info(f"  Series limit: {config.metrics.max_series} (least recently observed evicted)")
    else:
        logger.info("  Series limit: unbounded (series are never removed)")


def _handle_bind_error(error, port, address, logger):
    """Handle port binding errors with helpful messages"""
    socket_error = getattr(error, "socketError", error)
    error_msg = str(error)
    address = address or "0.0.0.0"

    if "Address already in use" in error_msg or getattr(socket_error, "errno", None) == errno.EADDRINUSE:
        logger.error(f"Port {port} is already in use on {address}")
        logger.error("Please check if another instance is running or use a different port")
    elif "Permission denied" in error_msg or getattr(socket_error, "errno", None) == errno.EACCES:
        logger.error(f"Permission denied to bind to port {port}")
        if port < 1024:
            logger.error("Ports below 1024 require root privileges")
    else:
        logger.error(f"Failed to bind to {address}:{port}: {error}")

    sys.exit(1)


def start_exporter(config: ExporterConfig, logger, reactor=None):
    """Wire resolver, sink, loop and HTTP server together and run the reactor"""
    if reactor is None:
        from twisted.internet import reactor

    from dns_track_exporter.metrics import MetricsServer, MetricsSink
    from dns_track_exporter.resolver import Resolver
    from dns_track_exporter.scheduler import MonitorLoop

    sink = MetricsSink(max_series=config.metrics.max_series)
    resolver = Resolver(reactor=reactor)
    loop = MonitorLoop(config, resolver, sink, reactor=reactor)
    metrics_server = MetricsServer(
        sink,
        listen_address=config.server.address,
        listen_port=config.server.port,
        reactor=reactor,
    )

    logger.info(f"Server starting on {config.listen_address()}")
    try:
        metrics_server.start()
    except CannotListenError as e:
        _handle_bind_error(e, config.server.port, config.server.address, logger)

    reactor.callWhenRunning(loop.start)

    logger.info("DNS Track Exporter started successfully")
    reactor.run()
    logger.info("DNS Track Exporter stopped")


def main(argv=None):
    """Main entry point"""
    args = _parse_arguments(argv)

    _handle_version_check(args)

    setup_logging(args.logfile, args.loglevel)
    logger = logging.getLogger("dns_track_exporter")

    config = _load_configuration(args.config, logger)
    config = _apply_overrides(config, args)
    _log_configuration(config, logger)

    try:
        start_exporter(config, logger)
    except Exception:
        logger.exception("Error running DNS track exporter")
        sys.exit(1)


if __name__ == "__main__":
    main()
