"""
pytest configuration for dns-track-exporter tests

This file ensures tests can find the dns_track_exporter package regardless of
environment and registers the custom markers
"""

import sys
from pathlib import Path

# Add parent directory to path so tests can import dns_track_exporter
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: starts the exporter as a subprocess")
    config.addinivalue_line(
        "markers", "network: needs live DNS (set DNS_TRACK_EXPORTER_NETWORK_TESTS=1)"
    )
