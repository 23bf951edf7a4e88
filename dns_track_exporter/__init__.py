"""
DNS Track Exporter
Periodically resolves DNS targets and exposes the results as Prometheus metrics
"""

from .version import __author__, __version__

__all__ = ["__author__", "__version__"]
