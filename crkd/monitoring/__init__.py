"""
Monitoring module for CRKD.

Provides Prometheus metrics for notification dispatch and retention sweeps.
"""

from .metrics import ServiceMetrics

__all__ = [
    'ServiceMetrics'
]
