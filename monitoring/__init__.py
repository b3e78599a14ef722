"""
Monitoring infrastructure for the license guard.
Provides Prometheus metrics, structured logging and the security audit trail.
"""

from .metrics import (
    LicenseMetrics,
    SecurityMetrics,
    MetricsCollector,
    metrics_collector
)
from .logger import (
    EventType,
    LogEvent,
    StructuredFormatter,
    SecurityAuditLogger,
    configure_logging
)

__all__ = [
    'LicenseMetrics',
    'SecurityMetrics',
    'MetricsCollector',
    'metrics_collector',
    'EventType',
    'LogEvent',
    'StructuredFormatter',
    'SecurityAuditLogger',
    'configure_logging',
]
