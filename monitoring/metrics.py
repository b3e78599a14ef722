"""
Prometheus metrics collection for license validation and attack pattern analysis.
Tracks validation outcomes, license authority health, cache efficiency and detected violations.
"""

import threading
from typing import Any, Dict, Optional
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST
)


class LicenseMetrics:
    """
    License validation metrics.
    Tracks outcomes per request, authority calls and cache behavior.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()

        self.validations_total = Counter(
            'hrsm_license_validations_total',
            'License validations by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.authority_requests_total = Counter(
            'hrsm_license_authority_requests_total',
            'Requests sent to the license authority by result',
            ['result'],
            registry=self.registry
        )

        self.authority_duration = Histogram(
            'hrsm_license_authority_duration_seconds',
            'License authority request duration in seconds',
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry
        )

        self.cache_lookups_total = Counter(
            'hrsm_license_cache_lookups_total',
            'License validation cache lookups',
            ['result'],
            registry=self.registry
        )

        self.module_checks_total = Counter(
            'hrsm_module_license_checks_total',
            'Module license checks by module and outcome',
            ['module', 'outcome'],
            registry=self.registry
        )

        self.usage_limit_checks_total = Counter(
            'hrsm_usage_limit_checks_total',
            'Usage limit checks by limit type and outcome',
            ['limit_type', 'outcome'],
            registry=self.registry
        )

        self.rate_limit_hits_total = Counter(
            'hrsm_license_rate_limit_hits_total',
            'License check rate limit rejections',
            ['scope'],
            registry=self.registry
        )

    def record_validation(self, outcome: str):
        """Record one gateway outcome (valid, cached, offline, denied, unavailable, error...)."""
        self.validations_total.labels(outcome=outcome).inc()

    def record_authority_request(self, result: str, duration_seconds: float):
        with self._lock:
            self.authority_requests_total.labels(result=result).inc()
            self.authority_duration.observe(duration_seconds)

    def record_cache_lookup(self, result: str):
        self.cache_lookups_total.labels(result=result).inc()

    def record_module_check(self, module: str, outcome: str):
        self.module_checks_total.labels(module=module, outcome=outcome).inc()

    def record_usage_check(self, limit_type: str, outcome: str):
        self.usage_limit_checks_total.labels(limit_type=limit_type, outcome=outcome).inc()

    def record_rate_limit_hit(self, scope: str):
        self.rate_limit_hits_total.labels(scope=scope).inc()


class SecurityMetrics:
    """
    Attack pattern analysis metrics for threat detection.
    Tracks analyzed events, emitted violations and detector state size.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()

        self.events_analyzed_total = Counter(
            'hrsm_security_events_analyzed_total',
            'Events fed to the attack pattern detectors',
            ['detector'],
            registry=self.registry
        )

        self.security_violations_total = Counter(
            'hrsm_security_violations_total',
            'Total security violations detected',
            ['violation_type', 'severity'],
            registry=self.registry
        )

        self.tracked_keys = Gauge(
            'hrsm_security_tracked_keys',
            'Correlation keys currently tracked per detector',
            ['detector'],
            registry=self.registry
        )

        self.sink_failures_total = Counter(
            'hrsm_security_sink_failures_total',
            'Violation sink delivery failures',
            ['sink'],
            registry=self.registry
        )

    def record_event(self, detector: str):
        self.events_analyzed_total.labels(detector=detector).inc()

    def record_security_violation(self, violation_type: str, severity: str):
        """Record security violation."""
        self.security_violations_total.labels(
            violation_type=violation_type,
            severity=severity
        ).inc()

    def update_tracked_keys(self, counts: Dict[str, int]):
        with self._lock:
            for detector, count in counts.items():
                self.tracked_keys.labels(detector=detector).set(count)

    def record_sink_failure(self, sink: str):
        self.sink_failures_total.labels(sink=sink).inc()


class MetricsCollector:
    """
    Central metrics collector that aggregates all metric types.
    Provides a unified interface for the /metrics export.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.license_metrics = LicenseMetrics(self.registry)
        self.security_metrics = SecurityMetrics(self.registry)

    def get_metrics_output(self) -> bytes:
        """Get Prometheus-formatted metrics output."""
        return generate_latest(self.registry)

    def get_metrics_content_type(self) -> str:
        """Get content type for metrics output."""
        return CONTENT_TYPE_LATEST

    def get_summary(self) -> Dict[str, Any]:
        """Small JSON summary of the counters, used by the platform stats endpoint."""
        summary: Dict[str, Any] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name.endswith('_total'):
                    label = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                    summary.setdefault(sample.name, {})[label or "all"] = sample.value
        return summary


# Global metrics collector instance
metrics_collector = MetricsCollector()
