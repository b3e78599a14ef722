"""
Violation dispatch to persistence and notification collaborators.
"""

import asyncio
import inspect
import logging
from typing import Any, Iterable, List, Optional, Protocol, runtime_checkable

from models.security import Violation
from monitoring.logger import SecurityAuditLogger
from monitoring.metrics import SecurityMetrics

logger = logging.getLogger(__name__)


@runtime_checkable
class ViolationSink(Protocol):
    """Anything that accepts violations; ``handle`` may be sync or async."""

    name: str

    def handle(self, violation: Violation) -> Any:
        ...


class AuditLogSink:
    """Writes every violation to the security audit log."""

    name = 'audit_log'

    def __init__(self, audit_logger: SecurityAuditLogger):
        self.audit_logger = audit_logger

    def handle(self, violation: Violation):
        self.audit_logger.log_violation(
            violation.type.value,
            violation.severity.value,
            violation.key,
            violation.description,
            violation.evidence,
        )


class InMemoryViolationStore:
    """Bounded in-process store of recent violations, served by the platform security API."""

    name = 'memory_store'

    def __init__(self, max_items: int = 1000):
        self.max_items = max_items
        self._items: List[Violation] = []

    def handle(self, violation: Violation):
        self._items.append(violation)
        if len(self._items) > self.max_items:
            self._items = self._items[-self.max_items:]

    def recent(self, limit: int = 100) -> List[Violation]:
        return self._items[-limit:]

    def clear(self):
        self._items = []


class ViolationDispatcher:
    """
    Fans violations out to the configured sinks.

    The audit log sink is always present; a notifier (alerting, email, ...)
    is optional and passed in at construction, ``None`` meaning disabled.
    A failing sink is logged and counted; it never reaches the caller and
    never stops delivery to the other sinks.
    """

    def __init__(self,
                 sinks: Optional[Iterable[ViolationSink]] = None,
                 notifier: Optional[ViolationSink] = None,
                 metrics: Optional[SecurityMetrics] = None):
        self.sinks: List[ViolationSink] = list(sinks or [])
        self.notifier = notifier
        self.metrics = metrics

    def add_sink(self, sink: ViolationSink):
        self.sinks.append(sink)

    def _targets(self) -> List[ViolationSink]:
        return self.sinks + ([self.notifier] if self.notifier is not None else [])

    async def dispatch(self, violations: Iterable[Violation]) -> int:
        """Deliver violations in order; returns the number of failed deliveries."""
        failures = 0
        for violation in violations:
            for sink in self._targets():
                sink_name = getattr(sink, 'name', type(sink).__name__)
                try:
                    outcome = sink.handle(violation)
                    if inspect.isawaitable(outcome):
                        await outcome
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    failures += 1
                    logger.error(f"❌ [VIOLATIONS] Sink {sink_name} failed for {violation.type.value}: {e}")
                    if self.metrics is not None:
                        self.metrics.record_sink_failure(sink_name)
        return failures
