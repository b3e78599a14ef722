"""
Attack Pattern Analysis Engine
Brute force, credential stuffing, cross-session and coordinated attack
detection over sliding windows, with introspection for the platform endpoints.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from models.security import (
    AuthAttemptEvent,
    CoordinatedAttackBatch,
    SessionEvent,
    Severity,
    Violation,
)
from monitoring.metrics import SecurityMetrics
from security import threat_scoring
from security.pattern_detectors import (
    AttackThresholds,
    BruteForceDetector,
    CoordinatedAttackDetector,
    CredentialStuffingDetector,
    CrossSessionTracker,
)
from utils.time_window import Clock, system_clock

logger = logging.getLogger(__name__)


class AttackPatternAnalysisEngine:
    """
    Facade over the four detectors.

    Each ``analyze_*`` method accepts either a typed event or a raw mapping
    (camelCase or snake_case keys) and returns the violations it produced, in
    detection order. Malformed input is treated as "no signal"; it never raises.
    """

    def __init__(self,
                 thresholds: Optional[AttackThresholds] = None,
                 metrics: Optional[SecurityMetrics] = None,
                 max_events_per_key: int = 200,
                 enabled: bool = True,
                 clock: Clock = system_clock):
        self.thresholds = thresholds or AttackThresholds()
        self.metrics = metrics
        self.clock = clock
        self._enabled = enabled
        self._state_lock = threading.Lock()

        self.brute_force = BruteForceDetector(self.thresholds, max_events_per_key)
        self.credential_stuffing = CredentialStuffingDetector(self.thresholds, max_events_per_key)
        self.cross_session = CrossSessionTracker(self.thresholds)
        self.coordinated = CoordinatedAttackDetector(self.thresholds)

        self._violation_counts: Dict[str, int] = {}
        self._events_analyzed = 0
        self.is_initialized = True

        logger.info("🛡️ [ATTACK-ANALYSIS] Attack pattern analysis engine initialized")

    @classmethod
    def from_settings(cls, settings: Any, metrics: Optional[SecurityMetrics] = None,
                      clock: Clock = system_clock) -> "AttackPatternAnalysisEngine":
        return cls(
            thresholds=AttackThresholds.from_settings(settings),
            metrics=metrics,
            max_events_per_key=settings.attack_events_per_key,
            enabled=settings.attack_analysis_enabled,
            clock=clock,
        )

    @property
    def analysis_enabled(self) -> bool:
        return self._enabled

    def set_analysis_enabled(self, enabled: bool) -> bool:
        self._enabled = bool(enabled)
        logger.info(f"🛡️ [ATTACK-ANALYSIS] Analysis {'enabled' if self._enabled else 'disabled'}")
        return self._enabled

    def _finish(self, detector: str, violations: List[Violation]) -> List[Violation]:
        with self._state_lock:
            self._events_analyzed += 1
            for violation in violations:
                name = violation.type.value
                self._violation_counts[name] = self._violation_counts.get(name, 0) + 1

        if self.metrics is not None:
            self.metrics.record_event(detector)
            for violation in violations:
                self.metrics.record_security_violation(violation.type.value, violation.severity.value)

        for violation in violations:
            log = logger.error if violation.severity in (Severity.HIGH, Severity.CRITICAL) else logger.warning
            log(f"🚨 [ATTACK-ANALYSIS] {violation.type.value} ({violation.severity.value}) key={violation.key}")
        return violations

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    def analyze_brute_force_pattern(self, event: Any) -> List[Violation]:
        """Failed-login volume and username spread per source IP."""
        if not self._enabled:
            return []
        attempt = AuthAttemptEvent.from_payload(event, self.clock())
        return self._finish(self.brute_force.name, self.brute_force.analyze(attempt))

    def analyze_credential_stuffing_pattern(self, event: Any) -> List[Violation]:
        if not self._enabled:
            return []
        attempt = AuthAttemptEvent.from_payload(event, self.clock())
        return self._finish(self.credential_stuffing.name, self.credential_stuffing.analyze(attempt))

    def analyze_authentication_attempt(self, event: Any) -> List[Violation]:
        """Feed one attempt to both the brute force and credential stuffing detectors."""
        if not self._enabled:
            return []
        attempt = AuthAttemptEvent.from_payload(event, self.clock())
        return self.analyze_brute_force_pattern(attempt) + self.analyze_credential_stuffing_pattern(attempt)

    def track_cross_session_patterns(self, event: Any) -> List[Violation]:
        if not self._enabled:
            return []
        session = SessionEvent.from_payload(event, self.clock())
        return self._finish(self.cross_session.name, self.cross_session.analyze(session))

    def detect_coordinated_attacks(self, batch: Any) -> List[Violation]:
        if not self._enabled:
            return []
        attack = CoordinatedAttackBatch.from_payload(batch, self.clock())
        return self._finish(self.coordinated.name, self.coordinated.analyze(attack))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_threat_level(pattern: Any) -> Severity:
        return threat_scoring.calculate_threat_level(pattern)

    @staticmethod
    def generate_attack_signature(attempts: Sequence[Any]) -> Dict[str, Any]:
        return threat_scoring.generate_attack_signature(attempts)

    # ------------------------------------------------------------------
    # Maintenance and introspection
    # ------------------------------------------------------------------

    def tracked_counts(self) -> Dict[str, int]:
        return {
            self.brute_force.name: len(self.brute_force),
            self.credential_stuffing.name: len(self.credential_stuffing),
            self.cross_session.name: len(self.cross_session),
            self.coordinated.name: len(self.coordinated),
        }

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict stale accumulators from every detector."""
        now = self.clock() if now is None else now
        removed = (self.brute_force.sweep(now)
                   + self.credential_stuffing.sweep(now)
                   + self.cross_session.sweep(now)
                   + self.coordinated.sweep(now))
        if self.metrics is not None:
            self.metrics.update_tracked_keys(self.tracked_counts())
        if removed:
            logger.debug(f"[ATTACK-ANALYSIS] Swept {removed} stale entries")
        return removed

    def reset(self):
        self.brute_force.reset()
        self.credential_stuffing.reset()
        self.cross_session.reset()
        self.coordinated.reset()
        with self._state_lock:
            self._violation_counts = {}
            self._events_analyzed = 0
        if self.metrics is not None:
            self.metrics.update_tracked_keys(self.tracked_counts())
        logger.info("🔄 [ATTACK-ANALYSIS] Detector state reset")

    def get_analysis_stats(self) -> Dict[str, Any]:
        with self._state_lock:
            violations = dict(self._violation_counts)
            events = self._events_analyzed
        return {
            'isInitialized': self.is_initialized,
            'analysisEnabled': self._enabled,
            'bruteForcePatterns': len(self.brute_force),
            'credentialStuffingPatterns': len(self.credential_stuffing),
            'credentialPairs': self.credential_stuffing.tracked_pairs(),
            'trackedSessions': len(self.cross_session),
            'trackedIPs': self.cross_session.tracked_ips(),
            'coordinatedAttacks': len(self.coordinated),
            'eventsAnalyzed': events,
            'violations': violations,
            'thresholds': self.thresholds.to_dict(),
        }

    def export_attack_pattern_data(self) -> Dict[str, Any]:
        """Point-in-time dump of every detector's state; passwords are never included."""
        sessions = self.cross_session.snapshot()
        return {
            'exportedAt': datetime.now(timezone.utc).isoformat(),
            'bruteForcePatterns': self.brute_force.snapshot(),
            'credentialStuffingPatterns': self.credential_stuffing.snapshot(),
            'sessionTracking': sessions['sessions'],
            'ipTracking': sessions['ips'],
            'coordinatedAttacks': self.coordinated.snapshot(),
            'stats': self.get_analysis_stats(),
        }
