"""
Security models for attack pattern analysis.
Events fed to the detectors, per-key accumulators and the violations they emit.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, FrozenSet, List, Mapping, Optional, Set

from utils.time_window import to_epoch


class Severity(str, Enum):
    """Violation severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ViolationType(str, Enum):
    """Violation types emitted by the detectors."""
    BRUTE_FORCE_VOLUME = "brute_force_volume"
    BRUTE_FORCE_MULTI_TARGET = "brute_force_multi_target"
    BRUTE_FORCE_PASSWORD_VARIATION = "brute_force_password_variation"
    BRUTE_FORCE_BLOCKED = "brute_force_blocked"
    CREDENTIAL_STUFFING_VOLUME = "credential_stuffing_volume"
    CREDENTIAL_STUFFING_BREACH_DATA = "credential_stuffing_breach_data"
    CREDENTIAL_STUFFING_DISTRIBUTED = "credential_stuffing_distributed"
    SESSION_HIJACKING = "session_hijacking"
    MULTI_SESSION_ABUSE = "multi_session_abuse"
    CROSS_TENANT_SESSION_PATTERN = "cross_tenant_session_pattern"
    COORDINATED_MULTI_IP_ATTACK = "coordinated_multi_ip_attack"
    COORDINATED_MULTI_TENANT_ATTACK = "coordinated_multi_tenant_attack"
    COORDINATED_SYNCHRONIZED_ATTACK = "coordinated_synchronized_attack"
    COORDINATED_BOTNET_ATTACK = "coordinated_botnet_attack"


@dataclass(frozen=True)
class Violation:
    """
    A detected attack pattern.

    ``key`` is the correlation key the detector fired on (IP, credential pair
    fingerprint, session id or coordinated attack id). ``severity`` is fixed at
    emission time from the accumulator counters.
    """
    type: ViolationType
    severity: Severity
    key: str
    description: str
    evidence: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'type': self.type.value,
            'severity': self.severity.value,
            'key': self.key,
            'description': self.description,
            'evidence': self.evidence,
            'timestamp': datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }


# ============================================================================
# DETECTOR INPUT EVENTS
# ============================================================================

def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _string_set(value: Any) -> FrozenSet[str]:
    if value is None:
        return frozenset()
    if isinstance(value, (str, bytes)):
        value = [value]
    try:
        return frozenset(t for t in (_text(v) for v in value) if t)
    except TypeError:
        return frozenset()


@dataclass(frozen=True)
class AuthAttemptEvent:
    """One authentication attempt. Every field except the timestamp may be missing."""
    timestamp: float
    ip_address: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    success: bool = False
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    tenant_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any, now: float) -> "AuthAttemptEvent":
        """Build from a camelCase or snake_case mapping; malformed fields become None."""
        if isinstance(data, cls):
            return data
        data = data if isinstance(data, Mapping) else {}
        return cls(
            timestamp=to_epoch(data.get('timestamp'), now),
            ip_address=_text(data.get('ipAddress', data.get('ip_address'))),
            username=_text(data.get('username')),
            password=data.get('password') if isinstance(data.get('password'), str) else None,
            success=_flag(data.get('success', False)),
            user_agent=_text(data.get('userAgent', data.get('user_agent'))),
            session_id=_text(data.get('sessionId', data.get('session_id'))),
            tenant_id=_text(data.get('tenantId', data.get('tenant_id'))),
        )


@dataclass(frozen=True)
class SessionEvent:
    """A session observed from an origin (IP and user agent)."""
    timestamp: float
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    tenant_id: Optional[str] = None
    activities: tuple = ()

    @classmethod
    def from_payload(cls, data: Any, now: float) -> "SessionEvent":
        if isinstance(data, cls):
            return data
        data = data if isinstance(data, Mapping) else {}
        activities = data.get('activities')
        if not isinstance(activities, (list, tuple)):
            activities = ()
        return cls(
            timestamp=to_epoch(data.get('timestamp'), now),
            session_id=_text(data.get('sessionId', data.get('session_id'))),
            ip_address=_text(data.get('ipAddress', data.get('ip_address'))),
            user_id=_text(data.get('userId', data.get('user_id'))),
            user_agent=_text(data.get('userAgent', data.get('user_agent'))),
            tenant_id=_text(data.get('tenantId', data.get('tenant_id'))),
            activities=tuple(str(a) for a in activities),
        )


@dataclass(frozen=True)
class CoordinatedAttackBatch:
    """An aggregated batch of attack activity across sources and tenants."""
    timestamp: float
    attack_type: str = "unknown"
    source_ips: FrozenSet[str] = frozenset()
    target_tenants: FrozenSet[str] = frozenset()
    attack_signature: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any, now: float) -> "CoordinatedAttackBatch":
        if isinstance(data, cls):
            return data
        data = data if isinstance(data, Mapping) else {}
        signature = data.get('attackSignature', data.get('attack_signature'))
        payload = data.get('payload')
        return cls(
            timestamp=to_epoch(data.get('timestamp'), now),
            attack_type=_text(data.get('attackType', data.get('attack_type'))) or "unknown",
            source_ips=_string_set(data.get('sourceIPs', data.get('source_ips'))),
            target_tenants=_string_set(data.get('targetTenants', data.get('target_tenants'))),
            attack_signature=dict(signature) if isinstance(signature, Mapping) else {},
            payload=dict(payload) if isinstance(payload, Mapping) else {},
        )


# ============================================================================
# ACCUMULATORS
# ============================================================================

@dataclass
class AttemptRecord:
    """Stored form of an attempt; passwords are kept only as fingerprints."""
    timestamp: float
    username: Optional[str]
    success: bool
    user_agent: Optional[str]
    password_fingerprint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'username': self.username,
            'success': self.success,
            'userAgent': self.user_agent,
        }


@dataclass
class AttackAccumulator:
    """
    Counters for one correlation key inside one detector.

    ``record`` is the only mutator, so ``failed + successful == total`` holds
    at all times. The accumulator resets itself once a full window passes
    without activity.
    """
    key: str
    window: float
    max_events: int = 200
    total_attempts: int = 0
    failed_attempts: int = 0
    successful_attempts: int = 0
    unique_usernames: Set[str] = field(default_factory=set)
    unique_ips: Set[str] = field(default_factory=set)
    first_seen: Optional[float] = None
    last_seen: Optional[float] = None
    events: Deque[AttemptRecord] = field(default_factory=deque)
    fired_rules: Set[str] = field(default_factory=set)

    def __post_init__(self):
        if self.events.maxlen != self.max_events:
            self.events = deque(self.events, maxlen=self.max_events)

    def is_stale(self, now: float) -> bool:
        return self.last_seen is None or now - self.last_seen >= self.window

    def reset(self):
        self.total_attempts = 0
        self.failed_attempts = 0
        self.successful_attempts = 0
        self.unique_usernames = set()
        self.unique_ips = set()
        self.first_seen = None
        self.last_seen = None
        self.events.clear()
        self.fired_rules = set()

    def record(self, attempt: AttemptRecord, ip_address: Optional[str] = None):
        """Fold one attempt into the counters."""
        if self.last_seen is not None and self.is_stale(attempt.timestamp):
            self.reset()

        self.total_attempts += 1
        if attempt.success:
            self.successful_attempts += 1
        else:
            self.failed_attempts += 1

        if attempt.username:
            self.unique_usernames.add(attempt.username)
        if ip_address:
            self.unique_ips.add(ip_address)

        if self.first_seen is None:
            self.first_seen = attempt.timestamp
        self.last_seen = max(self.last_seen or attempt.timestamp, attempt.timestamp)
        self.events.append(attempt)

    @property
    def success_rate(self) -> float:
        return self.successful_attempts / self.total_attempts if self.total_attempts else 0.0

    def recent(self, cutoff: float) -> List[AttemptRecord]:
        return [e for e in self.events if e.timestamp >= cutoff]

    def fire_once(self, rule: str) -> bool:
        """True the first time ``rule`` fires for this accumulation."""
        if rule in self.fired_rules:
            return False
        self.fired_rules.add(rule)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'totalAttempts': self.total_attempts,
            'failedAttempts': self.failed_attempts,
            'successfulAttempts': self.successful_attempts,
            'uniqueUsernames': len(self.unique_usernames),
            'uniqueIPs': len(self.unique_ips),
            'firstSeen': self.first_seen,
            'lastSeen': self.last_seen,
            'firedRules': sorted(self.fired_rules),
            'recentAttempts': [e.to_dict() for e in list(self.events)[-20:]],
        }
