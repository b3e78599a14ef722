"""
Sliding-window attack pattern detectors.
Each detector owns its keyed state and updates it under a per-key lock, so
unrelated IPs, sessions and credential pairs never serialize on each other.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set

from models.security import (
    AttackAccumulator,
    AttemptRecord,
    AuthAttemptEvent,
    CoordinatedAttackBatch,
    SessionEvent,
    Severity,
    Violation,
    ViolationType,
)
from security.threat_scoring import (
    analyze_synchronization,
    calculate_threat_level,
    coordination_indicators,
    coordination_level,
    generate_attack_signature,
    identify_breach_source,
    mean_pairwise_similarity,
    password_fingerprint,
    recommended_actions,
    signature_fingerprint,
)
from utils.time_window import KeyedLocks

logger = logging.getLogger(__name__)


@dataclass
class AttackThresholds:
    """Detection thresholds; windows and lockouts in seconds."""
    brute_force_failed_attempts: int = 10
    brute_force_critical_attempts: int = 20
    brute_force_unique_usernames: int = 5
    brute_force_password_variations: int = 10
    brute_force_window: float = 900
    brute_force_lockout: float = 3600

    credential_stuffing_attempts: int = 50
    credential_stuffing_unique_pairs: int = 20
    credential_stuffing_success_rate: float = 0.05
    credential_stuffing_distributed_ips: int = 3
    credential_stuffing_window: float = 3600

    session_lifetime: float = 86400
    session_ip_window: float = 3600
    session_abuse_sessions: int = 10
    session_abuse_users: int = 5
    session_cross_tenant_count: int = 3

    coordinated_min_ips: int = 4
    coordinated_min_tenants: int = 5
    coordinated_window: float = 1800
    coordinated_similarity_threshold: float = 0.7
    coordinated_sync_variance_ratio: float = 0.1

    @classmethod
    def from_settings(cls, settings: Any) -> "AttackThresholds":
        return cls(**{name: getattr(settings, name) for name in cls.__dataclass_fields__
                      if hasattr(settings, name)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bruteForce': {
                'failedAttempts': self.brute_force_failed_attempts,
                'criticalAttempts': self.brute_force_critical_attempts,
                'uniqueUsernames': self.brute_force_unique_usernames,
                'passwordVariations': self.brute_force_password_variations,
                'timeWindow': self.brute_force_window,
                'lockoutDuration': self.brute_force_lockout,
            },
            'credentialStuffing': {
                'attempts': self.credential_stuffing_attempts,
                'uniquePairs': self.credential_stuffing_unique_pairs,
                'successRate': self.credential_stuffing_success_rate,
                'distributedIPs': self.credential_stuffing_distributed_ips,
                'timeWindow': self.credential_stuffing_window,
            },
            'crossSession': {
                'sessionLifetime': self.session_lifetime,
                'timeWindow': self.session_ip_window,
                'abuseSessions': self.session_abuse_sessions,
                'abuseUsers': self.session_abuse_users,
                'crossTenantCount': self.session_cross_tenant_count,
            },
            'coordinatedAttack': {
                'minIPs': self.coordinated_min_ips,
                'minTargets': self.coordinated_min_tenants,
                'timeWindow': self.coordinated_window,
                'similarityThreshold': self.coordinated_similarity_threshold,
                'syncVarianceRatio': self.coordinated_sync_variance_ratio,
            },
        }


class _KeyedStore:
    """Keyed state map with striped per-key locks and a short structure lock."""

    def __init__(self):
        self._states: Dict[str, Any] = {}
        self._locks = KeyedLocks()
        self._structure_lock = threading.Lock()

    def lock(self, key: str) -> threading.Lock:
        return self._locks.for_key(key)

    def get(self, key: str) -> Any:
        return self._states.get(key)

    def put(self, key: str, state: Any) -> Any:
        with self._structure_lock:
            self._states[key] = state
        return state

    def keys(self) -> List[str]:
        with self._structure_lock:
            return list(self._states.keys())

    def evict_if(self, predicate) -> int:
        """Remove entries one at a time; each check holds only that key's lock."""
        removed = 0
        for key in self.keys():
            with self.lock(key):
                state = self._states.get(key)
                if state is not None and predicate(state):
                    with self._structure_lock:
                        self._states.pop(key, None)
                    removed += 1
        return removed

    def clear(self):
        with self._structure_lock:
            self._states.clear()

    def __len__(self) -> int:
        return len(self._states)


# ============================================================================
# BRUTE FORCE
# ============================================================================

@dataclass
class BruteForceState:
    accumulator: AttackAccumulator
    password_fingerprints: Set[str] = field(default_factory=set)
    blocked_until: Optional[float] = None

    def reset(self):
        self.accumulator.reset()
        self.password_fingerprints = set()
        self.blocked_until = None


class BruteForceDetector:
    """Failed-login volume, username spread and password variation per source IP."""

    name = 'brute_force'

    def __init__(self, thresholds: AttackThresholds, max_events: int = 200):
        self.thresholds = thresholds
        self.max_events = max_events
        self._store = _KeyedStore()

    def analyze(self, event: AuthAttemptEvent) -> List[Violation]:
        ip = event.ip_address
        if not ip:
            return []

        t = self.thresholds
        now = event.timestamp

        with self._store.lock(ip):
            state: BruteForceState = self._store.get(ip) or self._store.put(
                ip, BruteForceState(AttackAccumulator(ip, t.brute_force_window, self.max_events))
            )

            if state.blocked_until is not None:
                if now < state.blocked_until:
                    return [Violation(
                        type=ViolationType.BRUTE_FORCE_BLOCKED,
                        severity=Severity.HIGH,
                        key=ip,
                        description='Blocked IP attempting authentication during lockout period',
                        evidence={
                            'ipAddress': ip,
                            'blockUntil': state.blocked_until,
                            'remainingTime': state.blocked_until - now,
                        },
                        timestamp=now,
                    )]
                state.reset()

            acc = state.accumulator
            if acc.is_stale(now) and acc.last_seen is not None:
                state.reset()

            fingerprint = password_fingerprint(event.password)
            acc.record(AttemptRecord(
                timestamp=now,
                username=event.username,
                success=event.success,
                user_agent=event.user_agent,
                password_fingerprint=fingerprint,
            ), ip)
            if fingerprint:
                state.password_fingerprints.add(fingerprint)

            recent = acc.recent(now - t.brute_force_window)
            recent_failures = sum(1 for a in recent if not a.success)
            violations = []

            if recent_failures >= t.brute_force_failed_attempts:
                critical = recent_failures >= t.brute_force_critical_attempts
                # Fires once per severity tier; only the critical tier starts the lockout.
                fired = acc.fire_once('volume')
                if critical:
                    fired = acc.fire_once('volume_critical')
            else:
                critical = fired = False

            if fired:
                severity = Severity.CRITICAL if critical else Severity.HIGH
                violations.append(Violation(
                    type=ViolationType.BRUTE_FORCE_VOLUME,
                    severity=severity,
                    key=ip,
                    description='High volume brute force attack detected',
                    evidence={
                        'ipAddress': ip,
                        'failedAttempts': recent_failures,
                        'timeWindow': t.brute_force_window,
                        'uniqueUsernames': len(acc.unique_usernames),
                        'attackDuration': now - (acc.first_seen or now),
                        'threatLevel': calculate_threat_level(acc).value,
                        'attackSignature': generate_attack_signature(recent),
                    },
                    timestamp=now,
                ))
                if critical and t.brute_force_lockout > 0:
                    state.blocked_until = now + t.brute_force_lockout

            if len(acc.unique_usernames) >= t.brute_force_unique_usernames and acc.fire_once('multi_target'):
                violations.append(Violation(
                    type=ViolationType.BRUTE_FORCE_MULTI_TARGET,
                    severity=Severity.HIGH,
                    key=ip,
                    description='Brute force attack targeting multiple usernames',
                    evidence={
                        'ipAddress': ip,
                        'targetedUsernames': len(acc.unique_usernames),
                        'totalAttempts': acc.total_attempts,
                        'usernames': sorted(acc.unique_usernames)[:10],
                    },
                    timestamp=now,
                ))

            if (len(state.password_fingerprints) > t.brute_force_password_variations
                    and acc.fire_once('password_variation')):
                violations.append(Violation(
                    type=ViolationType.BRUTE_FORCE_PASSWORD_VARIATION,
                    severity=Severity.MEDIUM,
                    key=ip,
                    description='Systematic password variation detected in brute force attack',
                    evidence={
                        'ipAddress': ip,
                        'passwordVariations': len(state.password_fingerprints),
                        'username': event.username,
                    },
                    timestamp=now,
                ))

        return violations

    def is_blocked(self, ip: str, now: float) -> bool:
        with self._store.lock(ip):
            state = self._store.get(ip)
            return bool(state and state.blocked_until is not None and now < state.blocked_until)

    def get_accumulator(self, ip: str) -> Optional[AttackAccumulator]:
        state = self._store.get(ip)
        return state.accumulator if state else None

    def sweep(self, now: float) -> int:
        def expired(state: BruteForceState) -> bool:
            if state.blocked_until is not None and now < state.blocked_until:
                return False
            return state.accumulator.is_stale(now)
        return self._store.evict_if(expired)

    def snapshot(self) -> Dict[str, Any]:
        data = {}
        for key in self._store.keys():
            with self._store.lock(key):
                state = self._store.get(key)
                if state is None:
                    continue
                entry = state.accumulator.to_dict()
                entry['passwordVariations'] = len(state.password_fingerprints)
                entry['blockedUntil'] = state.blocked_until
                data[key] = entry
        return data

    def reset(self):
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


# ============================================================================
# CREDENTIAL STUFFING
# ============================================================================

@dataclass
class CredentialStuffingState:
    accumulator: AttackAccumulator
    unique_pairs: Set[str] = field(default_factory=set)

    def reset(self):
        self.accumulator.reset()
        self.unique_pairs = set()


@dataclass
class CredentialPairState:
    """Source IPs (with last-seen time) that tried one credential pair."""
    ips: Dict[str, float] = field(default_factory=dict)
    fired: bool = False


class CredentialStuffingDetector:
    """Volume with low success, breach-list breadth per IP, and pairs reused across IPs."""

    name = 'credential_stuffing'

    def __init__(self, thresholds: AttackThresholds, max_events: int = 200):
        self.thresholds = thresholds
        self.max_events = max_events
        self._store = _KeyedStore()
        self._pairs = _KeyedStore()

    def analyze(self, event: AuthAttemptEvent) -> List[Violation]:
        ip = event.ip_address
        if not ip:
            return []

        t = self.thresholds
        now = event.timestamp
        fingerprint = password_fingerprint(event.password)
        pair_key = f"{event.username}:{fingerprint}" if event.username and fingerprint else None
        violations = []

        with self._store.lock(ip):
            state: CredentialStuffingState = self._store.get(ip) or self._store.put(
                ip, CredentialStuffingState(AttackAccumulator(ip, t.credential_stuffing_window, self.max_events))
            )
            acc = state.accumulator
            if acc.is_stale(now) and acc.last_seen is not None:
                state.reset()

            acc.record(AttemptRecord(
                timestamp=now,
                username=event.username,
                success=event.success,
                user_agent=event.user_agent,
            ), ip)
            if pair_key:
                state.unique_pairs.add(pair_key)

            recent_attempts = len(acc.recent(now - t.credential_stuffing_window))

            if (recent_attempts >= t.credential_stuffing_attempts
                    and acc.success_rate < t.credential_stuffing_success_rate
                    and acc.fire_once('volume')):
                violations.append(Violation(
                    type=ViolationType.CREDENTIAL_STUFFING_VOLUME,
                    severity=Severity.CRITICAL,
                    key=ip,
                    description='Credential stuffing attack detected (high volume, low success)',
                    evidence={
                        'ipAddress': ip,
                        'totalAttempts': recent_attempts,
                        'successRate': round(acc.success_rate, 4),
                        'uniqueCredentials': len(state.unique_pairs),
                        'uniqueUsernames': len(acc.unique_usernames),
                        'timeWindow': t.credential_stuffing_window,
                    },
                    timestamp=now,
                ))

            if len(state.unique_pairs) >= t.credential_stuffing_unique_pairs and acc.fire_once('breach_data'):
                violations.append(Violation(
                    type=ViolationType.CREDENTIAL_STUFFING_BREACH_DATA,
                    severity=Severity.HIGH,
                    key=ip,
                    description='Credential stuffing using breach data detected',
                    evidence={
                        'ipAddress': ip,
                        'uniqueCredentialPairs': len(state.unique_pairs),
                        'uniqueUsernames': len(acc.unique_usernames),
                        'successRate': round(acc.success_rate, 4),
                        'potentialBreachSource': identify_breach_source(len(state.unique_pairs)),
                    },
                    timestamp=now,
                ))

        # Pair index is updated after the IP lock is released; locks are never nested
        if pair_key:
            distributed = self._track_pair(pair_key, ip, now, event.username)
            if distributed is not None:
                violations.append(distributed)

        return violations

    def _track_pair(self, pair_key: str, ip: str, now: float, username: Optional[str]) -> Optional[Violation]:
        t = self.thresholds
        with self._pairs.lock(pair_key):
            pair: CredentialPairState = self._pairs.get(pair_key) or self._pairs.put(pair_key, CredentialPairState())

            cutoff = now - t.credential_stuffing_window
            pair.ips = {addr: seen for addr, seen in pair.ips.items() if seen >= cutoff}
            if len(pair.ips) < t.credential_stuffing_distributed_ips:
                pair.fired = False
            pair.ips[ip] = max(pair.ips.get(ip, now), now)

            if len(pair.ips) < t.credential_stuffing_distributed_ips or pair.fired:
                return None
            pair.fired = True
            ips = sorted(pair.ips)

        return Violation(
            type=ViolationType.CREDENTIAL_STUFFING_DISTRIBUTED,
            severity=Severity.CRITICAL,
            key=pair_key,
            description='Distributed credential stuffing attack detected',
            evidence={
                'primaryIP': ip,
                'distributedIPs': ips,
                'username': username,
                'coordinationLevel': round((len(ips) - 1) / 10, 2),
            },
            timestamp=now,
        )

    def get_accumulator(self, ip: str) -> Optional[AttackAccumulator]:
        state = self._store.get(ip)
        return state.accumulator if state else None

    def sweep(self, now: float) -> int:
        cutoff = now - self.thresholds.credential_stuffing_window
        removed = self._store.evict_if(lambda state: state.accumulator.is_stale(now))
        removed += self._pairs.evict_if(lambda pair: all(seen < cutoff for seen in pair.ips.values()))
        return removed

    def snapshot(self) -> Dict[str, Any]:
        data = {}
        for key in self._store.keys():
            with self._store.lock(key):
                state = self._store.get(key)
                if state is None:
                    continue
                entry = state.accumulator.to_dict()
                entry['uniqueCredentialPairs'] = len(state.unique_pairs)
                entry['successRate'] = round(state.accumulator.success_rate, 4)
                data[key] = entry
        return data

    def tracked_pairs(self) -> int:
        return len(self._pairs)

    def reset(self):
        self._store.clear()
        self._pairs.clear()

    def __len__(self) -> int:
        return len(self._store)


# ============================================================================
# CROSS-SESSION
# ============================================================================

@dataclass
class SessionState:
    session_id: str
    origin_ip: Optional[str]
    user_agent: Optional[str]
    user_id: Optional[str]
    tenant_id: Optional[str]
    started_at: float
    last_seen: float
    flagged_origins: Set[str] = field(default_factory=set)
    activities: Deque[str] = field(default_factory=lambda: deque(maxlen=50))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'ipAddress': self.origin_ip,
            'userId': self.user_id,
            'tenantId': self.tenant_id,
            'startTime': self.started_at,
            'lastSeen': self.last_seen,
            'flaggedOrigins': sorted(self.flagged_origins),
            'activities': list(self.activities),
        }


@dataclass
class IpSessionState:
    """Sessions, users and tenants seen from one IP, each with its last-seen time."""
    sessions: Dict[str, float] = field(default_factory=dict)
    users: Dict[str, float] = field(default_factory=dict)
    tenants: Dict[str, float] = field(default_factory=dict)
    first_seen: Optional[float] = None
    last_seen: Optional[float] = None
    fired_rules: Set[str] = field(default_factory=set)

    def prune(self, cutoff: float):
        self.sessions = {k: v for k, v in self.sessions.items() if v >= cutoff}
        self.users = {k: v for k, v in self.users.items() if v >= cutoff}
        self.tenants = {k: v for k, v in self.tenants.items() if v >= cutoff}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalSessions': len(self.sessions),
            'uniqueUsers': len(self.users),
            'uniqueTenants': len(self.tenants),
            'tenants': sorted(self.tenants),
            'firstSeen': self.first_seen,
            'lastSeen': self.last_seen,
        }


class CrossSessionTracker:
    """Session reuse from new origins and per-IP session, user and tenant spread."""

    name = 'cross_session'

    def __init__(self, thresholds: AttackThresholds):
        self.thresholds = thresholds
        self._sessions = _KeyedStore()
        self._ips = _KeyedStore()

    def analyze(self, event: SessionEvent) -> List[Violation]:
        violations = []
        if event.session_id:
            hijack = self._track_session(event)
            if hijack is not None:
                violations.append(hijack)
        if event.ip_address:
            violations.extend(self._track_ip(event))
        return violations

    def _track_session(self, event: SessionEvent) -> Optional[Violation]:
        t = self.thresholds
        now = event.timestamp
        sid = event.session_id

        with self._sessions.lock(sid):
            session: Optional[SessionState] = self._sessions.get(sid)
            if session is None or now - session.started_at >= t.session_lifetime:
                session = self._sessions.put(sid, SessionState(
                    session_id=sid,
                    origin_ip=event.ip_address,
                    user_agent=event.user_agent,
                    user_id=event.user_id,
                    tenant_id=event.tenant_id,
                    started_at=now,
                    last_seen=now,
                ))
                session.activities.extend(event.activities)
                return None

            session.last_seen = max(session.last_seen, now)
            session.activities.extend(event.activities)
            if session.origin_ip is None:
                session.origin_ip = event.ip_address
                return None

            ip = event.ip_address
            if not ip or ip == session.origin_ip or ip in session.flagged_origins:
                return None
            session.flagged_origins.add(ip)

            return Violation(
                type=ViolationType.SESSION_HIJACKING,
                severity=Severity.CRITICAL,
                key=sid,
                description='Potential session hijacking detected',
                evidence={
                    'sessionId': sid,
                    'suspiciousIP': ip,
                    'originalIP': session.origin_ip,
                    'userAgentMismatch': (event.user_agent is not None
                                          and session.user_agent is not None
                                          and event.user_agent != session.user_agent),
                    'timeGap': now - session.started_at,
                },
                timestamp=now,
            )

    def _track_ip(self, event: SessionEvent) -> List[Violation]:
        t = self.thresholds
        now = event.timestamp
        ip = event.ip_address
        violations = []

        with self._ips.lock(ip):
            state: IpSessionState = self._ips.get(ip) or self._ips.put(ip, IpSessionState())
            if state.last_seen is not None and now - state.last_seen >= t.session_ip_window:
                state = self._ips.put(ip, IpSessionState())

            state.prune(now - t.session_ip_window)
            if event.session_id:
                state.sessions[event.session_id] = now
            if event.user_id:
                state.users[event.user_id] = now
            if event.tenant_id:
                state.tenants[event.tenant_id] = now
            if state.first_seen is None:
                state.first_seen = now
            state.last_seen = max(state.last_seen or now, now)

            abusive = (len(state.sessions) >= t.session_abuse_sessions
                       and len(state.users) >= t.session_abuse_users)
            if not abusive:
                state.fired_rules.discard('multi_session')
            elif 'multi_session' not in state.fired_rules:
                state.fired_rules.add('multi_session')
                violations.append(Violation(
                    type=ViolationType.MULTI_SESSION_ABUSE,
                    severity=Severity.HIGH,
                    key=ip,
                    description='Multiple session abuse from single IP detected',
                    evidence={
                        'ipAddress': ip,
                        'sessionCount': len(state.sessions),
                        'userCount': len(state.users),
                        'tenantCount': len(state.tenants),
                        'timeSpan': now - state.first_seen,
                    },
                    timestamp=now,
                ))

            cross_tenant = len(state.tenants) >= t.session_cross_tenant_count
            if not cross_tenant:
                state.fired_rules.discard('cross_tenant')
            elif 'cross_tenant' not in state.fired_rules:
                state.fired_rules.add('cross_tenant')
                violations.append(Violation(
                    type=ViolationType.CROSS_TENANT_SESSION_PATTERN,
                    severity=Severity.MEDIUM,
                    key=ip,
                    description='Cross-tenant session pattern detected',
                    evidence={
                        'ipAddress': ip,
                        'affectedTenants': sorted(state.tenants),
                        'sessionCount': len(state.sessions),
                        'potentialThreat': 'reconnaissance_or_data_harvesting',
                    },
                    timestamp=now,
                ))

        return violations

    def sweep(self, now: float) -> int:
        t = self.thresholds
        removed = self._sessions.evict_if(lambda s: now - s.started_at >= t.session_lifetime)
        removed += self._ips.evict_if(
            lambda s: s.last_seen is None or now - s.last_seen >= t.session_ip_window
        )
        return removed

    def snapshot(self) -> Dict[str, Any]:
        sessions = {}
        for key in self._sessions.keys():
            with self._sessions.lock(key):
                state = self._sessions.get(key)
                if state is not None:
                    sessions[key] = state.to_dict()
        ips = {}
        for key in self._ips.keys():
            with self._ips.lock(key):
                state = self._ips.get(key)
                if state is not None:
                    ips[key] = state.to_dict()
        return {'sessions': sessions, 'ips': ips}

    def tracked_ips(self) -> int:
        return len(self._ips)

    def reset(self):
        self._sessions.clear()
        self._ips.clear()

    def __len__(self) -> int:
        return len(self._sessions)


# ============================================================================
# COORDINATED ATTACKS
# ============================================================================

@dataclass
class CoordinatedAttackState:
    attack_id: str
    attack_type: str
    first_detected: float
    last_activity: float
    source_ips: Set[str] = field(default_factory=set)
    target_tenants: Set[str] = field(default_factory=set)
    timestamps: Deque[float] = field(default_factory=lambda: deque(maxlen=200))
    signatures: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=50))
    payloads: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=20))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attackId': self.attack_id,
            'attackType': self.attack_type,
            'firstDetected': self.first_detected,
            'lastActivity': self.last_activity,
            'sourceIPs': sorted(self.source_ips),
            'targetTenants': sorted(self.target_tenants),
            'eventCount': len(self.timestamps),
        }


class CoordinatedAttackDetector:
    """
    Aggregates attack batches per attack type and signature class inside a
    fixed window opened by the first batch. Rules are evaluated on every batch.
    """

    name = 'coordinated'

    def __init__(self, thresholds: AttackThresholds):
        self.thresholds = thresholds
        self._store = _KeyedStore()

    def analyze(self, batch: CoordinatedAttackBatch) -> List[Violation]:
        t = self.thresholds
        now = batch.timestamp
        attack_id = f"{batch.attack_type}:{signature_fingerprint(batch.attack_signature)}"

        with self._store.lock(attack_id):
            attack: Optional[CoordinatedAttackState] = self._store.get(attack_id)
            if attack is None or now - attack.first_detected >= t.coordinated_window:
                attack = self._store.put(attack_id, CoordinatedAttackState(
                    attack_id=attack_id,
                    attack_type=batch.attack_type,
                    first_detected=now,
                    last_activity=now,
                ))

            attack.source_ips.update(batch.source_ips)
            attack.target_tenants.update(batch.target_tenants)
            attack.last_activity = max(attack.last_activity, now)
            attack.timestamps.append(now)
            attack.signatures.append(batch.attack_signature)
            if batch.payload:
                attack.payloads.append(batch.payload)

            ip_count = len(attack.source_ips)
            tenant_count = len(attack.target_tenants)
            duration = attack.last_activity - attack.first_detected
            level = coordination_level(ip_count, tenant_count, len(attack.timestamps), duration)
            common = {
                'attackId': attack_id,
                'attackType': batch.attack_type,
                'sourceIPCount': ip_count,
                'targetTenantCount': tenant_count,
                'coordinationLevel': level,
                'duration': duration,
                'indicators': coordination_indicators(ip_count, tenant_count, level),
                'recommendedActions': recommended_actions(ip_count, tenant_count, level),
            }
            sync = analyze_synchronization(attack.timestamps, t.coordinated_sync_variance_ratio)
            similarity = mean_pairwise_similarity(list(attack.signatures))
            source_ips = sorted(attack.source_ips)[:20]
            tenants = sorted(attack.target_tenants)
            event_count = len(attack.timestamps)

        violations = []
        if ip_count >= t.coordinated_min_ips:
            violations.append(Violation(
                type=ViolationType.COORDINATED_MULTI_IP_ATTACK,
                severity=Severity.CRITICAL,
                key=attack_id,
                description='Coordinated attack from multiple IP addresses detected',
                evidence={**common, 'sourceIPs': source_ips},
                timestamp=now,
            ))

        if tenant_count >= t.coordinated_min_tenants:
            violations.append(Violation(
                type=ViolationType.COORDINATED_MULTI_TENANT_ATTACK,
                severity=Severity.CRITICAL,
                key=attack_id,
                description='Coordinated attack targeting multiple tenants detected',
                evidence={**common, 'affectedTenants': tenants},
                timestamp=now,
            ))

        if sync['is_synchronized']:
            violations.append(Violation(
                type=ViolationType.COORDINATED_SYNCHRONIZED_ATTACK,
                severity=Severity.CRITICAL,
                key=attack_id,
                description='Highly synchronized coordinated attack detected',
                evidence={
                    **common,
                    'synchronizationLevel': sync['level'],
                    'timingVariance': sync['variance'],
                    'meanInterval': sync['mean_interval'],
                    'eventCount': event_count,
                },
                timestamp=now,
            ))

        if similarity > t.coordinated_similarity_threshold:
            violations.append(Violation(
                type=ViolationType.COORDINATED_BOTNET_ATTACK,
                severity=Severity.CRITICAL,
                key=attack_id,
                description='Botnet-style coordinated attack detected',
                evidence={**common, 'signatureSimilarity': round(similarity, 4), 'eventCount': event_count},
                timestamp=now,
            ))

        return violations

    def sweep(self, now: float) -> int:
        window = self.thresholds.coordinated_window
        return self._store.evict_if(lambda attack: now - attack.first_detected >= window)

    def snapshot(self) -> Dict[str, Any]:
        data = {}
        for key in self._store.keys():
            with self._store.lock(key):
                state = self._store.get(key)
                if state is not None:
                    data[key] = state.to_dict()
        return data

    def reset(self):
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
