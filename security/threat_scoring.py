"""
Threat scoring helpers shared by the attack pattern detectors.
Pure functions: threat levels, attack signatures, timing synchronization and
signature similarity.
"""

import hashlib
import json
import math
import statistics
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from models.security import Severity
from utils.time_window import to_epoch


def _get(source: Any, *names: str, default: Any = None) -> Any:
    """Read the first present attribute or mapping key out of ``names``."""
    for name in names:
        if isinstance(source, Mapping):
            if name in source:
                return source[name]
        elif hasattr(source, name):
            return getattr(source, name)
    return default


def _count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return len(value)
    except TypeError:
        return 0


def calculate_threat_level(pattern: Any) -> Severity:
    """
    Classify an accumulator (object or mapping) as low/medium/high/critical.

    Score: >100 attempts +3, >50 +2, >10 +1; >10 unique usernames +2;
    failures more than ten times successes +2. Critical from 5, high from 3,
    medium from 1.
    """
    total = _count(_get(pattern, 'total_attempts', 'totalAttempts'))
    usernames = _count(_get(pattern, 'unique_usernames', 'uniqueUsernames'))
    failed = _count(_get(pattern, 'failed_attempts', 'failedAttempts'))
    successful = _count(_get(pattern, 'successful_attempts', 'successfulAttempts'))

    score = 0
    if total > 100:
        score += 3
    elif total > 50:
        score += 2
    elif total > 10:
        score += 1

    if usernames > 10:
        score += 2
    if failed > successful * 10:
        score += 2

    if score >= 5:
        return Severity.CRITICAL
    if score >= 3:
        return Severity.HIGH
    if score >= 1:
        return Severity.MEDIUM
    return Severity.LOW


def generate_attack_signature(attempts: Sequence[Any]) -> Dict[str, Any]:
    """Fixed-shape fingerprint of an ordered list of attempts."""
    attempts = list(attempts or [])
    if not attempts:
        return {
            'attempt_count': 0,
            'time_span': 0,
            'unique_usernames': 0,
            'user_agent_variations': 0,
            'success_rate': 0.0,
        }

    timestamps = [to_epoch(_get(a, 'timestamp'), 0.0) for a in attempts]
    successes = sum(1 for a in attempts if _get(a, 'success', default=False))
    return {
        'attempt_count': len(attempts),
        'time_span': timestamps[-1] - timestamps[0],
        'unique_usernames': len({_get(a, 'username') for a in attempts}),
        'user_agent_variations': len({_get(a, 'user_agent', 'userAgent') for a in attempts}),
        'success_rate': successes / len(attempts),
    }


def password_fingerprint(password: Optional[str]) -> Optional[str]:
    """Truncated SHA-256 of a password; raw passwords are never stored."""
    if password is None:
        return None
    return hashlib.sha256(password.encode('utf-8')).hexdigest()[:16]


def identify_breach_source(unique_pairs: int) -> str:
    if unique_pairs > 1000:
        return 'large_breach_database'
    if unique_pairs > 100:
        return 'medium_breach_database'
    return 'small_breach_or_targeted'


# Measurement fields compared for similarity; excluded from the grouping fingerprint
SIGNATURE_MEASUREMENTS = ('payloadSize', 'timing')


def signature_fingerprint(signature: Mapping[str, Any]) -> str:
    """Stable fingerprint of a signature's non-measurement fields."""
    stable = {k: v for k, v in (signature or {}).items() if k not in SIGNATURE_MEASUREMENTS}
    encoded = json.dumps(stable, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode('utf-8')).hexdigest()[:16]


def _ratio_similarity(a: Any, b: Any) -> Optional[float]:
    if not isinstance(a, (int, float)) or not isinstance(b, (int, float)):
        return None
    if isinstance(a, bool) or isinstance(b, bool) or a <= 0 or b <= 0:
        return None
    return max(0.0, 1 - abs(a - b) / max(a, b))


def signature_similarity(first: Mapping[str, Any], second: Mapping[str, Any]) -> float:
    """Mean closeness of payload size and timing; 0 when nothing comparable."""
    if not first or not second:
        return 0.0
    scores = [
        s for s in (_ratio_similarity(first.get(f), second.get(f)) for f in SIGNATURE_MEASUREMENTS)
        if s is not None
    ]
    return sum(scores) / len(scores) if scores else 0.0


def mean_pairwise_similarity(signatures: Sequence[Mapping[str, Any]]) -> float:
    if len(signatures) < 2:
        return 0.0
    total = 0.0
    comparisons = 0
    for i in range(len(signatures) - 1):
        for j in range(i + 1, len(signatures)):
            total += signature_similarity(signatures[i], signatures[j])
            comparisons += 1
    return total / comparisons if comparisons else 0.0


def analyze_synchronization(timestamps: Iterable[float], variance_ratio: float = 0.1) -> Dict[str, Any]:
    """
    Detect near-constant inter-arrival timing.

    Synchronized when at least three timestamps exist and the population
    standard deviation of the intervals is below ``variance_ratio`` times
    their mean, so the verdict does not depend on the time unit.
    """
    ordered = sorted(timestamps)
    if len(ordered) < 3:
        return {'is_synchronized': False, 'event_count': len(ordered)}

    intervals = [b - a for a, b in zip(ordered, ordered[1:])]
    mean_interval = statistics.fmean(intervals)
    variance = statistics.pvariance(intervals, mu=mean_interval)
    spread = math.sqrt(variance) / mean_interval if mean_interval > 0 else math.inf
    synchronized = spread < variance_ratio
    return {
        'is_synchronized': synchronized,
        'level': round(max(0.0, 1 - spread), 4) if mean_interval > 0 else 0.0,
        'relative_spread': spread,
        'variance': variance,
        'mean_interval': mean_interval,
        'event_count': len(ordered),
    }


def coordination_level(source_ips: int, target_tenants: int, events: int, duration: float) -> float:
    """0..1 blend of source spread, target spread and event frequency."""
    level = min(source_ips / 10, 1) * 0.3
    level += min(target_tenants / 5, 1) * 0.3
    if duration > 0:
        per_minute = events / (duration / 60)
        level += min(per_minute / 10, 1) * 0.4
    elif events > 1:
        level += 0.4
    return round(min(level, 1.0), 4)


def coordination_indicators(source_ips: int, target_tenants: int, level: float) -> List[str]:
    indicators = []
    if source_ips > 10:
        indicators.append('distributed')
    if source_ips > 20:
        indicators.append('large_ip_pool')
    if target_tenants > 5:
        indicators.append('multi_target')
    if level > 0.7:
        indicators.append('highly_coordinated')
    return indicators


def recommended_actions(source_ips: int, target_tenants: int, level: float) -> List[str]:
    actions = []
    if source_ips > 10:
        actions.extend(['block_source_ips', 'implement_rate_limiting'])
    if target_tenants > 5:
        actions.extend(['notify_affected_tenants', 'increase_monitoring'])
    if level > 0.7:
        actions.extend(['escalate_to_security_team', 'implement_advanced_blocking'])
    return actions
