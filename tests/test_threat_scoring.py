"""
Tests for threat scoring helpers.
"""
import pytest

from models.security import AttackAccumulator, AttemptRecord, Severity
from security.attack_pattern_analysis import AttackPatternAnalysisEngine
from security.threat_scoring import (
    analyze_synchronization,
    calculate_threat_level,
    coordination_level,
    generate_attack_signature,
    identify_breach_source,
    mean_pairwise_similarity,
    password_fingerprint,
    signature_fingerprint,
    signature_similarity,
)


class TestThreatLevel:

    def test_heavy_failing_pattern_is_critical(self):
        pattern = {"totalAttempts": 150, "uniqueUsernames": 7,
                   "failedAttempts": 140, "successfulAttempts": 10}
        assert calculate_threat_level(pattern) == Severity.CRITICAL
        assert AttackPatternAnalysisEngine.calculate_threat_level(pattern) == Severity.CRITICAL

    def test_small_pattern_is_low(self):
        pattern = {"totalAttempts": 5, "uniqueUsernames": 1, "failedAttempts": 3, "successfulAttempts": 2}
        assert calculate_threat_level(pattern) in (Severity.LOW, Severity.MEDIUM)

    def test_accepts_accumulator_objects(self):
        acc = AttackAccumulator("10.0.0.1", window=900)
        for i in range(60):
            acc.record(AttemptRecord(timestamp=float(i), username=f"user{i % 12}",
                                     success=False, user_agent=None))
        # 2 (volume) + 2 (usernames) + 2 (failure ratio)
        assert calculate_threat_level(acc) == Severity.CRITICAL

    def test_more_attempts_never_lower_the_level(self):
        previous = Severity.LOW
        for total in (1, 11, 51, 101, 500):
            level = calculate_threat_level({"totalAttempts": total, "failedAttempts": total})
            assert level.rank >= previous.rank
            previous = level

    def test_missing_fields_are_zero(self):
        assert calculate_threat_level({}) == Severity.LOW
        assert calculate_threat_level(None) == Severity.LOW


class TestAttackSignature:

    def test_signature_fields(self):
        attempts = [
            {"timestamp": 1000, "username": "a", "success": True, "userAgent": "ua-1"},
            {"timestamp": 2000, "username": "b", "success": False, "userAgent": "ua-2"},
            {"timestamp": 3000, "username": "a", "success": False, "userAgent": "ua-1"},
        ]
        signature = generate_attack_signature(attempts)

        assert signature["attempt_count"] == 3
        assert signature["time_span"] == 2000
        assert signature["unique_usernames"] == 2
        assert signature["user_agent_variations"] == 2
        assert signature["success_rate"] == pytest.approx(1 / 3)

    def test_empty_input(self):
        assert generate_attack_signature([]) == {
            "attempt_count": 0,
            "time_span": 0,
            "unique_usernames": 0,
            "user_agent_variations": 0,
            "success_rate": 0.0,
        }
        assert AttackPatternAnalysisEngine.generate_attack_signature(None)["attempt_count"] == 0


class TestSynchronization:

    def test_regular_intervals_are_synchronized(self):
        result = analyze_synchronization([0, 1, 2, 3, 4, 5])
        assert result["is_synchronized"]
        assert result["mean_interval"] == 1
        assert result["variance"] == 0

    def test_fewer_than_three_events(self):
        assert not analyze_synchronization([0, 1])["is_synchronized"]

    def test_irregular_intervals(self):
        assert not analyze_synchronization([0, 1, 11, 13, 40])["is_synchronized"]

    def test_simultaneous_events_are_not_synchronized(self):
        assert not analyze_synchronization([5, 5, 5, 5])["is_synchronized"]

    @pytest.mark.parametrize("scale", [0.001, 1, 100, 1000])
    def test_verdict_does_not_depend_on_time_unit(self, scale):
        steady = [0, 10, 20.5, 30.5]
        jittery = [0, 10, 23, 33]
        assert analyze_synchronization([t * scale for t in steady])["is_synchronized"]
        assert not analyze_synchronization([t * scale for t in jittery])["is_synchronized"]

    def test_jitter_above_ratio_is_not_synchronized(self):
        # intervals 5, 5.8, 4.2: about 13% relative spread
        result = analyze_synchronization([0, 5, 10.8, 15])
        assert not result["is_synchronized"]
        assert result["relative_spread"] > 0.1


class TestSignatures:

    def test_fingerprint_ignores_measurements(self):
        first = {"method": "POST", "path": "/login", "payloadSize": 1000, "timing": 100}
        second = {"method": "POST", "path": "/login", "payloadSize": 1800, "timing": 20}
        other = {"method": "GET", "path": "/login", "payloadSize": 1000, "timing": 100}

        assert signature_fingerprint(first) == signature_fingerprint(second)
        assert signature_fingerprint(first) != signature_fingerprint(other)

    def test_similarity(self):
        close = signature_similarity({"payloadSize": 1000, "timing": 100},
                                     {"payloadSize": 1050, "timing": 105})
        far = signature_similarity({"payloadSize": 1000, "timing": 100},
                                   {"payloadSize": 100, "timing": 1000})
        assert close > 0.9
        assert far < 0.2
        assert signature_similarity({}, {"payloadSize": 1}) == 0.0

    def test_mean_pairwise_similarity(self):
        assert mean_pairwise_similarity([{"payloadSize": 10}]) == 0.0
        assert mean_pairwise_similarity([{"payloadSize": 10}] * 3) == 1.0


class TestHelpers:

    def test_password_fingerprint(self):
        assert password_fingerprint(None) is None
        assert password_fingerprint("secret") == password_fingerprint("secret")
        assert "secret" not in password_fingerprint("secret")
        assert len(password_fingerprint("secret")) == 16

    @pytest.mark.parametrize("pairs, source", [
        (20, "small_breach_or_targeted"),
        (101, "medium_breach_database"),
        (1001, "large_breach_database"),
    ])
    def test_breach_source(self, pairs, source):
        assert identify_breach_source(pairs) == source

    def test_coordination_level_is_bounded(self):
        assert coordination_level(0, 0, 1, 0) == 0
        assert coordination_level(100, 100, 1000, 60) == 1.0
        assert 0 < coordination_level(4, 1, 4, 120) < 1
