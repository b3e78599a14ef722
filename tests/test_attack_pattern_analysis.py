"""
Tests for the attack pattern analysis engine and its detectors.
"""
import pytest

from models.security import Severity, ViolationType
from security.attack_pattern_analysis import AttackPatternAnalysisEngine
from security.pattern_detectors import AttackThresholds


@pytest.fixture
def engine(clock, metrics):
    return AttackPatternAnalysisEngine(metrics=metrics.security_metrics, clock=clock)


def failed_login(ip="203.0.113.5", username="admin", password="guess", **extra):
    return {"ipAddress": ip, "username": username, "password": password,
            "success": False, "userAgent": "curl/8.0", **extra}


def types_of(violations):
    return [v.type for v in violations]


class TestBruteForce:

    def test_nine_failures_do_not_fire_tenth_fires_once(self, engine):
        for _ in range(9):
            assert engine.analyze_brute_force_pattern(failed_login()) == []

        violations = engine.analyze_brute_force_pattern(failed_login())
        assert types_of(violations) == [ViolationType.BRUTE_FORCE_VOLUME]
        assert violations[0].severity == Severity.HIGH
        assert violations[0].key == "203.0.113.5"
        assert violations[0].evidence["failedAttempts"] == 10

    def test_high_tier_keeps_counting_without_blocking(self, engine):
        collected = []
        for _ in range(15):
            collected.extend(engine.analyze_brute_force_pattern(failed_login()))

        assert types_of(collected) == [ViolationType.BRUTE_FORCE_VOLUME]
        assert collected[0].severity == Severity.HIGH
        assert not engine.brute_force.is_blocked("203.0.113.5", collected[0].timestamp)

    def test_escalates_to_critical_then_blocks(self, engine):
        collected = []
        for _ in range(25):
            collected.extend(engine.analyze_brute_force_pattern(failed_login()))

        volume = [v for v in collected if v.type == ViolationType.BRUTE_FORCE_VOLUME]
        assert [v.severity for v in volume] == [Severity.HIGH, Severity.CRITICAL]
        assert volume[1].evidence["failedAttempts"] == 20

        first_blocked = types_of(collected).index(ViolationType.BRUTE_FORCE_BLOCKED)
        assert first_blocked > collected.index(volume[1])
        blocked = collected[first_blocked:]
        assert types_of(blocked) == [ViolationType.BRUTE_FORCE_BLOCKED] * 5
        assert blocked[0].evidence["blockUntil"] > blocked[0].timestamp
        assert blocked[0].evidence["remainingTime"] > 0

    def test_critical_severity_from_critical_threshold(self, clock):
        thresholds = AttackThresholds(brute_force_failed_attempts=20, brute_force_critical_attempts=20)
        engine = AttackPatternAnalysisEngine(thresholds=thresholds, clock=clock)
        violations = []
        for _ in range(20):
            violations = engine.analyze_brute_force_pattern(failed_login())
        assert violations[0].severity == Severity.CRITICAL

    def test_lockout_expires(self, engine, clock):
        for _ in range(20):
            engine.analyze_brute_force_pattern(failed_login())
        assert types_of(engine.analyze_brute_force_pattern(failed_login())) == [ViolationType.BRUTE_FORCE_BLOCKED]
        assert engine.brute_force.is_blocked("203.0.113.5", clock())

        clock.advance(3601)
        assert not engine.brute_force.is_blocked("203.0.113.5", clock())
        assert engine.analyze_brute_force_pattern(failed_login()) == []
        assert engine.brute_force.get_accumulator("203.0.113.5").total_attempts == 1

    def test_multi_target_fires_once(self, engine):
        fired = []
        for i in range(7):
            fired.extend(engine.analyze_brute_force_pattern(failed_login(username=f"user{i}")))

        assert types_of(fired) == [ViolationType.BRUTE_FORCE_MULTI_TARGET]
        assert fired[0].evidence["targetedUsernames"] == 5

    def test_password_variation(self, clock):
        engine = AttackPatternAnalysisEngine(
            thresholds=AttackThresholds(brute_force_failed_attempts=100), clock=clock)
        fired = []
        for i in range(12):
            fired.extend(engine.analyze_brute_force_pattern(failed_login(password=f"Summer202{i}!")))

        assert types_of(fired) == [ViolationType.BRUTE_FORCE_PASSWORD_VARIATION]
        assert fired[0].severity == Severity.MEDIUM

    def test_window_expiry_resets_accumulation(self, engine, clock):
        for _ in range(9):
            engine.analyze_brute_force_pattern(failed_login())
        clock.advance(901)
        assert engine.analyze_brute_force_pattern(failed_login()) == []

    def test_accumulator_invariant(self, engine):
        for i in range(30):
            engine.analyze_brute_force_pattern(
                failed_login(ip="198.51.100.7", username=f"u{i % 3}", success=(i % 7 == 0)))
            acc = engine.brute_force.get_accumulator("198.51.100.7")
            assert acc.failed_attempts + acc.successful_attempts == acc.total_attempts

    def test_ips_are_tracked_independently(self, engine):
        for _ in range(9):
            engine.analyze_brute_force_pattern(failed_login(ip="10.0.0.1"))
            engine.analyze_brute_force_pattern(failed_login(ip="10.0.0.2"))
        assert engine.get_analysis_stats()["bruteForcePatterns"] == 2


class TestCredentialStuffing:

    def test_high_volume_low_success(self, engine):
        fired = []
        for i in range(60):
            fired.extend(engine.analyze_credential_stuffing_pattern({
                "ipAddress": "192.0.2.10",
                "username": f"user{i}@example.com",
                "password": f"pass{i}",
                "success": i % 50 == 0,
            }))

        volume = [v for v in fired if v.type == ViolationType.CREDENTIAL_STUFFING_VOLUME]
        assert len(volume) == 1
        assert volume[0].severity == Severity.CRITICAL
        assert volume[0].evidence["successRate"] < 0.05

    def test_breach_data_from_unique_pairs(self, engine):
        fired = []
        for i in range(25):
            fired.extend(engine.analyze_credential_stuffing_pattern({
                "ipAddress": "192.0.2.20", "username": f"user{i}", "password": f"pw{i}",
            }))

        breach = [v for v in fired if v.type == ViolationType.CREDENTIAL_STUFFING_BREACH_DATA]
        assert len(breach) == 1
        assert breach[0].severity == Severity.HIGH
        assert breach[0].evidence["uniqueCredentialPairs"] == 20
        assert breach[0].evidence["potentialBreachSource"] == "small_breach_or_targeted"

    def test_same_pair_from_three_ips_is_distributed(self, engine):
        pair = {"username": "alice", "password": "hunter2"}
        assert engine.analyze_credential_stuffing_pattern({"ipAddress": "10.1.0.1", **pair}) == []
        assert engine.analyze_credential_stuffing_pattern({"ipAddress": "10.1.0.2", **pair}) == []

        fired = engine.analyze_credential_stuffing_pattern({"ipAddress": "10.1.0.3", **pair})
        assert types_of(fired) == [ViolationType.CREDENTIAL_STUFFING_DISTRIBUTED]
        assert fired[0].severity == Severity.CRITICAL
        assert fired[0].evidence["distributedIPs"] == ["10.1.0.1", "10.1.0.2", "10.1.0.3"]
        assert "hunter2" not in fired[0].key

        assert engine.analyze_credential_stuffing_pattern({"ipAddress": "10.1.0.4", **pair}) == []

    def test_pair_spread_outside_window_does_not_fire(self, engine, clock):
        pair = {"username": "bob", "password": "letmein"}
        engine.analyze_credential_stuffing_pattern({"ipAddress": "10.2.0.1", **pair})
        engine.analyze_credential_stuffing_pattern({"ipAddress": "10.2.0.2", **pair})
        clock.advance(3601)
        assert engine.analyze_credential_stuffing_pattern({"ipAddress": "10.2.0.3", **pair}) == []


class TestCrossSession:

    def test_session_hijack_from_new_origin(self, engine):
        first = {"sessionId": "sess-1", "ipAddress": "10.0.0.1", "userId": "u1", "userAgent": "Firefox"}
        assert engine.track_cross_session_patterns(first) == []

        fired = engine.track_cross_session_patterns({**first, "ipAddress": "10.0.0.50", "userAgent": "curl"})
        assert types_of(fired) == [ViolationType.SESSION_HIJACKING]
        assert fired[0].severity == Severity.CRITICAL
        assert fired[0].evidence["originalIP"] == "10.0.0.1"
        assert fired[0].evidence["suspiciousIP"] == "10.0.0.50"
        assert fired[0].evidence["userAgentMismatch"] is True

        assert engine.track_cross_session_patterns({**first, "ipAddress": "10.0.0.50"}) == []
        assert engine.track_cross_session_patterns(first) == []

    def test_session_past_lifetime_starts_over(self, engine, clock):
        engine.track_cross_session_patterns({"sessionId": "sess-2", "ipAddress": "10.0.0.1"})
        clock.advance(86401)
        assert engine.track_cross_session_patterns({"sessionId": "sess-2", "ipAddress": "10.0.0.9"}) == []

    def test_multi_session_abuse(self, engine):
        fired = []
        for i in range(12):
            fired.extend(engine.track_cross_session_patterns({
                "sessionId": f"sess-{i}", "ipAddress": "172.16.0.5", "userId": f"user-{i}",
            }))

        assert types_of(fired) == [ViolationType.MULTI_SESSION_ABUSE]
        assert fired[0].severity == Severity.HIGH
        assert fired[0].evidence["sessionCount"] == 10

    def test_cross_tenant_pattern(self, engine):
        fired = []
        for i in range(4):
            fired.extend(engine.track_cross_session_patterns({
                "sessionId": f"s-{i}", "ipAddress": "172.16.0.9", "userId": "u1", "tenantId": f"tenant-{i}",
            }))

        assert types_of(fired) == [ViolationType.CROSS_TENANT_SESSION_PATTERN]
        assert fired[0].severity == Severity.MEDIUM
        assert fired[0].evidence["affectedTenants"] == ["tenant-0", "tenant-1", "tenant-2"]


class TestCoordinatedAttacks:

    def test_multi_ip(self, engine):
        fired = engine.detect_coordinated_attacks({
            "attackType": "brute_force",
            "sourceIPs": ["10.9.0.1", "10.9.0.2", "10.9.0.3", "10.9.0.4"],
            "targetTenants": ["tenant-1"],
        })
        assert types_of(fired) == [ViolationType.COORDINATED_MULTI_IP_ATTACK]
        assert fired[0].severity == Severity.CRITICAL

    def test_three_ips_do_not_fire(self, engine):
        assert engine.detect_coordinated_attacks({
            "attackType": "brute_force", "sourceIPs": ["10.9.0.1", "10.9.0.2", "10.9.0.3"],
        }) == []

    def test_multi_tenant(self, engine):
        fired = engine.detect_coordinated_attacks({
            "attackType": "scraping",
            "sourceIPs": ["10.8.0.1"],
            "targetTenants": [f"tenant-{i}" for i in range(6)],
        })
        assert types_of(fired) == [ViolationType.COORDINATED_MULTI_TENANT_ATTACK]
        assert fired[0].evidence["targetTenantCount"] == 6

    def test_large_botnet_scale(self, engine):
        fired = engine.detect_coordinated_attacks({
            "attackType": "credential_stuffing",
            "sourceIPs": [f"198.18.0.{i}" for i in range(25)],
            "targetTenants": ["tenant-1", "tenant-2"],
        })
        assert types_of(fired) == [ViolationType.COORDINATED_MULTI_IP_ATTACK]
        evidence = fired[0].evidence
        assert evidence["sourceIPCount"] == 25
        assert "large_ip_pool" in evidence["indicators"]
        assert "block_source_ips" in evidence["recommendedActions"]
        assert 0 <= evidence["coordinationLevel"] <= 1

    def test_rules_are_evaluated_on_every_batch(self, engine):
        batch = {"attackType": "brute_force", "sourceIPs": [f"10.7.0.{i}" for i in range(4)]}
        first = engine.detect_coordinated_attacks(batch)
        second = engine.detect_coordinated_attacks(batch)
        assert ViolationType.COORDINATED_MULTI_IP_ATTACK in types_of(first)
        assert ViolationType.COORDINATED_MULTI_IP_ATTACK in types_of(second)

    def test_synchronized_batches(self, engine, clock):
        start = clock()
        fired = []
        for i in range(6):
            fired = engine.detect_coordinated_attacks({
                "attackType": "api_scan", "sourceIPs": ["10.6.0.1"], "timestamp": start + i,
            })
        assert ViolationType.COORDINATED_SYNCHRONIZED_ATTACK in types_of(fired)

    def test_irregular_batches_are_not_synchronized(self, engine, clock):
        start = clock()
        fired = []
        for offset in (0, 1, 11, 13, 40):
            fired = engine.detect_coordinated_attacks({
                "attackType": "api_scan", "sourceIPs": ["10.6.0.2"], "timestamp": start + offset,
            })
        assert ViolationType.COORDINATED_SYNCHRONIZED_ATTACK not in types_of(fired)

    def test_small_relative_jitter_is_not_synchronized(self, engine, clock):
        start = clock()
        fired = []
        for offset in (0, 5, 10.8, 15):
            fired = engine.detect_coordinated_attacks({
                "attackType": "api_scan", "sourceIPs": ["10.6.0.3"], "timestamp": start + offset,
            })
        assert ViolationType.COORDINATED_SYNCHRONIZED_ATTACK not in types_of(fired)

    def test_similar_signatures_are_botnet(self, engine):
        engine.detect_coordinated_attacks({
            "attackType": "login_spray", "sourceIPs": ["10.5.0.1"],
            "attackSignature": {"method": "POST", "payloadSize": 1000, "timing": 100},
        })
        fired = engine.detect_coordinated_attacks({
            "attackType": "login_spray", "sourceIPs": ["10.5.0.2"],
            "attackSignature": {"method": "POST", "payloadSize": 1050, "timing": 105},
        })
        assert types_of(fired) == [ViolationType.COORDINATED_BOTNET_ATTACK]
        assert fired[0].evidence["signatureSimilarity"] > 0.7

    def test_attack_types_are_tracked_separately(self, engine):
        engine.detect_coordinated_attacks({"attackType": "a", "sourceIPs": ["1.1.1.1", "1.1.1.2"]})
        assert engine.detect_coordinated_attacks({"attackType": "b", "sourceIPs": ["1.1.1.3", "1.1.1.4"]}) == []
        assert engine.get_analysis_stats()["coordinatedAttacks"] == 2

    def test_window_closes_after_thirty_minutes(self, engine, clock):
        engine.detect_coordinated_attacks({"attackType": "a", "sourceIPs": ["1.1.1.1", "1.1.1.2", "1.1.1.3"]})
        clock.advance(1801)
        assert engine.detect_coordinated_attacks({"attackType": "a", "sourceIPs": ["1.1.1.4"]}) == []


class TestMalformedInput:

    @pytest.mark.parametrize("payload", [None, {}, [], "garbage", {"ipAddress": None}, {"timestamp": "soon"}])
    def test_never_raises(self, engine, payload):
        assert engine.analyze_brute_force_pattern(payload) == []
        assert engine.analyze_credential_stuffing_pattern(payload) == []
        assert engine.track_cross_session_patterns(payload) == []
        assert engine.detect_coordinated_attacks(payload) == []

    def test_millisecond_timestamps_are_accepted(self, engine, clock):
        ms = clock() * 1000
        for i in range(10):
            violations = engine.analyze_brute_force_pattern(failed_login(timestamp=ms + i * 1000))
        assert types_of(violations) == [ViolationType.BRUTE_FORCE_VOLUME]


class TestIntrospection:

    def test_disabled_analysis_returns_nothing(self, engine):
        engine.set_analysis_enabled(False)
        for _ in range(20):
            assert engine.analyze_brute_force_pattern(failed_login()) == []
        assert engine.get_analysis_stats()["analysisEnabled"] is False

        engine.set_analysis_enabled(True)
        assert engine.analysis_enabled

    def test_stats_keys(self, engine):
        engine.analyze_brute_force_pattern(failed_login())
        stats = engine.get_analysis_stats()

        assert {"isInitialized", "analysisEnabled", "bruteForcePatterns", "credentialStuffingPatterns",
                "trackedSessions", "coordinatedAttacks", "thresholds"} <= set(stats)
        assert stats["isInitialized"] is True
        assert stats["bruteForcePatterns"] == 1
        assert stats["thresholds"]["bruteForce"]["failedAttempts"] == 10

    def test_export_never_contains_passwords(self, engine):
        engine.analyze_authentication_attempt(failed_login(password="TopSecret!"))
        engine.track_cross_session_patterns({"sessionId": "s1", "ipAddress": "10.0.0.1"})
        engine.detect_coordinated_attacks({"attackType": "x", "sourceIPs": ["10.0.0.1"]})

        data = engine.export_attack_pattern_data()
        assert {"bruteForcePatterns", "credentialStuffingPatterns", "sessionTracking",
                "coordinatedAttacks", "stats"} <= set(data)
        assert "s1" in data["sessionTracking"]
        assert "TopSecret!" not in repr(data)

    def test_sweep_and_reset(self, engine, clock):
        engine.analyze_authentication_attempt(failed_login())
        engine.track_cross_session_patterns({"sessionId": "s1", "ipAddress": "10.0.0.1"})
        engine.detect_coordinated_attacks({"attackType": "x", "sourceIPs": ["10.0.0.1"]})

        clock.advance(86401)
        assert engine.sweep() >= 4
        assert engine.tracked_counts() == {"brute_force": 0, "credential_stuffing": 0,
                                           "cross_session": 0, "coordinated": 0}

        engine.analyze_brute_force_pattern(failed_login())
        engine.reset()
        assert engine.get_analysis_stats()["bruteForcePatterns"] == 0

    def test_metrics_count_violations(self, engine, metrics):
        for _ in range(10):
            engine.analyze_brute_force_pattern(failed_login())
        value = metrics.registry.get_sample_value(
            "hrsm_security_violations_total",
            {"violation_type": "brute_force_volume", "severity": "high"},
        )
        assert value == 1.0
