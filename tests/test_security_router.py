"""
Tests for the platform security API.
"""
import pytest

PREFIX = "/api/platform/security"


def failed_attempt(ip="203.0.113.5", username="admin"):
    return {"ipAddress": ip, "username": username, "password": "guess", "success": False}


class TestEventIngestion:

    def test_auth_attempts_produce_violations(self, client):
        bodies = [client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt()).json()
                  for _ in range(10)]

        assert all(b["success"] for b in bodies)
        assert all(b["violations"] == [] for b in bodies[:9])
        fired = bodies[9]["violations"]
        assert [v["type"] for v in fired] == ["brute_force_volume"]
        assert fired[0]["severity"] == "high"
        assert fired[0]["key"] == "203.0.113.5"
        assert bodies[9]["failedDeliveries"] == 0

    def test_violations_reach_the_audit_log(self, client):
        for _ in range(10):
            client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())

        events = client.get(f"{PREFIX}/audit/events", params={"eventType": "security_violation"}).json()["data"]
        assert len(events) == 1
        assert events[0]["severity"] == "high"
        assert events[0]["metadata"]["violationType"] == "brute_force_volume"
        assert "guess" not in str(events[0])

    def test_violations_are_kept_for_the_violations_endpoint(self, client):
        for _ in range(10):
            client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())

        data = client.get(f"{PREFIX}/violations").json()["data"]
        assert [v["type"] for v in data] == ["brute_force_volume"]
        assert data[0]["key"] == "203.0.113.5"

        client.post(f"{PREFIX}/analysis/reset")
        assert client.get(f"{PREFIX}/violations").json()["data"] == []

    def test_session_events(self, client):
        client.post(f"{PREFIX}/events/session", json={"sessionId": "s1", "ipAddress": "10.0.0.1"})
        response = client.post(f"{PREFIX}/events/session", json={"sessionId": "s1", "ipAddress": "10.0.0.50"})

        assert [v["type"] for v in response.json()["violations"]] == ["session_hijacking"]

    def test_coordinated_batch(self, client):
        response = client.post(f"{PREFIX}/events/coordinated", json={
            "attackType": "brute_force",
            "sourceIPs": ["10.9.0.1", "10.9.0.2", "10.9.0.3", "10.9.0.4"],
            "targetTenants": ["tenant-1"],
        })
        violations = response.json()["violations"]
        assert [v["type"] for v in violations] == ["coordinated_multi_ip_attack"]
        assert violations[0]["evidence"]["sourceIPCount"] == 4

    def test_failing_sink_is_counted_not_raised(self, client, container, metrics):
        class BrokenSink:
            name = "broken"

            def handle(self, violation):
                raise RuntimeError("sink down")

        container.dispatcher.add_sink(BrokenSink())
        for _ in range(9):
            client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())
        response = client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())

        assert response.status_code == 200
        assert response.json()["failedDeliveries"] == 1
        assert metrics.registry.get_sample_value(
            "hrsm_security_sink_failures_total", {"sink": "broken"}) == 1.0

    def test_invalid_body_is_rejected(self, client):
        response = client.post(f"{PREFIX}/events/coordinated", json={"sourceIPs": "not-a-list"})
        assert response.status_code == 422


class TestAnalysisIntrospection:

    def test_stats(self, client):
        client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())
        data = client.get(f"{PREFIX}/analysis/stats").json()["data"]

        assert data["isInitialized"] is True
        assert data["analysisEnabled"] is True
        assert data["bruteForcePatterns"] == 1
        assert data["credentialStuffingPatterns"] == 1
        assert data["thresholds"]["coordinatedAttack"]["minIPs"] == 4

    def test_export(self, client):
        client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())
        data = client.get(f"{PREFIX}/analysis/export").json()["data"]

        assert "203.0.113.5" in data["bruteForcePatterns"]
        assert set(data) >= {"exportedAt", "sessionTracking", "coordinatedAttacks", "stats"}

        actions = client.get(f"{PREFIX}/audit/events", params={"eventType": "admin"}).json()["data"]
        assert actions[-1]["message"] == "Administrative action: export_attack_pattern_data"

    def test_toggle_and_reset(self, client):
        response = client.post(f"{PREFIX}/analysis/toggle", json={"enabled": False})
        assert response.json()["analysisEnabled"] is False

        for _ in range(12):
            body = client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt()).json()
            assert body["violations"] == []

        client.post(f"{PREFIX}/analysis/toggle", json={"enabled": True})
        client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())
        assert client.get(f"{PREFIX}/analysis/stats").json()["data"]["bruteForcePatterns"] == 1

        client.post(f"{PREFIX}/analysis/reset")
        assert client.get(f"{PREFIX}/analysis/stats").json()["data"]["bruteForcePatterns"] == 0

    @pytest.mark.parametrize("limit", [0, 5000])
    def test_audit_limit_bounds(self, client, limit):
        assert client.get(f"{PREFIX}/audit/events", params={"limit": limit}).status_code == 422


class TestLicenseAdministration:

    def test_license_stats(self, client):
        data = client.get(f"{PREFIX}/license/stats").json()["data"]

        assert set(data) >= {"caching", "backgroundValidation", "configuration",
                             "moduleCache", "rateLimiting", "maintenance", "metrics"}
        assert data["rateLimiting"]["maxRequestsPerWindow"] == 100

    def test_clear_caches(self, client, authority):
        headers = {"x-tenant-id": "tenant-1", "x-license-token": "token-abc"}
        client.get("/api/anything", headers=headers)
        client.get("/api/anything", headers=headers)
        assert authority.calls == 1

        response = client.post(f"{PREFIX}/license/cache/clear", json={"tenantId": "tenant-1"})
        assert response.json()["clearedValidations"] == 1

        client.get("/api/anything", headers=headers)
        assert authority.calls == 2

        assert client.post(f"{PREFIX}/license/cache/clear").json()["success"] is True

    def test_clear_rate_limits(self, client, container):
        container.module_rate_limiter.check("tenant-1:10.0.0.1")
        response = client.post(f"{PREFIX}/license/rate-limit/clear")
        assert response.json()["clearedEntries"] == 1

    def test_trigger_background_validation(self, client, authority):
        client.get("/api/anything", headers={"x-tenant-id": "tenant-1", "x-license-token": "token-abc"})

        data = client.post(f"{PREFIX}/license/background-validation").json()["data"]
        assert data["validatedTenants"] == 1
        assert authority.calls == 2


class TestAppEndpoints:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_metrics(self, client):
        client.post(f"{PREFIX}/events/auth-attempt", json=failed_attempt())
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "hrsm_security_events_analyzed_total" in response.text
