"""Integration tests for the rate limit admin API and health endpoint."""

import pytest

from app.adapters.rate_limit.identifier import RequestMeta, derive_identifier

CONTACT_PAYLOAD = {
    "name": "Ada",
    "email": "ada@example.com",
    "message": "I would like to know more about your services.",
}

# Identifier the gate derives for fastapi's TestClient (peer and UA are both "testclient").
CLIENT_ID = derive_identifier(RequestMeta(peer="testclient", user_agent="testclient"))


def _post_contact(client):
    return client.post("/v1/contact", json=CONTACT_PAYLOAD)


class TestAdminAuth:
    def test_missing_key_is_rejected(self, client) -> None:
        response = client.get("/admin/rate-limit/analytics")

        assert response.status_code == 403
        assert response.json()["detail"] == "Missing API key. Provide X-API-Key header."

    def test_wrong_key_is_rejected(self, client) -> None:
        response = client.get("/admin/rate-limit/analytics", headers={"X-API-Key": "nope"})

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid or missing API key"

    @pytest.mark.parametrize("key", ["test-admin-key-123", "test-admin-key-456"])
    def test_any_configured_key_is_accepted(self, client, key) -> None:
        response = client.get("/admin/rate-limit/policies", headers={"X-API-Key": key})
        assert response.status_code == 200


def test_lists_policies_with_overrides(client, admin_headers) -> None:
    response = client.get("/admin/rate-limit/policies", headers=admin_headers)

    policies = {p["name"]: p for p in response.json()}
    assert set(policies) == {"auth", "contact", "read_api", "telemetry", "upload"}
    assert policies["contact"]["max_attempts"] == 2
    assert policies["contact"]["progressive_penalty"] is True


class TestClientRecords:
    def test_status_of_scoped_record(self, client, admin_headers) -> None:
        _post_contact(client)

        response = client.get(
            f"/admin/rate-limit/clients/{CLIENT_ID}",
            params={"policy": "contact"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["identifier"] == CLIENT_ID
        assert body["policy"] == "contact"
        assert body["count"] == 1
        assert body["penalty_level"] == 0

    def test_unknown_record_returns_404(self, client, admin_headers) -> None:
        response = client.get(
            f"/admin/rate-limit/clients/{CLIENT_ID}",
            params={"policy": "contact"},
            headers=admin_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "rate_limit_record_not_found"

    def test_status_requires_policy(self, client, admin_headers) -> None:
        _post_contact(client)

        response = client.get(f"/admin/rate-limit/clients/{CLIENT_ID}", headers=admin_headers)

        assert response.status_code == 422

    def test_unknown_policy_returns_400(self, client, admin_headers) -> None:
        response = client.get(
            f"/admin/rate-limit/clients/{CLIENT_ID}",
            params={"policy": "bogus"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "unknown_rate_limit_policy"

    def test_clear_lifts_an_active_block(self, client, admin_headers) -> None:
        for _ in range(3):
            _post_contact(client)
        assert _post_contact(client).status_code == 429

        cleared = client.delete(f"/admin/rate-limit/clients/{CLIENT_ID}", headers=admin_headers)

        assert cleared.status_code == 204
        assert _post_contact(client).status_code == 202

    def test_clear_single_policy_leaves_others(self, client, admin_headers) -> None:
        _post_contact(client)
        client.get("/v1/content")

        client.delete(
            f"/admin/rate-limit/clients/{CLIENT_ID}",
            params={"policy": "contact"},
            headers=admin_headers,
        )

        contact = client.get(
            f"/admin/rate-limit/clients/{CLIENT_ID}",
            params={"policy": "contact"},
            headers=admin_headers,
        )
        read_api = client.get(
            f"/admin/rate-limit/clients/{CLIENT_ID}",
            params={"policy": "read_api"},
            headers=admin_headers,
        )
        assert contact.status_code == 404
        assert read_api.status_code == 200


class TestLists:
    def test_denylisted_client_is_refused_everywhere(self, client, admin_headers) -> None:
        added = client.post(
            "/admin/rate-limit/denylist", json={"identifier": CLIENT_ID}, headers=admin_headers
        )

        assert added.status_code == 200
        assert added.json()["denylist"] == [CLIENT_ID]

        response = client.get("/v1/content")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "86400"

    def test_allowlisted_client_is_never_throttled(self, client, admin_headers) -> None:
        client.post(
            "/admin/rate-limit/allowlist", json={"identifier": CLIENT_ID}, headers=admin_headers
        )

        responses = [_post_contact(client) for _ in range(5)]

        assert all(r.status_code == 202 for r in responses)

    def test_removal_restores_normal_throttling(self, client, admin_headers) -> None:
        client.post(
            "/admin/rate-limit/denylist", json={"identifier": CLIENT_ID}, headers=admin_headers
        )

        removed = client.delete(f"/admin/rate-limit/lists/{CLIENT_ID}", headers=admin_headers)

        assert removed.json() == {"allowlist": [], "denylist": []}
        assert client.get("/v1/content").status_code == 200

    def test_empty_identifier_is_rejected(self, client, admin_headers) -> None:
        response = client.post(
            "/admin/rate-limit/allowlist", json={"identifier": ""}, headers=admin_headers
        )
        assert response.status_code == 422


class TestAnalytics:
    def test_counts_allowed_and_blocked_requests(self, client, admin_headers) -> None:
        for _ in range(3):
            _post_contact(client)

        body = client.get("/admin/rate-limit/analytics", headers=admin_headers).json()

        assert body["total_requests"] == 3
        assert body["blocked_requests"] == 1
        assert body["unique_clients"] == 1
        assert body["top_clients"][0]["requests"] == 3
        assert body["top_clients"][0]["blocked"] is True
        assert body["top_clients"][0]["identifier"].endswith("...")
        assert sum(body["trends"]["hourly"]) == 3
        assert body["trends"]["daily"][3] == 3

    def test_metrics_export_is_timestamped(self, client, admin_headers, clock) -> None:
        client.get("/v1/content")

        body = client.get("/admin/rate-limit/metrics", headers=admin_headers).json()

        assert body["timestamp"] == clock.now_ms
        assert body["active_clients"] == 1
        assert body["metrics"]["total_requests"] == 1


def test_manual_sweep_removes_expired_records(client, admin_headers, clock) -> None:
    client.get("/v1/content")
    clock.advance_ms(15 * 60 * 1000 + 1)

    response = client.post("/admin/rate-limit/sweep", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"removed": 1, "decayed": 0, "remaining": 0}


def test_health_reports_running_sweeper(client) -> None:
    _post_contact(client)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sweeper_running": True, "tracked_clients": 1}
