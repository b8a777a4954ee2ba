from unittest.mock import patch

import pytest

pytestmark = pytest.mark.integration


class TestHealthCheck:
    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert set(data["services"]) == {"database", "cache", "payments"}

    def test_reports_probe_timings(self, client):
        services = client.get("/health").json()["services"]

        for name in ("database", "cache"):
            assert services[name]["status"] == "up"
            assert services[name]["response_time_ms"] >= 0

    def test_missing_gateway_credentials_is_degraded(self, client, settings):
        settings.RAZORPAY_WEBHOOK_SECRET = ""

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["services"]["payments"] == {
            "status": "unconfigured",
            "missing": ["RAZORPAY_WEBHOOK_SECRET"],
        }

    def test_cache_outage_is_unhealthy(self, client):
        with patch("modules.core.views._ping_cache", side_effect=ConnectionError("down")):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["services"]["cache"] == {"status": "down"}
