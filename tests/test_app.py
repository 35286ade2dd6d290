"""
Tests for the placeholder web application served by the instance.
"""

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

import app as placeholder


@pytest.fixture
def client():
    return TestClient(placeholder.app)


class TestPlaceholderApp:
    """Endpoints hit by visitors and by the target group health check."""

    def test_root_serves_placeholder_page(self, client):
        with patch("app.socket.gethostname", return_value="ip-10-0-11-5"):
            response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert f"<h1>{placeholder.APP_NAME}</h1>" in response.text
        assert "ip-10-0-11-5" in response.text

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body

    def test_server_info(self, client):
        with patch("app.socket.gethostname", return_value="web-1"), \
                patch("app.get_ip_addresses", return_value=["10.0.11.5"]):
            response = client.get("/server-info")

        assert response.status_code == 200
        body = response.json()
        assert body["hostname"] == "web-1"
        assert body["ip_addresses"] == ["10.0.11.5"]
        assert body["platform"]

    def test_server_info_without_addresses(self, client):
        with patch("app.get_ip_addresses", return_value=[]):
            response = client.get("/server-info")

        assert response.json()["ip_addresses"] == ["Not available"]

    def test_loopback_addresses_are_skipped(self):
        infos = [
            (None, None, None, "", ("127.0.0.1", 0)),
            (None, None, None, "", ("10.0.11.5", 0)),
            (None, None, None, "", ("10.0.11.5", 0)),
        ]
        with patch("app.socket.getaddrinfo", return_value=infos):
            assert placeholder.get_ip_addresses("web-1") == ["10.0.11.5"]
