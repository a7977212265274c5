"""Tests for the app-wide middleware: CORS and embedded-app framing headers."""

from app import main
from conftest import SHOP


class TestFrameAncestors:
    def test_names_shop_and_admin(self, client):
        response = client.get("/health", params={"shop": SHOP})
        assert response.headers["Content-Security-Policy"] == (
            f"frame-ancestors https://{SHOP} https://admin.shopify.com;"
        )

    def test_invalid_shop_ignored(self, client):
        response = client.get("/health", params={"shop": "evil.example.com"})
        assert response.headers["Content-Security-Policy"] == "frame-ancestors https://admin.shopify.com;"


class TestCors:
    def test_any_origin_outside_production(self, client):
        response = client.get("/health", headers={"Origin": "http://localhost:3000"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

    def test_preflight(self, client):
        response = client.options("/api/settings", headers={"Origin": "https://admin.shopify.com"})
        assert response.status_code == 200
        assert "PUT" in response.headers["Access-Control-Allow-Methods"]

    def test_production_allows_shopify_origins_only(self, client, monkeypatch):
        monkeypatch.setattr(main.settings, "environment", "production")

        allowed = client.get("/health", headers={"Origin": f"https://{SHOP}"})
        rejected = client.get("/health", headers={"Origin": "https://evil.example.com"})

        assert allowed.headers["Access-Control-Allow-Origin"] == f"https://{SHOP}"
        assert "Access-Control-Allow-Origin" not in rejected.headers
