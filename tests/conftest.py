"""Shared pytest fixtures: memory-backed stores, a fake Shopify client and signing helpers."""

import base64
import hashlib
import hmac
import os
import time
from types import SimpleNamespace

# Configure the app before anything imports app.core.config
os.environ["ENVIRONMENT"] = "test"
os.environ["SHOPIFY_API_KEY"] = "test-api-key"
os.environ["SHOPIFY_API_SECRET"] = "test-api-secret"
os.environ["BASE_URL"] = "https://bar.example.com"
os.environ["SETTINGS_BACKEND"] = "memory"
os.environ["SESSION_BACKEND"] = "memory"
os.environ["OAUTH_STATE_BACKEND"] = "memory"
os.environ["BILLING_REQUIRED"] = "false"

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.api import deps
from app.domain.schemas import ShopSession
from app.main import app
from app.services.shopify import ShopifyAPIError
from app.services.stores import (
    MemoryOAuthStateStore,
    MemorySessionStore,
    MemorySettingsStore,
    MemoryShopRegistry,
    MemorySubscriptionStore,
)

SHOP = "test-shop.myshopify.com"
API_KEY = "test-api-key"
API_SECRET = "test-api-secret"


# ============ Signing helpers ============

def sign_oauth_query(params: dict) -> dict:
    """Add the hex ``hmac`` Shopify puts on OAuth redirects."""
    message = "&".join(f"{k}={params[k]}" for k in sorted(params))
    digest = hmac.new(API_SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()
    return {**params, "hmac": digest}


def sign_proxy_query(params: dict) -> dict:
    """Add the ``signature`` Shopify puts on app proxy requests."""
    message = "".join(f"{k}={params[k]}" for k in sorted(params))
    digest = hmac.new(API_SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()
    return {**params, "signature": digest}


def webhook_signature(body: bytes) -> str:
    return base64.b64encode(hmac.new(API_SECRET.encode(), body, hashlib.sha256).digest()).decode()


def session_token(shop: str = SHOP, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "aud": API_KEY,
        "sub": "42",
        "exp": now + 60,
        "nbf": now - 5,
        "iat": now,
    }
    claims.update(overrides)
    return jwt.encode(claims, API_SECRET, algorithm="HS256")


def auth_headers(shop: str = SHOP) -> dict:
    return {"Authorization": f"Bearer {session_token(shop)}"}


# ============ Fakes ============

class FakeShopifyClient:
    """Records Admin API calls; failing methods raise ShopifyAPIError."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.failing: set[str] = set()
        self.charge = {
            "id": 1001,
            "name": "Free Delivery Bar",
            "status": "pending",
            "confirmation_url": f"https://{SHOP}/admin/charges/1001/confirm",
        }

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.failing:
            raise ShopifyAPIError(f"{name} failed", status_code=500)

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def install_script_tag(self, src):
        self._record("install_script_tag", src)
        return {"id": 1, "src": src}

    def remove_script_tags(self, src):
        self._record("remove_script_tags", src)
        return 1

    def register_webhook(self, topic, address):
        self._record("register_webhook", topic, address)
        return {"id": 2, "topic": topic, "address": address}

    def create_recurring_charge(self, name, price, return_url, trial_days=0, test=False):
        self._record("create_recurring_charge", name, price, return_url, trial_days, test)
        return dict(self.charge)

    def get_recurring_charge(self, charge_id):
        self._record("get_recurring_charge", charge_id)
        return dict(self.charge, id=int(charge_id))


# ============ Fixtures ============

@pytest.fixture
def stores():
    return SimpleNamespace(
        sessions=MemorySessionStore(),
        settings=MemorySettingsStore(),
        states=MemoryOAuthStateStore(ttl_seconds=600),
        subscriptions=MemorySubscriptionStore(),
        registry=MemoryShopRegistry(),
    )


@pytest.fixture
def shopify():
    return FakeShopifyClient()


@pytest.fixture
def installed(stores):
    """A shop that completed OAuth."""
    stores.sessions.store(ShopSession(
        id=ShopSession.offline_id(SHOP),
        shop=SHOP,
        access_token="shpat_test",
        scope="write_script_tags",
    ))
    stores.registry.record_install(SHOP, "write_script_tags")
    return SHOP


@pytest.fixture
def client(stores, shopify):
    app.dependency_overrides[deps.get_session_store] = lambda: stores.sessions
    app.dependency_overrides[deps.get_settings_store] = lambda: stores.settings
    app.dependency_overrides[deps.get_oauth_state_store] = lambda: stores.states
    app.dependency_overrides[deps.get_subscription_store] = lambda: stores.subscriptions
    app.dependency_overrides[deps.get_shop_registry] = lambda: stores.registry
    app.dependency_overrides[deps.get_shopify_client_factory] = lambda: (lambda shop, token: shopify)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
