from functools import lru_cache
from typing import Callable

from fastapi import Depends

from app.core.entitlements import SubscriptionRequiredError, has_active_subscription
from app.core.security import get_current_shop
from app.services.shopify import ShopifyClient, create_shopify_client
from app.services.stores import (
    OAuthStateStore,
    SessionStore,
    SettingsStore,
    ShopRegistry,
    SubscriptionStore,
    create_oauth_state_store,
    create_session_store,
    create_settings_store,
    create_shop_registry,
    create_subscription_store,
)

ShopifyClientFactory = Callable[[str, str], ShopifyClient]


@lru_cache
def get_session_store() -> SessionStore:
    return create_session_store()


@lru_cache
def get_settings_store() -> SettingsStore:
    """Settings store for the configured backend (metafields need the session store)."""
    return create_settings_store(get_session_store())


@lru_cache
def get_oauth_state_store() -> OAuthStateStore:
    return create_oauth_state_store()


@lru_cache
def get_subscription_store() -> SubscriptionStore:
    return create_subscription_store()


@lru_cache
def get_shop_registry() -> ShopRegistry:
    return create_shop_registry()


def get_shopify_client_factory() -> ShopifyClientFactory:
    return create_shopify_client


def require_active_subscription(
    shop: str = Depends(get_current_shop),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
) -> str:
    """Resolve the current shop, gated on its subscription when billing is required."""
    if not has_active_subscription(shop, subscriptions):
        raise SubscriptionRequiredError(shop)
    return shop
