"""
Key-value stores behind the app's persistence seams.

Each store has a small get/put interface and interchangeable backends,
selected by configuration:

- SettingsStore: shop -> ShopSettings (Supabase table, memory, or a Shopify metafield)
- SessionStore: session id -> ShopSession (Supabase table or memory)
- OAuthStateStore: single-use OAuth state nonces (Redis or memory)
- SubscriptionStore: shop -> billing records (Supabase table or memory)
- ShopRegistry: install / uninstall bookkeeping (Supabase table or memory)
"""

import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import redis

from app.core.config import settings as app_settings
from app.domain.schemas import ShopSession, ShopSettings
from app.repositories.session import SessionRepository
from app.repositories.settings import SettingsRepository
from app.repositories.shop import ShopRepository
from app.repositories.subscription import SubscriptionRepository
from app.services.shopify import ShopifyClient, create_shopify_client

logger = logging.getLogger(__name__)


class ShopNotInstalledError(Exception):
    """The shop has no stored OAuth session."""

    def __init__(self, shop: str):
        super().__init__(f"Shop {shop} has no active session")
        self.shop = shop


# ============ Session Store ============

class SessionStore(Protocol):
    def store(self, session: ShopSession) -> None: ...

    def load(self, session_id: str) -> ShopSession | None: ...

    def find_by_shop(self, shop: str) -> list[ShopSession]: ...

    def delete(self, session_id: str) -> None: ...

    def delete_by_shop(self, shop: str) -> int: ...


def get_offline_session(store: SessionStore, shop: str) -> ShopSession | None:
    return store.load(ShopSession.offline_id(shop))


def get_shop_session(store: SessionStore, shop: str) -> ShopSession | None:
    """The offline session, or else any still-valid online session of the shop."""
    session = get_offline_session(store, shop)
    if session is not None:
        return session
    for candidate in store.find_by_shop(shop):
        if candidate.is_active():
            return candidate
    return None


class SupabaseSessionStore:

    def store(self, session: ShopSession) -> None:
        SessionRepository.store(session.model_dump(mode="json"))

    def load(self, session_id: str) -> ShopSession | None:
        row = SessionRepository.load(session_id)
        return ShopSession.model_validate(row) if row else None

    def find_by_shop(self, shop: str) -> list[ShopSession]:
        return [ShopSession.model_validate(row) for row in SessionRepository.find_by_shop(shop)]

    def delete(self, session_id: str) -> None:
        SessionRepository.delete(session_id)

    def delete_by_shop(self, shop: str) -> int:
        return SessionRepository.delete_by_shop(shop)


class MemorySessionStore:

    def __init__(self):
        self._sessions: dict[str, ShopSession] = {}
        self._lock = threading.Lock()

    def store(self, session: ShopSession) -> None:
        with self._lock:
            self._sessions[session.id] = session.model_copy()

    def load(self, session_id: str) -> ShopSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def find_by_shop(self, shop: str) -> list[ShopSession]:
        with self._lock:
            return [s.model_copy() for s in self._sessions.values() if s.shop == shop]

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def delete_by_shop(self, shop: str) -> int:
        with self._lock:
            ids = [sid for sid, s in self._sessions.items() if s.shop == shop]
            for sid in ids:
                del self._sessions[sid]
            return len(ids)


# ============ Settings Store ============

class SettingsStore(Protocol):
    def get(self, shop: str) -> ShopSettings | None: ...

    def put(self, shop: str, settings: ShopSettings) -> ShopSettings: ...

    def delete(self, shop: str) -> None: ...


def get_or_create_settings(store: SettingsStore, shop: str) -> ShopSettings:
    """Return a shop's settings, persisting the defaults on first access."""
    current = store.get(shop)
    if current is not None:
        return current
    logger.info(f"Creating default bar settings for {shop}")
    return store.put(shop, ShopSettings())


class SupabaseSettingsStore:

    def get(self, shop: str) -> ShopSettings | None:
        raw = SettingsRepository.get(shop)
        return ShopSettings.from_stored(raw) if raw is not None else None

    def put(self, shop: str, settings: ShopSettings) -> ShopSettings:
        SettingsRepository.upsert(shop, settings.model_dump(mode="json"))
        return settings

    def delete(self, shop: str) -> None:
        SettingsRepository.delete(shop)


class MemorySettingsStore:

    def __init__(self):
        self._settings: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, shop: str) -> ShopSettings | None:
        with self._lock:
            raw = self._settings.get(shop)
        return ShopSettings.from_stored(raw) if raw is not None else None

    def put(self, shop: str, settings: ShopSettings) -> ShopSettings:
        with self._lock:
            self._settings[shop] = settings.model_dump(mode="json")
        return settings

    def delete(self, shop: str) -> None:
        with self._lock:
            self._settings.pop(shop, None)


class MetafieldSettingsStore:
    """Settings kept in a JSON metafield on the Shopify shop itself."""

    def __init__(
        self,
        sessions: SessionStore,
        client_factory: Callable[[str, str], ShopifyClient] = create_shopify_client,
    ):
        self.sessions = sessions
        self.client_factory = client_factory

    def _client(self, shop: str) -> ShopifyClient | None:
        session = get_shop_session(self.sessions, shop)
        if session is None:
            return None
        return self.client_factory(shop, session.access_token)

    def get(self, shop: str) -> ShopSettings | None:
        client = self._client(shop)
        if client is None:
            return None
        with client:
            raw = client.get_settings_metafield()
        return ShopSettings.from_stored(raw) if raw is not None else None

    def put(self, shop: str, settings: ShopSettings) -> ShopSettings:
        client = self._client(shop)
        if client is None:
            raise ShopNotInstalledError(shop)
        with client:
            client.set_settings_metafield(settings.model_dump(mode="json"))
        return settings

    def delete(self, shop: str) -> None:
        client = self._client(shop)
        if client is None:
            return
        with client:
            client.delete_settings_metafield()


# ============ OAuth State Store ============

class OAuthStateStore(Protocol):
    def issue(self, shop: str) -> str: ...

    def consume(self, state: str) -> str | None: ...


def new_state() -> str:
    return secrets.token_hex(16)


_redis: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(app_settings.redis_url, decode_responses=True)
    return _redis


class RedisOAuthStateStore:
    KEY_PREFIX = "oauth_state:"

    def __init__(self, client: redis.Redis, ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def issue(self, shop: str) -> str:
        state = new_state()
        self.client.set(f"{self.KEY_PREFIX}{state}", shop, ex=self.ttl_seconds, nx=True)
        return state

    def consume(self, state: str) -> str | None:
        # GETDEL is atomic: a replayed callback finds nothing
        return self.client.getdel(f"{self.KEY_PREFIX}{state}")


class MemoryOAuthStateStore:

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._states: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def issue(self, shop: str) -> str:
        state = new_state()
        with self._lock:
            now = self.clock()
            self._states = {k: v for k, v in self._states.items() if v[1] > now}
            self._states[state] = (shop, now + self.ttl_seconds)
        return state

    def consume(self, state: str) -> str | None:
        with self._lock:
            entry = self._states.pop(state, None)
        if entry is None:
            return None
        shop, expires_at = entry
        return shop if expires_at > self.clock() else None


# ============ Subscription Store ============

class SubscriptionStore(Protocol):
    def latest(self, shop: str) -> dict | None: ...

    def create(self, shop: str, plan_name: str, charge_id: str, status: str = "pending") -> dict | None: ...

    def update_status(
        self,
        charge_id: str,
        status: str,
        trial_ends_at: str | None = None,
        billing_on: str | None = None,
    ) -> dict | None: ...


class SupabaseSubscriptionStore:

    def latest(self, shop: str) -> dict | None:
        return SubscriptionRepository.get_latest(shop)

    def create(self, shop: str, plan_name: str, charge_id: str, status: str = "pending") -> dict | None:
        return SubscriptionRepository.create(shop, plan_name, charge_id, status)

    def update_status(self, charge_id, status, trial_ends_at=None, billing_on=None) -> dict | None:
        return SubscriptionRepository.update_status(charge_id, status, trial_ends_at, billing_on)


class MemorySubscriptionStore:

    def __init__(self):
        self._records: list[dict] = []
        self._lock = threading.Lock()

    def latest(self, shop: str) -> dict | None:
        with self._lock:
            records = [r for r in self._records if r["shop_domain"] == shop]
        return dict(records[-1]) if records else None

    def create(self, shop: str, plan_name: str, charge_id: str, status: str = "pending") -> dict | None:
        record = {
            "shop_domain": shop,
            "plan_name": plan_name,
            "charge_id": charge_id,
            "status": status,
            "trial_ends_at": None,
            "billing_on": None,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._records.append(record)
        return dict(record)

    def update_status(self, charge_id, status, trial_ends_at=None, billing_on=None) -> dict | None:
        with self._lock:
            for record in self._records:
                if record["charge_id"] == charge_id:
                    record.update(status=status, trial_ends_at=trial_ends_at, billing_on=billing_on)
                    return dict(record)
        return None


# ============ Shop Registry ============

class ShopRegistry(Protocol):
    def record_install(self, shop: str, scope: str = "") -> None: ...

    def record_uninstall(self, shop: str) -> None: ...

    def is_installed(self, shop: str) -> bool: ...

    def forget(self, shop: str) -> None: ...


class SupabaseShopRegistry:

    def record_install(self, shop: str, scope: str = "") -> None:
        ShopRepository.upsert_installed(shop, scope)

    def record_uninstall(self, shop: str) -> None:
        ShopRepository.mark_uninstalled(shop)

    def is_installed(self, shop: str) -> bool:
        return ShopRepository.get_active(shop) is not None

    def forget(self, shop: str) -> None:
        ShopRepository.delete(shop)


class MemoryShopRegistry:

    def __init__(self):
        self._shops: dict[str, dict] = {}
        self._lock = threading.Lock()

    def record_install(self, shop: str, scope: str = "") -> None:
        with self._lock:
            self._shops[shop] = {"shop_domain": shop, "scope": scope, "uninstalled_at": None}

    def record_uninstall(self, shop: str) -> None:
        with self._lock:
            if shop in self._shops:
                self._shops[shop]["uninstalled_at"] = datetime.now(timezone.utc).isoformat()

    def is_installed(self, shop: str) -> bool:
        with self._lock:
            record = self._shops.get(shop)
        return record is not None and record["uninstalled_at"] is None

    def forget(self, shop: str) -> None:
        with self._lock:
            self._shops.pop(shop, None)


# ============ Factories ============

def create_session_store(backend: str | None = None) -> SessionStore:
    backend = backend or app_settings.session_backend
    if backend == "memory":
        return MemorySessionStore()
    return SupabaseSessionStore()


def create_settings_store(sessions: SessionStore, backend: str | None = None) -> SettingsStore:
    backend = backend or app_settings.settings_backend
    if backend == "memory":
        return MemorySettingsStore()
    if backend == "metafield":
        return MetafieldSettingsStore(sessions)
    return SupabaseSettingsStore()


def create_oauth_state_store(backend: str | None = None) -> OAuthStateStore:
    backend = backend or app_settings.oauth_state_backend
    if backend == "memory":
        return MemoryOAuthStateStore(app_settings.oauth_state_ttl_seconds)
    return RedisOAuthStateStore(get_redis(), app_settings.oauth_state_ttl_seconds)


def create_subscription_store(backend: str | None = None) -> SubscriptionStore:
    backend = backend or app_settings.session_backend
    if backend == "supabase":
        return SupabaseSubscriptionStore()
    return MemorySubscriptionStore()


def create_shop_registry(backend: str | None = None) -> ShopRegistry:
    backend = backend or app_settings.session_backend
    if backend == "supabase":
        return SupabaseShopRegistry()
    return MemoryShopRegistry()
