"""Settings API for the embedded admin: read, replace and preview bar settings."""

import logging
from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import (
    ShopifyClientFactory,
    get_session_store,
    get_settings_store,
    get_shopify_client_factory,
    require_active_subscription,
)
from app.domain.schemas import BannerPreviewResponse, ScriptTagToggleResponse, ShopSettings
from app.services.banner.messages import BannerDisplayState, BannerKind, derive_state, static_message
from app.services.script_generator import script_tag_src
from app.services.shopify import ShopifyAPIError
from app.services.stores import (
    SessionStore,
    SettingsStore,
    ShopNotInstalledError,
    get_or_create_settings,
    get_shop_session,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@contextmanager
def store_errors(shop: str):
    """Translate settings store failures into HTTP errors."""
    try:
        yield
    except ShopNotInstalledError:
        raise HTTPException(status_code=404, detail=f"Shop {shop} is not installed")
    except ShopifyAPIError as e:
        logger.error(f"Shopify API error for {shop}: {e}")
        raise HTTPException(status_code=502, detail="Shopify API request failed")


def preview_state(bar_settings: ShopSettings, subtotal_minor: int) -> BannerDisplayState:
    if not bar_settings.enabled:
        return BannerDisplayState.hidden()
    if not bar_settings.calculate_difference:
        return BannerDisplayState(BannerKind.STATIC, static_message(bar_settings))
    return derive_state(subtotal_minor, bar_settings)


# ============ Settings ============

@router.get("/settings", response_model=ShopSettings)
def read_settings(
    shop: str = Depends(require_active_subscription),
    store: SettingsStore = Depends(get_settings_store),
):
    """Get the shop's bar settings, creating the defaults on first access."""
    with store_errors(shop):
        return get_or_create_settings(store, shop)


@router.put("/settings", response_model=ShopSettings)
@router.post("/settings", response_model=ShopSettings)
@router.post("/settings/update", response_model=ShopSettings)
def save_settings(
    data: ShopSettings,
    shop: str = Depends(require_active_subscription),
    store: SettingsStore = Depends(get_settings_store),
):
    """
    Replace the shop's bar settings.

    The body is a complete settings document; omitted fields take their
    defaults. Invalid documents are rejected with 422 and nothing is stored.
    use_script_tag is kept as stored: only /script-tag/disable changes it.
    """
    with store_errors(shop):
        current = store.get(shop)
        if current is not None:
            data = data.model_copy(update={"use_script_tag": current.use_script_tag})
        saved = store.put(shop, data)
    logger.info(f"Settings updated for {shop}")
    return saved


@router.get("/settings/preview", response_model=BannerPreviewResponse)
def preview_settings(
    subtotal_minor: int = Query(0),
    shop: str = Depends(require_active_subscription),
    store: SettingsStore = Depends(get_settings_store),
):
    """Banner state the storefront would show for a cart subtotal."""
    with store_errors(shop):
        bar_settings = get_or_create_settings(store, shop)
    state = preview_state(bar_settings, subtotal_minor)
    return BannerPreviewResponse(subtotal_minor=subtotal_minor, state=state.kind.value, text=state.text)


# ============ Script tag ============

@router.post("/script-tag/disable", response_model=ScriptTagToggleResponse)
def disable_script_tag(
    shop: str = Depends(require_active_subscription),
    store: SettingsStore = Depends(get_settings_store),
    sessions: SessionStore = Depends(get_session_store),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
):
    """
    Switch the shop to the theme app extension.

    Sets use_script_tag to false so the script endpoint serves a no-op, and
    removes the installed ScriptTag when the shop's token allows it.
    """
    with store_errors(shop):
        bar_settings = get_or_create_settings(store, shop)
        store.put(shop, bar_settings.model_copy(update={"use_script_tag": False}))

    session = get_shop_session(sessions, shop)
    if session is not None:
        try:
            with client_factory(shop, session.access_token) as client:
                removed = client.remove_script_tags(script_tag_src(shop))
            logger.info(f"Removed {removed} ScriptTag(s) for {shop}")
        except ShopifyAPIError as e:
            logger.warning(f"Could not remove ScriptTag for {shop}: {e}")

    return ScriptTagToggleResponse(message="Script tag disabled")
