"""Shopify OAuth: install and reinstall of the app on a shop."""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from app.api.deps import (
    ShopifyClientFactory,
    get_oauth_state_store,
    get_session_store,
    get_settings_store,
    get_shop_registry,
    get_shopify_client_factory,
)
from app.core.config import get_callback_url, get_public_base_url, settings
from app.core.security import require_shop_param, verify_oauth_hmac
from app.domain.schemas import ShopSession, ShopSettings
from app.services.script_generator import script_tag_src
from app.services.shopify import ShopifyAPIError, exchange_access_token
from app.services.stores import (
    OAuthStateStore,
    SessionStore,
    SettingsStore,
    ShopRegistry,
    get_or_create_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter()

STATE_COOKIE = "shopify_oauth_state"
UNINSTALL_WEBHOOK_TOPIC = "app/uninstalled"


def build_authorize_url(shop: str, state: str) -> str:
    params = [
        ("client_id", settings.shopify_api_key),
        ("scope", settings.shopify_scopes),
        ("redirect_uri", get_callback_url()),
        ("state", state),
    ]
    if settings.oauth_online:
        params.append(("grant_options[]", "per-user"))
    return f"https://{shop}/admin/oauth/authorize?{urlencode(params)}"


def uninstall_webhook_address() -> str:
    return f"{get_public_base_url()}/webhooks/app-uninstalled"


def session_from_token(shop: str, state: str, token: dict) -> ShopSession:
    """Build the stored session from Shopify's token exchange payload."""
    user = token.get("associated_user")
    if settings.oauth_online and user:
        expires_at = None
        if token.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(token["expires_in"]))
        return ShopSession(
            id=f"{shop}_{user['id']}",
            shop=shop,
            access_token=token["access_token"],
            scope=token.get("scope", ""),
            state=state,
            is_online=True,
            expires_at=expires_at,
        )
    return ShopSession(
        id=ShopSession.offline_id(shop),
        shop=shop,
        access_token=token["access_token"],
        scope=token.get("scope", ""),
        state=state,
    )


def install_storefront_hooks(
    shop: str,
    access_token: str,
    bar_settings: ShopSettings,
    client_factory: ShopifyClientFactory,
) -> None:
    """Register the ScriptTag and the uninstall webhook. Failures are logged only."""
    with client_factory(shop, access_token) as client:
        if bar_settings.use_script_tag:
            try:
                client.install_script_tag(script_tag_src(shop))
                logger.info(f"ScriptTag installed for {shop}")
            except ShopifyAPIError as e:
                logger.error(f"Failed to install ScriptTag for {shop}: {e}")

        try:
            client.register_webhook(UNINSTALL_WEBHOOK_TOPIC, uninstall_webhook_address())
            logger.info(f"Uninstall webhook registered for {shop}")
        except ShopifyAPIError as e:
            logger.error(f"Failed to register uninstall webhook for {shop}: {e}")


@router.get("/auth")
def begin_auth(
    shop: str | None = Query(None),
    states: OAuthStateStore = Depends(get_oauth_state_store),
):
    """
    Start the OAuth install flow.

    Issues a single-use state nonce, mirrors it in an http-only cookie and
    redirects the merchant to the shop's authorization page.
    """
    shop = require_shop_param(shop)
    state = states.issue(shop)

    response = RedirectResponse(build_authorize_url(shop, state), status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=settings.oauth_state_ttl_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


@router.get("/auth/callback")
def auth_callback(
    request: Request,
    states: OAuthStateStore = Depends(get_oauth_state_store),
    sessions: SessionStore = Depends(get_session_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    registry: ShopRegistry = Depends(get_shop_registry),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
):
    """
    Finish the OAuth install flow.

    Verifies the HMAC and the state nonce, exchanges the code for an access
    token, persists the session and default settings, then installs the
    storefront ScriptTag and the uninstall webhook on a best-effort basis.
    """
    query = dict(request.query_params)
    shop = require_shop_param(query.get("shop"))

    if not verify_oauth_hmac(query):
        logger.warning(f"OAuth callback for {shop} failed HMAC validation")
        raise HTTPException(status_code=401, detail="HMAC validation failed")

    state = query.get("state")
    if not state or state != request.cookies.get(STATE_COOKIE):
        raise HTTPException(status_code=403, detail="OAuth state does not match")
    if states.consume(state) != shop:
        raise HTTPException(status_code=403, detail="OAuth state expired or already used")

    code = query.get("code")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    try:
        token = exchange_access_token(shop, code)
    except ShopifyAPIError as e:
        logger.error(f"Token exchange failed for {shop}: {e}")
        raise HTTPException(status_code=502, detail="Could not obtain an access token from Shopify")

    session = session_from_token(shop, state, token)
    sessions.store(session)
    registry.record_install(shop, session.scope)
    logger.info(f"Shop {shop} installed (scope: {session.scope})")

    try:
        bar_settings = get_or_create_settings(settings_store, shop)
    except ShopifyAPIError as e:
        logger.error(f"Could not create default settings for {shop}: {e}")
        bar_settings = ShopSettings()

    install_storefront_hooks(shop, session.access_token, bar_settings, client_factory)

    response = RedirectResponse(f"https://{shop}/admin/apps/{settings.shopify_api_key}", status_code=302)
    response.delete_cookie(STATE_COOKIE)
    return response
