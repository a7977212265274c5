"""Shopify webhooks: app uninstall and the mandatory privacy topics."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_session_store, get_settings_store, get_shop_registry
from app.core.security import normalize_shop_domain, verify_webhook_hmac
from app.services.shopify import ShopifyAPIError
from app.services.stores import SessionStore, SettingsStore, ShopRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


async def verified_webhook(request: Request) -> tuple[str, dict]:
    """Check the webhook HMAC over the raw body and return (shop, payload)."""
    raw_body = await request.body()
    if not verify_webhook_hmac(raw_body, request.headers.get("X-Shopify-Hmac-Sha256")):
        logger.warning(f"Rejected webhook with invalid HMAC on {request.url.path}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw_body) if raw_body else {}
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    shop = normalize_shop_domain(
        request.headers.get("X-Shopify-Shop-Domain")
        or payload.get("myshopify_domain")
        or payload.get("shop_domain")
    )
    if not shop:
        raise HTTPException(status_code=400, detail="Webhook does not identify a shop")
    return shop, payload


def purge_shop_data(shop: str, settings_store: SettingsStore, sessions: SessionStore) -> None:
    """Delete the shop's settings, then its sessions."""
    try:
        settings_store.delete(shop)
    except ShopifyAPIError as e:
        # Metafield-backed settings go away with the app on Shopify's side
        logger.warning(f"Could not delete settings for {shop}: {e}")
    removed = sessions.delete_by_shop(shop)
    logger.info(f"Deleted settings and {removed} session(s) for {shop}")


@router.post("/app-uninstalled")
async def app_uninstalled(
    request: Request,
    settings_store: SettingsStore = Depends(get_settings_store),
    sessions: SessionStore = Depends(get_session_store),
    registry: ShopRegistry = Depends(get_shop_registry),
):
    shop, _ = await verified_webhook(request)
    logger.info(f"App uninstalled from {shop}")

    purge_shop_data(shop, settings_store, sessions)
    registry.record_uninstall(shop)
    return {"success": True}


# ============ Privacy webhooks ============

@router.post("/customers/data_request")
async def customers_data_request(request: Request):
    """No customer data is stored, so there is nothing to report."""
    shop, _ = await verified_webhook(request)
    logger.info(f"Customer data request for {shop}: no customer data stored")
    return {"success": True}


@router.post("/customers/redact")
async def customers_redact(request: Request):
    shop, _ = await verified_webhook(request)
    logger.info(f"Customer redaction for {shop}: no customer data stored")
    return {"success": True}


@router.post("/shop/redact")
async def shop_redact(
    request: Request,
    settings_store: SettingsStore = Depends(get_settings_store),
    sessions: SessionStore = Depends(get_session_store),
    registry: ShopRegistry = Depends(get_shop_registry),
):
    """Erase everything stored for a shop, 48 hours after uninstall."""
    shop, _ = await verified_webhook(request)
    logger.info(f"Shop redaction for {shop}")

    purge_shop_data(shop, settings_store, sessions)
    registry.forget(shop)
    return {"success": True}
