"""App proxy endpoint read by the theme app extension (storefront, no admin auth)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_settings_store
from app.core.config import settings
from app.core.security import normalize_shop_domain, verify_app_proxy_signature
from app.domain.schemas import ShopSettings
from app.services.stores import SettingsStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _query_lists(request: Request) -> dict[str, list[str]]:
    query: dict[str, list[str]] = {}
    for key, value in request.query_params.multi_items():
        query.setdefault(key, []).append(value)
    return query


@router.get("/settings")
def proxy_settings(
    request: Request,
    store: SettingsStore = Depends(get_settings_store),
):
    """
    Bar settings for the theme extension, in snake_case.

    Shopify signs app proxy requests; the signature is checked unless
    verification is switched off. Any lookup problem answers the defaults
    so the storefront always gets a usable document.
    """
    if settings.verify_app_proxy_signature and not verify_app_proxy_signature(_query_lists(request)):
        raise HTTPException(status_code=401, detail="Invalid app proxy signature")

    shop = normalize_shop_domain(request.query_params.get("shop"))
    if not shop:
        logger.warning("App proxy request without a valid shop, answering defaults")
        return ShopSettings().model_dump(mode="json")

    try:
        bar_settings = store.get(shop)
    except Exception as e:
        logger.error(f"App proxy settings lookup failed for {shop}: {e}")
        bar_settings = None
    return (bar_settings or ShopSettings()).model_dump(mode="json")
