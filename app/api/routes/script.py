"""The storefront banner script served to ScriptTags."""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from app.api.deps import get_settings_store
from app.core.config import settings
from app.core.security import normalize_shop_domain
from app.domain.schemas import ShopSettings
from app.services.banner.runtime import RuntimeOptions
from app.services.script_generator import render_banner_script
from app.services.stores import SettingsStore

logger = logging.getLogger(__name__)

router = APIRouter()

JS_MEDIA_TYPE = "application/javascript"


def _js_response(body: str, status_code: int = 200) -> Response:
    cache_control = "public, max-age=60" if status_code == 200 else "no-store"
    return Response(
        content=body,
        status_code=status_code,
        media_type=JS_MEDIA_TYPE,
        headers={"Cache-Control": cache_control},
    )


@router.get("/free-shipping-bar.js")
def banner_script(
    shop: str | None = Query(None),
    store: SettingsStore = Depends(get_settings_store),
):
    """
    Generate the banner script for a shop.

    The settings snapshot is embedded at generation time. Errors answer a
    JS comment so the storefront never receives a broken script.
    """
    domain = normalize_shop_domain(shop)
    if not domain:
        return _js_response("/* Free shipping bar: missing or invalid shop parameter */\n", status_code=400)

    try:
        bar_settings = store.get(domain) or ShopSettings()
        body = render_banner_script(bar_settings, RuntimeOptions.from_settings(settings))
    except Exception as e:
        logger.error(f"Failed to generate banner script for {domain}: {e}")
        return _js_response("/* Free shipping bar: script unavailable */\n", status_code=500)
    return _js_response(body)
