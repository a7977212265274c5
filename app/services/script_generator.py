"""
Banner script generator.

Renders the storefront script for one shop: the JS template in
app/templates/ with the shop's settings snapshot and runtime options
embedded as a JSON literal.
"""

import json
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlencode

from app.core.config import get_public_base_url
from app.domain.schemas import ShopSettings
from app.services.banner.observers import CART_EVENTS, CART_PATH_PATTERN
from app.services.banner.runtime import RuntimeOptions
from app.services.banner.view import BANNER_ELEMENT_ID, TEXT_ELEMENT_ID

TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "free_shipping_bar.js"
CONFIG_PLACEHOLDER = "__FREE_SHIPPING_BAR_CONFIG__"

BAR_ELEMENT_ID = "free-shipping-bar"
STORAGE_KEY_PREFIX = "freeShippingBar:cart:"
CART_PATH = "/cart.js"

DISABLED_SCRIPT = "/* Free shipping bar is disabled for this shop */\n"
SCRIPT_TAG_OFF_SCRIPT = "/* Free shipping bar is delivered by the theme app extension */\n"


@lru_cache
def load_template() -> str:
    return TEMPLATE_PATH.read_text(encoding="utf-8")


def build_script_config(settings: ShopSettings, options: RuntimeOptions) -> dict:
    return {
        "settings": settings.to_script_config(),
        "runtime": {
            "debounceMs": options.debounce_ms,
            "readTimeoutMs": options.read_timeout_ms,
            "pollIntervalMs": options.poll_interval_ms,
            "maxSnapshotAgeMs": int(options.max_snapshot_age.total_seconds() * 1000),
        },
        "elementId": BANNER_ELEMENT_ID,
        "barElementId": BAR_ELEMENT_ID,
        "textElementId": TEXT_ELEMENT_ID,
        "storageKeyPrefix": STORAGE_KEY_PREFIX,
        "cartPath": CART_PATH,
        "cartEvents": list(CART_EVENTS),
        "cartMutationPattern": CART_PATH_PATTERN.pattern,
    }


def to_js_literal(value) -> str:
    """JSON that is also safe inside an inline <script> element."""
    return (
        json.dumps(value, ensure_ascii=False)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def render_banner_script(settings: ShopSettings, options: RuntimeOptions | None = None) -> str:
    """Build the banner script for a settings snapshot.

    A disabled shop, or one whose banner comes from the theme extension,
    gets a script that does nothing.
    """
    if not settings.enabled:
        return DISABLED_SCRIPT
    if not settings.use_script_tag:
        return SCRIPT_TAG_OFF_SCRIPT

    options = options or RuntimeOptions()
    config = to_js_literal(build_script_config(settings, options))
    return load_template().replace(CONFIG_PLACEHOLDER, config, 1)


def script_tag_src(shop: str) -> str:
    """URL the storefront ScriptTag loads for a shop."""
    return f"{get_public_base_url()}/free-shipping-bar.js?{urlencode({'shop': shop})}"
