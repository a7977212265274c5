#!/usr/bin/env python3
"""
Watch a storefront cart and print the free shipping banner as it changes.

Runs the same cart banner runtime as the storefront script, against a live
shop, with the shop's stored settings:
    python -m scripts.watch_cart https://my-shop.myshopify.com --cart-token <cart cookie>

Press Ctrl+C to stop.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add the app to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from app.core.config import settings
from app.core.security import normalize_shop_domain
from app.domain.schemas import ShopSettings
from app.services.banner import (
    BannerDocument,
    CartBannerRuntime,
    FileSnapshotCache,
    HttpCartReader,
    PollingObserver,
    RuntimeOptions,
)
from app.services.stores import create_session_store, create_settings_store

logger = logging.getLogger(__name__)


def load_settings(shop: str | None, dynamic: bool) -> ShopSettings:
    bar_settings = None
    if shop:
        store = create_settings_store(create_session_store())
        try:
            bar_settings = store.get(shop)
        except Exception as e:
            logger.warning(f"Could not load settings for {shop}, using defaults: {e}")
    bar_settings = bar_settings or ShopSettings()
    if dynamic and not bar_settings.calculate_difference:
        bar_settings = bar_settings.model_copy(update={"calculate_difference": True})
    return bar_settings


def print_banner(text: str | None) -> None:
    print(text if text is not None else "(banner hidden)", flush=True)


async def watch(args: argparse.Namespace) -> None:
    shop = normalize_shop_domain(args.shop or args.storefront)
    bar_settings = load_settings(shop, args.dynamic)
    options = RuntimeOptions.from_settings(settings)

    cookies = {"cart": args.cart_token} if args.cart_token else None
    async with httpx.AsyncClient(cookies=cookies, follow_redirects=True) as client:
        runtime = CartBannerRuntime(
            bar_settings,
            reader=HttpCartReader(args.storefront, client=client),
            view=BannerDocument(on_change=print_banner),
            cache=FileSnapshotCache(args.cache),
            observers=[PollingObserver(options.poll_interval_ms / 1000)],
            options=options,
        )
        await runtime.start()
        if not runtime.dynamic:
            return
        try:
            await asyncio.Event().wait()
        finally:
            await runtime.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Print the free shipping banner for a live cart.")
    parser.add_argument("storefront", help="Storefront base URL, e.g. https://my-shop.myshopify.com")
    parser.add_argument("--shop", help="myshopify.com domain whose stored settings to use")
    parser.add_argument("--cart-token", help="Value of the storefront 'cart' cookie")
    parser.add_argument("--cache", type=Path, default=Path(".cart_snapshot.json"))
    parser.add_argument("--dynamic", action="store_true", help="Force calculate_difference on")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        asyncio.run(watch(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
