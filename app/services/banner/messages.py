"""
Banner message derivation.

Pure functions that turn a settings snapshot and a cart subtotal into the
text (or absence) of the free shipping banner. Shared by the asyncio runtime,
the preview endpoint, and mirrored line-for-line by the storefront script.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from app.domain.schemas import PRICE_PLACEHOLDER, THRESHOLD_PLACEHOLDER, ShopSettings


DEFAULT_MAX_SNAPSHOT_AGE = timedelta(hours=24)


class BannerKind(str, Enum):
    HIDDEN = "hidden"
    STATIC = "static"
    LOADING = "loading"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class BannerDisplayState:
    kind: BannerKind
    text: Optional[str] = None

    @property
    def visible(self) -> bool:
        return self.kind is not BannerKind.HIDDEN

    @classmethod
    def hidden(cls) -> "BannerDisplayState":
        return cls(BannerKind.HIDDEN)


@dataclass(frozen=True)
class CartSnapshot:
    subtotal_minor: int
    fetched_at_ms: int

    def is_fresh(self, now_ms: int, max_age: timedelta = DEFAULT_MAX_SNAPSHOT_AGE) -> bool:
        age_ms = now_ms - self.fetched_at_ms
        return 0 <= age_ms <= max_age.total_seconds() * 1000


def format_currency(amount_minor: int, decimal_separator: str = ".") -> str:
    """Format minor units with two decimals, e.g. 5000 -> '50.00'."""
    sign = "-" if amount_minor < 0 else ""
    major, minor = divmod(abs(amount_minor), 100)
    return f"{sign}{major}{decimal_separator}{minor:02d}"


def _fill(template: str, settings: ShopSettings, price_minor: int | None = None) -> str:
    text = template.replace(
        THRESHOLD_PLACEHOLDER,
        format_currency(settings.threshold_minor, settings.decimal_separator),
    )
    if price_minor is not None:
        text = text.replace(PRICE_PLACEHOLDER, format_currency(price_minor, settings.decimal_separator))
    return text


def derive_message(subtotal_minor: int, settings: ShopSettings) -> str | None:
    """Text for a cart subtotal, or None when the banner should be hidden.

    Reaching the threshold exactly counts as success. Negative subtotals come
    from malformed reads and are treated as an empty cart.
    """
    subtotal_minor = max(0, subtotal_minor)
    remaining = settings.threshold_minor - subtotal_minor
    if remaining <= 0:
        return settings.success_message if settings.show_success_message else None
    return _fill(settings.message_template, settings, price_minor=remaining)


def derive_state(subtotal_minor: int, settings: ShopSettings) -> BannerDisplayState:
    message = derive_message(subtotal_minor, settings)
    if message is None:
        return BannerDisplayState.hidden()
    return BannerDisplayState(BannerKind.DYNAMIC, message)


def static_message(settings: ShopSettings) -> str:
    return _fill(settings.message_template, settings)


def fallback_message(settings: ShopSettings) -> str:
    """Generic text used when the cart cannot be read."""
    return _fill(settings.fallback_message, settings)


def initial_state(
    settings: ShopSettings,
    cached: CartSnapshot | None,
    now_ms: int,
    max_age: timedelta = DEFAULT_MAX_SNAPSHOT_AGE,
) -> BannerDisplayState:
    """State rendered before the first cart read completes."""
    if not settings.enabled:
        return BannerDisplayState.hidden()
    if not settings.calculate_difference:
        return BannerDisplayState(BannerKind.STATIC, static_message(settings))
    if cached is not None and cached.is_fresh(now_ms, max_age):
        return derive_state(cached.subtotal_minor, settings)
    return BannerDisplayState(BannerKind.LOADING, settings.loading_message)
