"""
Free shipping banner logic.

This package provides:
- derive_message / initial_state: pure banner text derivation
- CartBannerRuntime: debounced, coalesced cart sync driving one banner
- Cart readers, snapshot caches, views and cart-change observers
"""

from .messages import (
    BannerDisplayState,
    BannerKind,
    CartSnapshot,
    derive_message,
    derive_state,
    fallback_message,
    format_currency,
    initial_state,
    static_message,
)
from .cart import CartReadError, HttpCartReader, MemorySnapshotCache, FileSnapshotCache, parse_subtotal
from .view import BANNER_ELEMENT_ID, TEXT_ELEMENT_ID, BannerDocument
from .observers import EventObserver, FormSubmitObserver, PollingObserver, VisibilityObserver
from .runtime import CartBannerRuntime, RuntimeOptions

__all__ = [
    "BannerDisplayState",
    "BannerKind",
    "CartSnapshot",
    "derive_message",
    "derive_state",
    "fallback_message",
    "format_currency",
    "initial_state",
    "static_message",
    "CartReadError",
    "HttpCartReader",
    "MemorySnapshotCache",
    "FileSnapshotCache",
    "parse_subtotal",
    "BANNER_ELEMENT_ID",
    "TEXT_ELEMENT_ID",
    "BannerDocument",
    "EventObserver",
    "FormSubmitObserver",
    "PollingObserver",
    "VisibilityObserver",
    "CartBannerRuntime",
    "RuntimeOptions",
]
