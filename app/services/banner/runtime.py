"""
Cart banner runtime.

Keeps one banner in sync with the storefront cart:

- the first render comes from the settings snapshot and a fresh cached cart
- reads are debounced and coalesced: at most one read is in flight, and
  triggers arriving meanwhile collapse into a single follow-up read
- the most recently completed read decides the banner text
- failures and timeouts fall back to a generic message, never raising
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Sequence

from app.domain.schemas import ShopSettings
from app.services.banner.cart import CartReader, SnapshotCache
from app.services.banner.messages import (
    BannerDisplayState,
    BannerKind,
    CartSnapshot,
    derive_state,
    fallback_message,
    initial_state,
)
from app.services.banner.observers import CartChangeObserver
from app.services.banner.view import BannerView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeOptions:
    debounce_ms: int = 300
    read_timeout_ms: int = 5000
    poll_interval_ms: int = 10000
    max_snapshot_age_hours: float = 24

    @classmethod
    def from_settings(cls, app_settings) -> "RuntimeOptions":
        return cls(
            debounce_ms=app_settings.cart_debounce_ms,
            read_timeout_ms=app_settings.cart_read_timeout_ms,
            poll_interval_ms=app_settings.cart_poll_interval_ms,
            max_snapshot_age_hours=app_settings.cart_snapshot_max_age_hours,
        )

    @property
    def max_snapshot_age(self) -> timedelta:
        return timedelta(hours=self.max_snapshot_age_hours)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CartBannerRuntime:
    """One banner per page load, driven by asynchronous cart reads."""

    def __init__(
        self,
        settings: ShopSettings,
        reader: CartReader,
        view: BannerView,
        cache: SnapshotCache | None = None,
        observers: Sequence[CartChangeObserver] = (),
        options: RuntimeOptions = RuntimeOptions(),
        clock: Callable[[], int] = _now_ms,
    ):
        self.settings = settings
        self.reader = reader
        self.view = view
        self.cache = cache
        self.observers = list(observers)
        self.options = options
        self.clock = clock

        self.state: Optional[BannerDisplayState] = None  # None until started
        self._ready = False
        self._starting = False
        self._read_task: asyncio.Task | None = None
        self._rerun = False
        self._debounce: asyncio.TimerHandle | None = None

    @property
    def dynamic(self) -> bool:
        return self.settings.enabled and self.settings.calculate_difference

    @property
    def reading(self) -> bool:
        return self._read_task is not None and not self._read_task.done()

    async def start(self) -> None:
        """Render the initial banner, then read the cart once and start observing.

        Calling it again re-renders the current state in place; a call made
        while the first one still waits for the page does nothing.
        """
        if not self.settings.enabled:
            return
        if self._ready:
            if self.state is not None:
                self._apply(self.state)
            return
        if self._starting:
            return

        self._starting = True
        await self.view.wait_ready()
        self._ready = True
        self._apply(initial_state(
            self.settings,
            self._load_cached(),
            self.clock(),
            self.options.max_snapshot_age,
        ))
        if not self.dynamic:
            return

        for observer in self.observers:
            observer.attach(self)
        task = self.refresh()
        if task is not None:
            await task

    async def stop(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        for observer in self.observers:
            observer.detach()
        if self.reading:
            await self._read_task

    def trigger(self, source: str = "event") -> None:
        """Request a read after the debounce window; later triggers restart the window."""
        if not self.dynamic or not self._ready:
            return
        logger.debug(f"Cart change signalled by {source}")
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = asyncio.get_running_loop().call_later(
            self.options.debounce_ms / 1000,
            self._debounce_elapsed,
        )

    def _debounce_elapsed(self) -> None:
        self._debounce = None
        self.refresh()

    def refresh(self) -> asyncio.Task | None:
        """Read the cart now, or once more after the read in flight."""
        if not self.dynamic or not self._ready:
            return None
        if self.reading:
            self._rerun = True
            return self._read_task
        self._read_task = asyncio.get_running_loop().create_task(self._read_loop())
        return self._read_task

    async def _read_loop(self) -> None:
        while True:
            self._rerun = False
            await self._read_once()
            if not self._rerun:
                return

    async def _read_once(self) -> None:
        try:
            subtotal = await asyncio.wait_for(
                self.reader.read_subtotal(),
                timeout=self.options.read_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning("Cart read timed out, showing fallback message")
            self._apply_fallback()
            return
        except Exception as e:
            # The banner is cosmetic: no read failure may escape to the host page
            logger.warning(f"Cart read failed, showing fallback message: {e}")
            self._apply_fallback()
            return
        self.on_cart_read(subtotal)

    def on_cart_read(self, subtotal_minor: int) -> None:
        """Apply a completed read and remember it as the last known cart."""
        self._apply(derive_state(subtotal_minor, self.settings))
        if self.cache is None:
            return
        try:
            self.cache.save(CartSnapshot(subtotal_minor, self.clock()))
        except Exception as e:
            logger.warning(f"Could not cache cart snapshot: {e}")

    def _load_cached(self) -> CartSnapshot | None:
        if self.cache is None or not self.dynamic:
            return None
        try:
            return self.cache.load()
        except Exception as e:
            logger.warning(f"Could not load cart snapshot: {e}")
            return None

    def _apply_fallback(self) -> None:
        self._apply(BannerDisplayState(BannerKind.STATIC, fallback_message(self.settings)))

    def _apply(self, state: BannerDisplayState) -> None:
        self.state = state
        try:
            if state.visible:
                self.view.render(state.text or "")
            else:
                self.view.hide()
        except Exception as e:
            logger.warning(f"Banner render failed: {e}")
