"""
Cart-change observers.

Each observer turns one kind of page signal into a runtime trigger. They are
composed onto the runtime instead of patching the page's own network code.
"""

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from app.services.banner.runtime import CartBannerRuntime

logger = logging.getLogger(__name__)

CART_EVENTS = (
    "cart:updated",
    "cart:refresh",
    "cart:change",
    "cart.updated",
    "cart.requestComplete",
    "cart_update",
    "ajaxCart.afterCartLoad",
)

CART_PATH_PATTERN = re.compile(r"/cart/(add|change|update|clear)\b")


def is_cart_mutation_url(url: str | None) -> bool:
    return bool(url) and CART_PATH_PATTERN.search(url) is not None


class CartChangeObserver(Protocol):
    def attach(self, runtime: "CartBannerRuntime") -> None: ...

    def detach(self) -> None: ...


class _Observer:
    def __init__(self):
        self.runtime: Optional["CartBannerRuntime"] = None

    def attach(self, runtime: "CartBannerRuntime") -> None:
        self.runtime = runtime

    def detach(self) -> None:
        self.runtime = None


class EventObserver(_Observer):
    """Theme events announcing that the cart changed."""

    def __init__(self, events: tuple[str, ...] = CART_EVENTS):
        super().__init__()
        self.events = events

    def dispatch(self, event_name: str) -> bool:
        if self.runtime is None or event_name not in self.events:
            return False
        self.runtime.trigger(f"event:{event_name}")
        return True


class FormSubmitObserver(_Observer):
    """Form submissions whose action targets a cart mutation endpoint."""

    def submit(self, action: str | None) -> bool:
        if self.runtime is None or not is_cart_mutation_url(action):
            return False
        self.runtime.trigger("submit")
        return True


class VisibilityObserver(_Observer):
    """Refreshes when the page becomes visible again."""

    def __init__(self, visible: bool = True):
        super().__init__()
        self.visible = visible

    def set_visible(self, visible: bool) -> bool:
        regained = visible and not self.visible
        self.visible = visible
        if regained and self.runtime is not None:
            self.runtime.trigger("visibility")
        return regained


class PollingObserver(_Observer):
    """Periodic refresh while the page is visible."""

    def __init__(self, interval: float, visibility: VisibilityObserver | None = None):
        super().__init__()
        self.interval = interval
        self.visibility = visibility
        self._task: asyncio.Task | None = None

    def attach(self, runtime: "CartBannerRuntime") -> None:
        super().attach(runtime)
        if self.interval > 0 and self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._poll())

    def detach(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        super().detach()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.runtime is None:
                return
            if self.visibility is not None and not self.visibility.visible:
                continue
            logger.debug("Polling cart")
            self.runtime.refresh()
