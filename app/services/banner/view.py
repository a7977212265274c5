"""
Banner view: the single on-page element the runtime mutates.

``BannerDocument`` models the slice of a page the banner touches: a ready
signal and elements addressed by id. Rendering never creates a second
container, so repeated initialisation updates the banner in place.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol


BANNER_ELEMENT_ID = "free-shipping-bar-container"
TEXT_ELEMENT_ID = "free-shipping-bar-text"


class BannerView(Protocol):
    async def wait_ready(self) -> None: ...

    def render(self, text: str) -> None: ...

    def hide(self) -> None: ...


@dataclass
class BannerElement:
    id: str
    text: str = ""
    visible: bool = True
    children: list["BannerElement"] = field(default_factory=list)


class BannerDocument:
    """In-process stand-in for the host page."""

    def __init__(self, ready: bool = True, on_change: Optional[Callable[[Optional[str]], None]] = None):
        self._ready = asyncio.Event()
        if ready:
            self._ready.set()
        self._on_change = on_change
        self.body: list[BannerElement] = []

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def mark_ready(self) -> None:
        self._ready.set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def get_element(self, element_id: str) -> BannerElement | None:
        for element in self._walk(self.body):
            if element.id == element_id:
                return element
        return None

    def count(self, element_id: str) -> int:
        return sum(1 for element in self._walk(self.body) if element.id == element_id)

    def _walk(self, elements: list[BannerElement]):
        for element in elements:
            yield element
            yield from self._walk(element.children)

    def render(self, text: str) -> None:
        container = self.get_element(BANNER_ELEMENT_ID)
        if container is None:
            container = BannerElement(BANNER_ELEMENT_ID)
            self.body.append(container)
        text_element = self.get_element(TEXT_ELEMENT_ID)
        if text_element is None:
            text_element = BannerElement(TEXT_ELEMENT_ID)
            container.children.append(text_element)

        changed = text_element.text != text or not container.visible
        text_element.text = text
        container.visible = True
        if changed and self._on_change:
            self._on_change(text)

    def hide(self) -> None:
        container = self.get_element(BANNER_ELEMENT_ID)
        if container is not None and container.visible:
            container.visible = False
            if self._on_change:
                self._on_change(None)

    @property
    def text(self) -> str | None:
        container = self.get_element(BANNER_ELEMENT_ID)
        element = self.get_element(TEXT_ELEMENT_ID)
        if container is None or element is None or not container.visible:
            return None
        return element.text
