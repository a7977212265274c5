"""
Cart reads and the last-known cart cache.
"""

import json
import logging
import time
from pathlib import Path
from typing import Protocol

import httpx

from app.services.banner.messages import CartSnapshot

logger = logging.getLogger(__name__)


class CartReadError(Exception):
    """The cart endpoint failed or answered something that is not a cart."""


class CartReader(Protocol):
    async def read_subtotal(self) -> int: ...


def parse_subtotal(payload: object) -> int:
    """Extract the subtotal in minor units from a /cart.js body."""
    if not isinstance(payload, dict):
        raise CartReadError("Cart body is not an object")
    for key in ("items_subtotal_price", "total_price"):
        value = payload.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    raise CartReadError("Cart body has no subtotal")


class HttpCartReader:
    """Reads ``/cart.js`` from a storefront over HTTP."""

    def __init__(
        self,
        storefront_url: str,
        client: httpx.AsyncClient | None = None,
        cart_path: str = "/cart.js",
    ):
        self.storefront_url = storefront_url.rstrip("/")
        self.cart_path = cart_path
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def read_subtotal(self) -> int:
        url = f"{self.storefront_url}{self.cart_path}"
        try:
            response = await self.client.get(
                url,
                params={"_": int(time.time() * 1000)},
                headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CartReadError(f"Cart read from {url} failed: {e}") from e
        return parse_subtotal(payload)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class SnapshotCache(Protocol):
    def load(self) -> CartSnapshot | None: ...

    def save(self, snapshot: CartSnapshot) -> None: ...


class MemorySnapshotCache:
    def __init__(self, snapshot: CartSnapshot | None = None):
        self.snapshot = snapshot

    def load(self) -> CartSnapshot | None:
        return self.snapshot

    def save(self, snapshot: CartSnapshot) -> None:
        self.snapshot = snapshot


class FileSnapshotCache:
    """JSON file cache, the command-line counterpart of the browser's localStorage."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> CartSnapshot | None:
        try:
            data = json.loads(self.path.read_text())
            return CartSnapshot(int(data["subtotal_minor"]), int(data["fetched_at_ms"]))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cart snapshot {self.path}: {e}")
            return None

    def save(self, snapshot: CartSnapshot) -> None:
        try:
            self.path.write_text(json.dumps({
                "subtotal_minor": snapshot.subtotal_minor,
                "fetched_at_ms": snapshot.fetched_at_ms,
            }))
        except OSError as e:
            logger.warning(f"Could not write cart snapshot {self.path}: {e}")
