"""
Shopify Admin API client.

Covers what the app needs from Shopify: the OAuth code exchange, ScriptTag
and webhook registration, recurring application charges (billing) and the
shop-owned metafield used by the metafield settings backend.
"""

import json
import logging
from typing import Any, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class ShopifyAPIError(Exception):
    """Shopify answered with an error or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _raise_for_response(response: httpx.Response, what: str) -> None:
    if response.is_success:
        return
    raise ShopifyAPIError(
        f"{what} failed: HTTP {response.status_code}: {response.text[:200]}",
        status_code=response.status_code,
    )


def exchange_access_token(shop: str, code: str, client: httpx.Client | None = None) -> dict:
    """Trade an OAuth authorization code for an access token.

    Returns Shopify's payload: ``access_token`` and ``scope``, plus
    ``expires_in`` and ``associated_user`` for online tokens.
    """
    url = f"https://{shop}/admin/oauth/access_token"
    payload = {
        "client_id": settings.shopify_api_key,
        "client_secret": settings.shopify_api_secret,
        "code": code,
    }
    http = client or httpx.Client(timeout=DEFAULT_TIMEOUT)
    try:
        response = http.post(url, json=payload)
    except httpx.HTTPError as e:
        raise ShopifyAPIError(f"Token exchange with {shop} failed: {e}") from e
    finally:
        if client is None:
            http.close()

    _raise_for_response(response, "Token exchange")
    data = response.json()
    if not data.get("access_token"):
        raise ShopifyAPIError("Token exchange returned no access_token")
    return data


class ShopifyClient:
    """Admin API client bound to one shop and access token."""

    METAFIELD_NAMESPACE = "free_delivery_bar"
    METAFIELD_KEY = "settings"

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.shop = shop
        self.api_version = api_version or settings.shopify_api_version
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @property
    def base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ShopifyClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ============ Transport ============

    def rest(self, method: str, path: str, json_body: dict | None = None, params: dict | None = None) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._client.request(method, url, json=json_body, params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"{method} {path} on {self.shop} failed: {e}") from e
        _raise_for_response(response, f"{method} {path}")
        return response.json() if response.content else {}

    def graphql(self, query: str, variables: dict | None = None) -> dict:
        data = self.rest("POST", "graphql.json", json_body={"query": query, "variables": variables or {}})
        if data.get("errors"):
            raise ShopifyAPIError(f"GraphQL errors: {data['errors']}")
        return data.get("data") or {}

    # ============ Script tags ============

    def install_script_tag(self, src: str) -> dict:
        """Create the storefront ScriptTag unless one with the same src exists."""
        existing = self.rest("GET", "script_tags.json", params={"src": src}).get("script_tags", [])
        if existing:
            return existing[0]
        data = self.rest("POST", "script_tags.json", json_body={
            "script_tag": {"event": "onload", "src": src},
        })
        return data.get("script_tag", {})

    def remove_script_tags(self, src: str) -> int:
        existing = self.rest("GET", "script_tags.json", params={"src": src}).get("script_tags", [])
        for tag in existing:
            self.rest("DELETE", f"script_tags/{tag['id']}.json")
        return len(existing)

    # ============ Webhooks ============

    def register_webhook(self, topic: str, address: str) -> dict:
        """Subscribe to a webhook topic, reusing an identical subscription."""
        existing = self.rest("GET", "webhooks.json", params={"topic": topic}).get("webhooks", [])
        for hook in existing:
            if hook.get("address") == address:
                return hook
        data = self.rest("POST", "webhooks.json", json_body={
            "webhook": {"topic": topic, "address": address, "format": "json"},
        })
        return data.get("webhook", {})

    # ============ Billing ============

    def create_recurring_charge(
        self,
        name: str,
        price: float,
        return_url: str,
        trial_days: int = 0,
        test: bool = False,
    ) -> dict:
        data = self.rest("POST", "recurring_application_charges.json", json_body={
            "recurring_application_charge": {
                "name": name,
                "price": price,
                "return_url": return_url,
                "trial_days": trial_days,
                "test": test,
            },
        })
        return data.get("recurring_application_charge", {})

    def get_recurring_charge(self, charge_id: str) -> dict:
        data = self.rest("GET", f"recurring_application_charges/{charge_id}.json")
        return data.get("recurring_application_charge", {})

    # ============ Metafields ============

    def get_settings_metafield(self) -> Optional[dict]:
        data = self.graphql(
            """
            query($namespace: String!, $key: String!) {
              shop { metafield(namespace: $namespace, key: $key) { value } }
            }
            """,
            {"namespace": self.METAFIELD_NAMESPACE, "key": self.METAFIELD_KEY},
        )
        metafield = (data.get("shop") or {}).get("metafield")
        if not metafield:
            return None
        try:
            return json.loads(metafield["value"])
        except (TypeError, ValueError):
            logger.warning(f"Unreadable settings metafield on {self.shop}")
            return None

    def _shop_gid(self) -> str:
        data = self.graphql("query { shop { id } }")
        return data["shop"]["id"]

    def set_settings_metafield(self, value: dict[str, Any]) -> None:
        data = self.graphql(
            """
            mutation($metafields: [MetafieldsSetInput!]!) {
              metafieldsSet(metafields: $metafields) { userErrors { field message } }
            }
            """,
            {"metafields": [{
                "ownerId": self._shop_gid(),
                "namespace": self.METAFIELD_NAMESPACE,
                "key": self.METAFIELD_KEY,
                "type": "json",
                "value": json.dumps(value),
            }]},
        )
        errors = (data.get("metafieldsSet") or {}).get("userErrors") or []
        if errors:
            raise ShopifyAPIError(f"metafieldsSet rejected: {errors}")

    def delete_settings_metafield(self) -> None:
        self.graphql(
            """
            mutation($metafields: [MetafieldIdentifierInput!]!) {
              metafieldsDelete(metafields: $metafields) { userErrors { field message } }
            }
            """,
            {"metafields": [{
                "ownerId": self._shop_gid(),
                "namespace": self.METAFIELD_NAMESPACE,
                "key": self.METAFIELD_KEY,
            }]},
        )


def create_shopify_client(shop: str, access_token: str) -> ShopifyClient:
    return ShopifyClient(shop, access_token)
