import base64
import hashlib
import hmac
import logging
import re
from typing import Mapping, Optional

from jose import jwt, JWTError
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import settings

logger = logging.getLogger(__name__)

# Bearer token extractor (auto_error=False allows the dev-mode shop parameter)
security = HTTPBearer(auto_error=False)

SHOP_DOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")


def normalize_shop_domain(shop: str | None) -> str | None:
    """Return a canonical ``*.myshopify.com`` domain, or None if the value is not one."""
    if not shop:
        return None
    domain = shop.strip().lower().replace("https://", "").replace("http://", "")
    domain = domain.split("/")[0]
    return domain if SHOP_DOMAIN_PATTERN.match(domain) else None


def require_shop_param(shop: str | None) -> str:
    domain = normalize_shop_domain(shop)
    if not domain:
        raise HTTPException(status_code=400, detail="Missing or invalid shop parameter")
    return domain


def _secret() -> bytes:
    return settings.shopify_api_secret.encode("utf-8")


def verify_oauth_hmac(query: Mapping[str, str]) -> bool:
    """Verify the ``hmac`` Shopify adds to OAuth redirects and admin links."""
    if not settings.shopify_api_secret:
        return False
    received = query.get("hmac", "")
    message = "&".join(
        f"{key}={query[key]}" for key in sorted(query.keys()) if key not in ("hmac", "signature")
    )
    digest = hmac.new(_secret(), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, received)


def verify_webhook_hmac(raw_body: bytes, signature: str | None) -> bool:
    """Verify ``X-Shopify-Hmac-Sha256``: base64 HMAC-SHA256 of the raw request body."""
    if not settings.shopify_api_secret or not signature:
        return False
    digest = base64.b64encode(hmac.new(_secret(), raw_body, hashlib.sha256).digest()).decode()
    return hmac.compare_digest(digest, signature)


def verify_app_proxy_signature(query: Mapping[str, list[str]]) -> bool:
    """Verify the ``signature`` Shopify adds to app proxy requests.

    Parameters are sorted, multi-valued ones joined with commas, and
    concatenated without separators before hashing.
    """
    if not settings.shopify_api_secret:
        return False
    values = query.get("signature") or [""]
    received = values[0]
    message = "".join(
        f"{key}={','.join(query[key])}" for key in sorted(query.keys()) if key != "signature"
    )
    digest = hmac.new(_secret(), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, received)


def verify_session_token(token: str) -> dict:
    """Verify an App Bridge session token and return its payload.

    Session tokens are HS256 JWTs signed with the app secret, addressed to the
    app's API key, with ``dest`` set to the shop's admin URL.
    """
    try:
        payload = jwt.decode(
            token,
            settings.shopify_api_secret,
            algorithms=["HS256"],
            audience=settings.shopify_api_key,
        )
    except JWTError as e:
        logger.warning(f"Session token verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )

    shop = normalize_shop_domain(payload.get("dest"))
    if not shop:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token: missing shop",
        )
    payload["shop"] = shop
    return payload


def get_current_shop(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    shop: Optional[str] = Query(None),
) -> str:
    """Resolve the shop an admin request acts for.

    Production requires a session token. Elsewhere a ``shop`` query parameter
    is accepted so the API can be exercised without the embedded admin.
    """
    if credentials:
        return verify_session_token(credentials.credentials)["shop"]
    if not settings.is_production and shop:
        return require_shop_param(shop)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
