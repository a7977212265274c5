"""Tests for Shopify HMAC, app proxy signature and session token verification."""

import pytest
from fastapi import HTTPException

from app.core import security
from app.core.security import (
    normalize_shop_domain,
    require_shop_param,
    verify_app_proxy_signature,
    verify_oauth_hmac,
    verify_session_token,
    verify_webhook_hmac,
)
from conftest import SHOP, session_token, sign_oauth_query, sign_proxy_query, webhook_signature


class TestShopDomain:
    @pytest.mark.parametrize("raw,expected", [
        ("my-shop.myshopify.com", "my-shop.myshopify.com"),
        ("https://My-Shop.myshopify.com/admin", "my-shop.myshopify.com"),
        ("  my-shop.myshopify.com ", "my-shop.myshopify.com"),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_shop_domain(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "evil.com", "my-shop.myshopify.com.evil.com", "-x.myshopify.com"])
    def test_rejects(self, raw):
        assert normalize_shop_domain(raw) is None

    def test_require_shop_param_raises_400(self):
        with pytest.raises(HTTPException) as exc:
            require_shop_param("not a shop")
        assert exc.value.status_code == 400


class TestOAuthHmac:
    def test_valid(self):
        query = sign_oauth_query({"shop": SHOP, "code": "abc", "state": "s1", "timestamp": "1700000000"})
        assert verify_oauth_hmac(query)

    def test_tampered(self):
        query = sign_oauth_query({"shop": SHOP, "code": "abc", "state": "s1"})
        query["code"] = "other"
        assert not verify_oauth_hmac(query)

    def test_missing(self):
        assert not verify_oauth_hmac({"shop": SHOP})

    def test_no_secret_configured(self, monkeypatch):
        monkeypatch.setattr(security.settings, "shopify_api_secret", "")
        query = sign_oauth_query({"shop": SHOP})
        assert not verify_oauth_hmac(query)


class TestWebhookHmac:
    def test_valid(self):
        body = b'{"id": 1}'
        assert verify_webhook_hmac(body, webhook_signature(body))

    def test_body_changed(self):
        assert not verify_webhook_hmac(b'{"id": 2}', webhook_signature(b'{"id": 1}'))

    def test_missing_header(self):
        assert not verify_webhook_hmac(b"{}", None)


class TestAppProxySignature:
    def test_valid(self):
        signed = sign_proxy_query({"shop": SHOP, "path_prefix": "/apps/free-delivery", "timestamp": "1"})
        query = {key: [value] for key, value in signed.items()}
        assert verify_app_proxy_signature(query)

    def test_multi_valued_parameter(self):
        signed = sign_proxy_query({"shop": SHOP, "ids": "1,2"})
        query = {"shop": [SHOP], "ids": ["1", "2"], "signature": [signed["signature"]]}
        assert verify_app_proxy_signature(query)

    def test_tampered(self):
        signed = sign_proxy_query({"shop": SHOP})
        query = {"shop": ["other.myshopify.com"], "signature": [signed["signature"]]}
        assert not verify_app_proxy_signature(query)


class TestSessionToken:
    def test_valid_token_resolves_shop(self):
        payload = verify_session_token(session_token())
        assert payload["shop"] == SHOP

    def test_wrong_audience(self):
        with pytest.raises(HTTPException) as exc:
            verify_session_token(session_token(aud="another-app"))
        assert exc.value.status_code == 401

    def test_expired(self):
        with pytest.raises(HTTPException) as exc:
            verify_session_token(session_token(exp=1))
        assert exc.value.status_code == 401

    def test_bad_dest(self):
        with pytest.raises(HTTPException) as exc:
            verify_session_token(session_token(dest="https://evil.com"))
        assert exc.value.status_code == 401

    def test_garbage(self):
        with pytest.raises(HTTPException):
            verify_session_token("not-a-jwt")
