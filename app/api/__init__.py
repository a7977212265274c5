from fastapi import APIRouter

from .routes import (
    app_proxy,
    auth,
    health,
    script,
    settings,
    subscription,
    webhooks,
)

api_router = APIRouter()

# Health check
api_router.include_router(health.router, tags=["health"])

# Shopify OAuth install flow
api_router.include_router(auth.router, tags=["auth"])

# Embedded admin API (session token auth)
api_router.include_router(settings.router, prefix="/api", tags=["settings"])
api_router.include_router(subscription.router, prefix="/api/subscription", tags=["subscription"])

# Storefront endpoints (no auth required)
api_router.include_router(script.router, tags=["script"])
api_router.include_router(app_proxy.router, prefix="/free-delivery", tags=["app-proxy"])

# Shopify webhooks (HMAC verified)
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
