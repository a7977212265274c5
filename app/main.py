import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from database.connection import init_db
from app.api import api_router
from app.core.config import settings
from app.core.security import normalize_shop_domain

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if not settings.shopify_api_key or not settings.shopify_api_secret:
        logger.warning("SHOPIFY_API_KEY / SHOPIFY_API_SECRET not configured, OAuth and webhooks will fail")
    logger.info(
        f"Stores: settings={settings.settings_backend}, sessions={settings.session_backend}, "
        f"oauth_state={settings.oauth_state_backend}; billing_required={settings.billing_required}"
    )
    init_db()
    yield


class ShopifyEmbedMiddleware(BaseHTTPMiddleware):
    """CORS and framing headers for the embedded admin and storefront origins.

    Shopify loads embedded apps in an iframe on admin.shopify.com and checks
    that responses name the shop and the admin in ``frame-ancestors``.
    """

    SHOPIFY_ORIGIN_PATTERN = re.compile(r"^https://(admin\.shopify\.com|[a-z0-9][a-z0-9-]*\.myshopify\.com)$")
    ALLOW_METHODS = "GET, POST, PUT, OPTIONS"
    ALLOW_HEADERS = "Content-Type, Authorization, X-Requested-With"

    def origin_allowed(self, origin: str) -> bool:
        if not settings.is_production:
            return True
        return bool(self.SHOPIFY_ORIGIN_PATTERN.match(origin))

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")

        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        if origin:
            if self.origin_allowed(origin):
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Credentials"] = "true"
                response.headers["Access-Control-Allow-Methods"] = self.ALLOW_METHODS
                response.headers["Access-Control-Allow-Headers"] = self.ALLOW_HEADERS
            else:
                logger.warning(f"CORS rejected - Origin '{origin}' is not a Shopify origin")

        shop = normalize_shop_domain(request.query_params.get("shop"))
        ancestors = f"https://{shop} https://admin.shopify.com" if shop else "https://admin.shopify.com"
        response.headers["Content-Security-Policy"] = f"frame-ancestors {ancestors};"

        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="Free Delivery Bar",
        description="Shopify free shipping progress bar app",
        version=settings.version,
        lifespan=lifespan,
    )

    app.add_middleware(ShopifyEmbedMiddleware)
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
