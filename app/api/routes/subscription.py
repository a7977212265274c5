"""Recurring application charge (billing) for the app's subscription plan."""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from app.api.deps import (
    ShopifyClientFactory,
    get_session_store,
    get_shopify_client_factory,
    get_subscription_store,
)
from app.core.config import get_public_base_url, settings
from app.core.entitlements import has_active_subscription
from app.core.security import get_current_shop, require_shop_param
from app.domain.schemas import SubscriptionCreateResponse, SubscriptionStatusResponse
from app.services.shopify import ShopifyAPIError
from app.services.stores import SessionStore, SubscriptionStore, get_shop_session

logger = logging.getLogger(__name__)

router = APIRouter()


def billing_return_url(shop: str) -> str:
    return f"{get_public_base_url()}/api/subscription/callback?{urlencode({'shop': shop})}"


@router.get("/check", response_model=SubscriptionStatusResponse)
def check_subscription(
    shop: str = Depends(get_current_shop),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
):
    """Whether the shop may use the admin features."""
    latest = subscriptions.latest(shop)
    return SubscriptionStatusResponse(
        active=has_active_subscription(shop, subscriptions),
        status=latest.get("status") if latest else None,
        plan_name=latest.get("plan_name") if latest else None,
    )


@router.post("/create", response_model=SubscriptionCreateResponse)
def create_subscription(
    shop: str = Depends(get_current_shop),
    sessions: SessionStore = Depends(get_session_store),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
):
    """
    Create a recurring charge for the plan.

    Returns the confirmation URL the merchant must visit to accept it;
    Shopify then redirects to the billing callback.
    """
    session = get_shop_session(sessions, shop)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Shop {shop} is not installed")

    try:
        with client_factory(shop, session.access_token) as client:
            charge = client.create_recurring_charge(
                name=settings.billing_plan_name,
                price=settings.billing_price,
                return_url=billing_return_url(shop),
                trial_days=settings.billing_trial_days,
                test=settings.billing_test,
            )
    except ShopifyAPIError as e:
        logger.error(f"Failed to create recurring charge for {shop}: {e}")
        raise HTTPException(status_code=502, detail="Could not create the subscription")

    if not charge.get("id") or not charge.get("confirmation_url"):
        raise HTTPException(status_code=502, detail="Shopify returned an incomplete charge")

    subscriptions.create(shop, settings.billing_plan_name, str(charge["id"]), charge.get("status", "pending"))
    logger.info(f"Recurring charge {charge['id']} created for {shop}")
    return SubscriptionCreateResponse(confirmation_url=charge["confirmation_url"])


@router.get("/callback")
def subscription_callback(
    shop: str | None = Query(None),
    charge_id: str | None = Query(None),
    sessions: SessionStore = Depends(get_session_store),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
):
    """
    Return URL of the charge confirmation page.

    The charge status is read back from Shopify rather than trusted from the
    query string, then recorded and the merchant sent back to the app.
    """
    shop = require_shop_param(shop)
    if not charge_id:
        raise HTTPException(status_code=400, detail="Missing charge_id")

    session = get_shop_session(sessions, shop)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Shop {shop} is not installed")

    try:
        with client_factory(shop, session.access_token) as client:
            charge = client.get_recurring_charge(charge_id)
    except ShopifyAPIError as e:
        logger.error(f"Failed to read recurring charge {charge_id} for {shop}: {e}")
        raise HTTPException(status_code=502, detail="Could not verify the subscription")

    status = charge.get("status", "pending")
    record = subscriptions.update_status(
        charge_id,
        status,
        trial_ends_at=charge.get("trial_ends_on"),
        billing_on=charge.get("billing_on"),
    )
    if record is None:
        subscriptions.create(shop, charge.get("name") or settings.billing_plan_name, charge_id, status)
        subscriptions.update_status(
            charge_id,
            status,
            trial_ends_at=charge.get("trial_ends_on"),
            billing_on=charge.get("billing_on"),
        )
    logger.info(f"Charge {charge_id} for {shop} is {status}")

    return RedirectResponse(f"https://{shop}/admin/apps/{settings.shopify_api_key}", status_code=302)
