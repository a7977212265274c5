"""
Subscription checks for the admin API.

When billing is required, admin routes depend on require_active_subscription
(app/api/deps.py) and answer 403 with a machine-readable body until the shop
has an active recurring charge:

    @router.get("")
    def read_settings(shop: str = Depends(require_active_subscription)):
        ...
"""
from datetime import datetime, timezone

from fastapi import HTTPException, status

from app.core.config import settings
from app.services.stores import SubscriptionStore

ACTIVE_STATUS = "active"


class SubscriptionRequiredError(HTTPException):
    """Raised when an admin action needs an active subscription."""

    def __init__(self, shop: str):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "SUBSCRIPTION_REQUIRED",
                "shop": shop,
                "message": "An active subscription is required to use this feature.",
                "subscription_required": True,
            },
        )


def _parse_datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_subscription_active(record: dict | None, now: datetime | None = None) -> bool:
    """Active means status ``active`` and a billing or trial date still ahead.

    A freshly activated charge may not carry either date yet; it counts as active.
    """
    if not record or record.get("status") != ACTIVE_STATUS:
        return False
    now = now or datetime.now(timezone.utc)
    dates = [_parse_datetime(record.get("billing_on")), _parse_datetime(record.get("trial_ends_at"))]
    dates = [d for d in dates if d is not None]
    if not dates:
        return True
    return any(d > now for d in dates)


def has_active_subscription(shop: str, subscriptions: SubscriptionStore) -> bool:
    if not settings.billing_required:
        return True
    return is_subscription_active(subscriptions.latest(shop))
