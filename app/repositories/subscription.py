from datetime import datetime, timezone

from database.connection import get_db, with_retry


class SubscriptionRepository:

    @staticmethod
    @with_retry()
    def create(shop_domain: str, plan_name: str, charge_id: str, status: str = "pending") -> dict | None:
        db = get_db()
        result = db.table("subscriptions").insert({
            "shop_domain": shop_domain,
            "plan_name": plan_name,
            "charge_id": charge_id,
            "status": status,
        }).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_latest(shop_domain: str) -> dict | None:
        """Get the most recently created subscription of a shop."""
        db = get_db()
        result = (
            db.table("subscriptions")
            .select("*")
            .eq("shop_domain", shop_domain)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def update_status(
        charge_id: str,
        status: str,
        trial_ends_at: str | None = None,
        billing_on: str | None = None,
    ) -> dict | None:
        db = get_db()
        result = db.table("subscriptions").update({
            "status": status,
            "trial_ends_at": trial_ends_at,
            "billing_on": billing_on,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).eq("charge_id", charge_id).execute()
        return result.data[0] if result and result.data else None
