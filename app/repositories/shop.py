from datetime import datetime, timezone

from database.connection import get_db, with_retry


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ShopRepository:

    @staticmethod
    @with_retry()
    def upsert_installed(shop_domain: str, scope: str = "") -> dict | None:
        """Record an install or reinstall, clearing any uninstall mark."""
        db = get_db()
        result = db.table("shops").upsert({
            "shop_domain": shop_domain,
            "scope": scope,
            "uninstalled_at": None,
            "updated_at": _now(),
        }, on_conflict="shop_domain").execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_active(shop_domain: str) -> dict | None:
        """Get an installed shop (uninstalled shops are ignored)."""
        db = get_db()
        result = (
            db.table("shops")
            .select("*")
            .eq("shop_domain", shop_domain)
            .is_("uninstalled_at", "null")
            .limit(1)
            .execute()
        )
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def mark_uninstalled(shop_domain: str) -> bool:
        db = get_db()
        result = db.table("shops").update({
            "uninstalled_at": _now(),
            "updated_at": _now(),
        }).eq("shop_domain", shop_domain).execute()
        return bool(result and result.data)

    @staticmethod
    @with_retry()
    def delete(shop_domain: str) -> bool:
        """Delete a shop and, through cascades, its settings and subscriptions."""
        db = get_db()
        result = db.table("shops").delete().eq("shop_domain", shop_domain).execute()
        return bool(result and result.data)
