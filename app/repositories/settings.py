"""
Repository for per-shop bar settings (one JSONB document per shop).
"""

from datetime import datetime, timezone

from database.connection import get_db, with_retry


class SettingsRepository:

    @staticmethod
    @with_retry()
    def get(shop_domain: str) -> dict | None:
        """Get the raw settings document of a shop."""
        db = get_db()
        result = (
            db.table("shop_settings")
            .select("settings")
            .eq("shop_domain", shop_domain)
            .limit(1)
            .execute()
        )
        return result.data[0]["settings"] if result and result.data else None

    @staticmethod
    @with_retry()
    def upsert(shop_domain: str, settings: dict) -> dict | None:
        """Insert or replace a shop's settings. Last write wins."""
        db = get_db()
        # shop_settings references shops; make sure the parent row exists
        db.table("shops").upsert(
            {"shop_domain": shop_domain},
            on_conflict="shop_domain",
            ignore_duplicates=True,
        ).execute()
        result = db.table("shop_settings").upsert({
            "shop_domain": shop_domain,
            "settings": settings,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }, on_conflict="shop_domain").execute()
        return result.data[0]["settings"] if result and result.data else None

    @staticmethod
    @with_retry()
    def delete(shop_domain: str) -> bool:
        db = get_db()
        result = db.table("shop_settings").delete().eq("shop_domain", shop_domain).execute()
        return bool(result and result.data)
