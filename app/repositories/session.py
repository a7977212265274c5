"""
Repository for Shopify OAuth sessions (access tokens).
"""

from database.connection import get_db, with_retry


class SessionRepository:

    @staticmethod
    @with_retry()
    def store(session: dict) -> dict | None:
        """Insert or overwrite a session by id."""
        db = get_db()
        result = db.table("shopify_sessions").upsert(session, on_conflict="id").execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def load(session_id: str) -> dict | None:
        db = get_db()
        result = db.table("shopify_sessions").select("*").eq("id", session_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def find_by_shop(shop: str) -> list[dict]:
        db = get_db()
        result = db.table("shopify_sessions").select("*").eq("shop", shop).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def delete(session_id: str) -> bool:
        db = get_db()
        result = db.table("shopify_sessions").delete().eq("id", session_id).execute()
        return bool(result and result.data)

    @staticmethod
    @with_retry()
    def delete_by_shop(shop: str) -> int:
        """Delete every session of a shop. Returns number of deleted records."""
        db = get_db()
        result = db.table("shopify_sessions").delete().eq("shop", shop).execute()
        return len(result.data) if result and result.data else 0
