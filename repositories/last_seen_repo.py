from datetime import datetime, timezone
from typing import Optional


class LastSeenRepository:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def upsert(self, user_id: str, lat: float, lng: float, address: Optional[str]):
        return self.supabase.table("user_last_seen").upsert({
            "user_id": user_id,
            "lat": lat,
            "lng": lng,
            "address": address,
            "last_seen_at": datetime.now(timezone.utc).isoformat(),
        }, on_conflict="user_id").execute()

    def for_users(self, user_ids: list[str]) -> dict[str, dict]:
        if not user_ids:
            return {}
        res = self.supabase.table("user_last_seen").select("user_id,lat,lng,address,last_seen_at").in_("user_id", user_ids).execute()
        return {row["user_id"]: row for row in (res.data or [])}
