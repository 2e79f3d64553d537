from typing import Optional


class NotificationRepository:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def create(self, payload: dict) -> Optional[dict]:
        res = self.supabase.table("notifications").insert(payload).execute()
        return res.data[0] if res and res.data else None

    def list_for_user(self, user_id: str) -> list[dict]:
        res = self.supabase.table("notifications").select("*").eq("user_id", user_id).order("created_at", desc=True).execute()
        return res.data or []

    def list_by_type(self, user_id: str, type_: str) -> list[dict]:
        res = self.supabase.table("notifications").select("id,payload").eq("user_id", user_id).eq("type", type_).execute()
        return res.data or []

    def mark_read(self, notification_id):
        self.supabase.table("notifications").update({"read": True}).eq("id", notification_id).execute()

    def mark_all_read(self, user_id: str):
        self.supabase.table("notifications").update({"read": True}).eq("user_id", user_id).eq("read", False).execute()

    def delete(self, notification_id):
        self.supabase.table("notifications").delete().eq("id", notification_id).execute()

    def delete_for_user(self, user_id: str):
        self.supabase.table("notifications").delete().eq("user_id", user_id).execute()

    def delete_many(self, notification_ids: list) -> list[dict]:
        res = self.supabase.table("notifications").delete().in_("id", notification_ids).execute()
        return res.data or []
