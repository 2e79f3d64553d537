from typing import Optional


class MessageRepository:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def insert(self, sender_id: str, receiver_id: str, content: str) -> Optional[dict]:
        res = self.supabase.table("messages").insert({
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "status": "sent",
        }).execute()
        return res.data[0] if res and res.data else None

    def between(self, sender_id: str, receiver_id: str) -> list[dict]:
        res = self.supabase.table("messages").select("*").eq("sender_id", sender_id).eq("receiver_id", receiver_id).execute()
        return res.data or []

    def unread_count(self, user_id: str) -> int:
        res = self.supabase.table("messages").select("id", count="exact").eq("receiver_id", user_id).neq("status", "read").execute()
        return getattr(res, "count", None) or 0

    def mark_read(self, user_id: str, sender_id: Optional[str] = None):
        query = self.supabase.table("messages").update({"status": "read"}).eq("receiver_id", user_id)
        if sender_id:
            query = query.eq("sender_id", sender_id)
        query.neq("status", "read").execute()
