from typing import Optional

LINK_COLUMNS = "id,user_id,member_id,relation,safety_status,safety_check_started_at,safety_check_expires_at,created_at"
WINDOW_COLUMNS = "safety_status,safety_check_started_at,safety_check_expires_at"


class FamilyRepository:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    # family_members

    def get_link(self, user_id: str, member_id: str, columns: str = "id,relation") -> Optional[dict]:
        res = self.supabase.table("family_members").select(columns).eq("user_id", user_id).eq("member_id", member_id).limit(1).execute()
        return res.data[0] if res and res.data else None

    def list_links(self, user_id: str) -> list[dict]:
        res = self.supabase.table("family_members").select(LINK_COLUMNS).eq("user_id", user_id).execute()
        return res.data or []

    def insert_link(self, user_id: str, member_id: str, relation: Optional[str]) -> Optional[dict]:
        res = self.supabase.table("family_members").insert({
            "user_id": user_id,
            "member_id": member_id,
            "relation": relation,
        }).execute()
        return res.data[0] if res and res.data else None

    def delete_link(self, user_id: str, member_id: str):
        self.supabase.table("family_members").delete().eq("user_id", user_id).eq("member_id", member_id).execute()

    def update_link(self, link_id, payload: dict):
        self.supabase.table("family_members").update(payload).eq("id", link_id).execute()

    def set_status_if_window_open(self, user_id: str, member_id: str, status: str, now_iso: str) -> list[dict]:
        res = (
            self.supabase.table("family_members")
            .update({"safety_status": status})
            .eq("user_id", user_id)
            .eq("member_id", member_id)
            .gt("safety_check_expires_at", now_iso)
            .execute()
        )
        return res.data or []

    def clear_expired_windows(self, now_iso: str) -> list[dict]:
        res = (
            self.supabase.table("family_members")
            .update({
                "safety_status": None,
                "safety_check_started_at": None,
                "safety_check_expires_at": None,
            })
            .lt("safety_check_expires_at", now_iso)
            .execute()
        )
        return res.data or []

    # family_requests

    def get_request(self, request_id) -> Optional[dict]:
        res = self.supabase.table("family_requests").select("*").eq("id", request_id).limit(1).execute()
        return res.data[0] if res and res.data else None

    def has_pending_request(self, from_user_id: str, to_user_id: str) -> bool:
        res = (
            self.supabase.table("family_requests")
            .select("id")
            .eq("from_user_id", from_user_id)
            .eq("to_user_id", to_user_id)
            .eq("status", "pending")
            .limit(1)
            .execute()
        )
        return bool(res and res.data)

    def insert_request(self, from_user_id: str, to_user_id: str, relation: str) -> Optional[dict]:
        res = self.supabase.table("family_requests").insert({
            "from_user_id": from_user_id,
            "to_user_id": to_user_id,
            "relation": relation,
            "status": "pending",
        }).execute()
        return res.data[0] if res and res.data else None

    def pending_requests(self, column: str, user_id: str) -> list[dict]:
        res = (
            self.supabase.table("family_requests")
            .select("*")
            .eq(column, user_id)
            .eq("status", "pending")
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []

    def mark_request(self, request_id, status: str):
        self.supabase.table("family_requests").update({"status": status}).eq("id", request_id).execute()

    def delete_request(self, request_id):
        self.supabase.table("family_requests").delete().eq("id", request_id).execute()
