from typing import Optional

USER_SEARCH_COLUMNS = "id,name,email,phone,image"


class UserRepository:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def get_profile(self, user_id: str) -> Optional[dict]:
        resp = self.supabase.table("users").select("*").eq("id", user_id).limit(1).execute()
        return resp.data[0] if resp and resp.data else None

    def insert_profile(self, profile: dict) -> Optional[dict]:
        resp = self.supabase.table("users").insert(profile).execute()
        return resp.data[0] if resp and resp.data else None

    def exists(self, user_id: str) -> bool:
        resp = self.supabase.table("users").select("id").eq("id", user_id).limit(1).execute()
        return bool(resp and resp.data)

    def get_names(self, user_ids: list[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        resp = self.supabase.table("users").select("id,name").in_("id", user_ids).execute()
        return {row["id"]: row.get("name") for row in (resp.data or [])}

    def get_many(self, user_ids: list[str], columns: str = "id,name,phone,image") -> list[dict]:
        if not user_ids:
            return []
        resp = self.supabase.table("users").select(columns).in_("id", user_ids).execute()
        return resp.data or []

    def find_by_phone(self, phone: str) -> list[dict]:
        resp = self.supabase.table("users").select(USER_SEARCH_COLUMNS).eq("phone", phone).limit(10).execute()
        return resp.data or []

    def find_by_email(self, email: str) -> list[dict]:
        resp = self.supabase.table("users").select(USER_SEARCH_COLUMNS).eq("email", email).limit(10).execute()
        return resp.data or []

    def search_by_name(self, fragment: str) -> list[dict]:
        resp = self.supabase.table("users").select(USER_SEARCH_COLUMNS).ilike("name", f"%{fragment}%").limit(10).execute()
        return resp.data or []
