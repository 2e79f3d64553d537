from typing import Optional

PIN_IMAGES_BUCKET = "pin-images"
AGGREGATION_ITEM_COLUMNS = "id,pin_id,item_id,remaining_qty,requested_qty,items(id,name,unit)"


class PinRepository:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    # pins

    def insert_pin(self, payload: dict) -> Optional[dict]:
        res = self.supabase.table("pins").insert(payload).execute()
        return res.data[0] if res and res.data else None

    def list_pins(self) -> list[dict]:
        res = self.supabase.table("pins").select("*").order("created_at", desc=True).execute()
        return res.data or []

    def confirmed_pins(self, columns: str = "*") -> list[dict]:
        res = self.supabase.table("pins").select(columns).eq("status", "confirmed").order("created_at", desc=True).execute()
        return res.data or []

    def update_pin(self, pin_id, payload: dict):
        self.supabase.table("pins").update(payload).eq("id", pin_id).execute()

    def delete_pin(self, pin_id):
        self.supabase.table("pins").delete().eq("id", pin_id).execute()

    # pin_items

    def pin_items(self, pin_ids: Optional[list] = None, columns: str = "*, items(*)") -> list[dict]:
        query = self.supabase.table("pin_items").select(columns)
        if pin_ids is not None:
            query = query.in_("pin_id", pin_ids)
        res = query.execute()
        return res.data or []

    def items_for_pin(self, pin_id, columns: str = "id,remaining_qty") -> list[dict]:
        res = self.supabase.table("pin_items").select(columns).eq("pin_id", pin_id).execute()
        return res.data or []

    def get_pin_item(self, pin_item_id) -> Optional[dict]:
        res = self.supabase.table("pin_items").select("requested_qty,remaining_qty").eq("id", pin_item_id).limit(1).execute()
        return res.data[0] if res and res.data else None

    def insert_pin_items(self, rows: list[dict]):
        return self.supabase.table("pin_items").insert(rows).execute()

    def set_remaining(self, pin_item_id, remaining_qty: int):
        self.supabase.table("pin_items").update({"remaining_qty": remaining_qty}).eq("id", pin_item_id).execute()

    def delete_items_for_pin(self, pin_id):
        self.supabase.table("pin_items").delete().eq("pin_id", pin_id).execute()

    # catalog and membership

    def list_items(self) -> list[dict]:
        res = self.supabase.table("items").select("*").order("name").execute()
        return res.data or []

    def active_org_member(self, user_id: str) -> Optional[dict]:
        res = self.supabase.table("org-member").select("id").eq("user_id", user_id).eq("status", "active").limit(1).execute()
        return res.data[0] if res and res.data else None

    # storage

    def upload_image(self, path: str, data: bytes, mime: str) -> str:
        bucket = self.supabase.storage.from_(PIN_IMAGES_BUCKET)
        bucket.upload(path, data, {"content-type": mime})
        return bucket.get_public_url(path)

    def counts(self) -> dict:
        pins = self.supabase.table("pins").select("*").eq("status", "confirmed").execute().data or []
        pin_items = self.supabase.table("pin_items").select("*").execute().data or []
        items = self.supabase.table("items").select("*").execute().data or []
        return {
            "confirmedPins": len(pins),
            "pinItems": len(pin_items),
            "items": len(items),
            "sample": {"pins": pins[:2], "pinItems": pin_items[:2], "items": items[:3]},
        }
