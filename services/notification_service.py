import json
from typing import Optional

from utils.logger import get_logger


class NotificationService:
    def __init__(self, notification_repo):
        self.repo = notification_repo
        self.logger = get_logger()

    def create_notification(self, user_id: str, type_: str, title: Optional[str] = None,
                            body: Optional[str] = None, payload: Optional[dict] = None) -> Optional[dict]:
        return self.repo.create({
            "user_id": user_id,
            "type": type_,
            "title": title,
            "body": body,
            "payload": payload,
        })

    def list_for_user(self, user_id: str) -> list[dict]:
        return self.repo.list_for_user(user_id)

    def mark_read(self, notification_id):
        self.repo.mark_read(notification_id)

    def mark_all_read(self, user_id: str):
        self.repo.mark_all_read(user_id)

    def delete(self, notification_id):
        self.repo.delete(notification_id)

    def delete_all(self, user_id: str):
        self.repo.delete_for_user(user_id)

    @staticmethod
    def _payload_request_id(payload):
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                return None
        if isinstance(payload, dict):
            return payload.get("request_id")
        return None

    def delete_by_request_id(self, user_id: str, request_id) -> dict:
        """Remove a user's family_request notifications that point at request_id."""
        candidates = self.repo.list_by_type(user_id, "family_request")
        ids = [n["id"] for n in candidates if str(self._payload_request_id(n.get("payload"))) == str(request_id)]
        if not ids:
            return {"deleted": 0, "notificationIds": []}
        self.repo.delete_many(ids)
        self.logger.info(f"Deleted {len(ids)} notification(s) for request {request_id}")
        return {"deleted": len(ids), "notificationIds": ids}
