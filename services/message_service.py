from typing import Optional

from utils.error_handling import ApiError
from utils.logger import get_logger


class MessageService:
    def __init__(self, message_repo):
        self.repo = message_repo
        self.logger = get_logger()

    def send(self, sender_id: str, receiver_id: str, content: str) -> dict:
        if not sender_id or not receiver_id or not (content or '').strip():
            raise ApiError('senderId, receiverId and content are required', 400)
        message = self.repo.insert(sender_id, receiver_id, content)
        if not message:
            raise ApiError('Failed to send message', 500)
        return message

    def conversation(self, user_id: str, other_id: str) -> list[dict]:
        """Both directions of a conversation, oldest first."""
        messages = self.repo.between(user_id, other_id) + self.repo.between(other_id, user_id)
        return sorted(messages, key=lambda m: m.get('created_at') or '')

    def unread_count(self, user_id: str) -> int:
        return self.repo.unread_count(user_id)

    def mark_read(self, user_id: str, other_id: Optional[str] = None):
        self.repo.mark_read(user_id, other_id)
