"""
Ably publishing and token issuance.

The Ably REST client is async, so each call opens a short-lived client inside
its own event loop. Flask views and Celery tasks stay synchronous.
"""
import asyncio

from ably import AblyRest

from utils.logger import get_logger

ALERT_FIELDS = ('id', 'type', 'title', 'description', 'magnitude', 'place', 'time',
                'url', 'coordinates', 'severity', 'location', 'source')


class RealtimeNotConfigured(Exception):
    pass


def alert_payload(body: dict) -> dict:
    payload = {field: body.get(field) for field in ALERT_FIELDS}
    payload['source'] = body.get('source') or body.get('type')
    return payload


class RealtimeService:
    def __init__(self, api_key: str, channel_name: str):
        self.api_key = api_key
        self.channel_name = channel_name
        self.logger = get_logger()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self):
        if not self.api_key:
            raise RealtimeNotConfigured('ABLY_API_KEY not configured')

    async def _publish(self, event: str, payload: dict):
        async with AblyRest(self.api_key) as client:
            channel = client.channels.get(self.channel_name)
            await channel.publish(event, payload)

    async def _token_request(self, ttl_ms: int) -> dict:
        async with AblyRest(self.api_key) as client:
            token_request = await client.auth.create_token_request({'ttl': ttl_ms})
            return token_request.to_dict()

    def publish(self, event: str, payload: dict):
        self._require_key()
        asyncio.run(self._publish(event, payload))
        self.logger.info(f"Published '{event}' to {self.channel_name}")

    def create_token_request(self, ttl_ms: int) -> dict:
        self._require_key()
        return asyncio.run(self._token_request(ttl_ms))

    def broadcast_alert(self, body: dict) -> dict:
        """Publish an alert under its own type as the event name."""
        payload = alert_payload(body)
        self.publish(body['type'], payload)
        return payload
