from datetime import datetime, timedelta, timezone

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from utils.logger import get_logger, log_exception

USGS_QUERY_URL = "https://earthquake.usgs.gov/fdsnws/event/1/query"
USGS_SEEN_KEY = "usgs:seen"
EARTHQUAKE_EVENT = "earthquake"


class MemorySeenSet:
    """Seen ids for a single long-running process."""

    def __init__(self):
        self._ids = set()

    def add(self, event_id: str) -> bool:
        if event_id in self._ids:
            return False
        self._ids.add(event_id)
        return True

    def __contains__(self, event_id):
        return event_id in self._ids


class RedisSeenSet:
    """Seen ids shared by every worker through one Redis set."""

    def __init__(self, redis_client, key: str = USGS_SEEN_KEY, ttl_seconds=None):
        self.redis = redis_client
        self.key = key
        self.ttl_seconds = ttl_seconds

    def add(self, event_id: str) -> bool:
        # SADD answers 1 only for the first writer
        added = bool(self.redis.sadd(self.key, event_id))
        if added and self.ttl_seconds:
            # ids older than the lookback window never come back from USGS
            self.redis.expire(self.key, int(self.ttl_seconds))
        return added

    def __contains__(self, event_id):
        return bool(self.redis.sismember(self.key, event_id))


def get_http_session() -> requests.Session:
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=frozenset(["GET"])
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.headers.update({
        "User-Agent": "LinYone/1.0 (+usgs poll)",
        "Accept": "application/json"
    })
    return session


def earthquake_payload(feature: dict) -> dict:
    props = feature.get('properties') or {}
    return {
        'id': feature.get('id'),
        'magnitude': props.get('mag'),
        'title': props.get('title'),
        'place': props.get('place'),
        'time': props.get('time'),
        'url': props.get('url'),
        'coordinates': (feature.get('geometry') or {}).get('coordinates') or [],
    }


class EarthquakeFeed:
    def __init__(self, realtime, seen, bounds: dict, lookback_days: int = 7, session=None):
        self.realtime = realtime
        self.seen = seen
        self.bounds = bounds
        self.lookback_days = lookback_days
        self.session = session or get_http_session()
        self.logger = get_logger()

    def query_params(self, now=None) -> dict:
        now = now or datetime.now(timezone.utc)
        params = {
            'format': 'geojson',
            'orderby': 'time',
            'limit': '200',
            'starttime': (now - timedelta(days=self.lookback_days)).isoformat(),
            'endtime': now.isoformat(),
        }
        params.update({key: str(value) for key, value in self.bounds.items()})
        return params

    def fetch_features(self) -> list[dict]:
        try:
            response = self.session.get(USGS_QUERY_URL, params=self.query_params(), timeout=(3, 15))
        except requests.RequestException as err:
            log_exception(err, context="USGS fetch")
            return []
        if not response.ok:
            self.logger.warning(f"USGS fetch failed: {response.status_code}")
            return []
        try:
            features = response.json().get('features')
        except ValueError as err:
            log_exception(err, context="USGS json decode")
            return []
        return features if isinstance(features, list) else []

    def poll_once(self) -> list[dict]:
        """Publish every feature not published before, oldest first."""
        features = sorted(self.fetch_features(), key=lambda f: (f.get('properties') or {}).get('time') or 0)
        published = []
        for feature in features:
            event_id = feature.get('id')
            if not event_id or not self.seen.add(event_id):
                continue
            payload = earthquake_payload(feature)
            try:
                self.realtime.publish(EARTHQUAKE_EVENT, payload)
            except Exception as err:
                log_exception(err, context=f"publish earthquake [{event_id}]")
                continue
            self.logger.info(f"published {event_id} {payload['title']}")
            published.append(payload)
        return published
