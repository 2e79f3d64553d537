"""
Celery tasks: USGS polling, alert broadcast and safety-window cleanup
"""
from celery_config import celery
from config import Config
from supabase import create_client, Client
from repositories.family_repo import FamilyRepository
from repositories.notification_repo import NotificationRepository
from repositories.user_repo import UserRepository
from services.earthquake_service import EarthquakeFeed, RedisSeenSet
from services.family_service import FamilyService
from services.notification_service import NotificationService
from services.realtime_service import RealtimeService
import logging
import redis

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Supabase client
supabase: Client = create_client(Config.SUPABASE_URL, Config.SUPABASE_KEY) if Config.is_supabase_configured() else None

realtime = RealtimeService(Config.ABLY_API_KEY, Config.ABLY_CHANNEL)

_feed = None


def get_feed() -> EarthquakeFeed:
    """One feed per worker process; the seen set itself lives in Redis."""
    global _feed
    if _feed is None:
        seen = RedisSeenSet(
            redis.Redis.from_url(Config.REDIS_URL),
            ttl_seconds=Config.LOOKBACK_DAYS * 24 * 60 * 60,
        )
        _feed = EarthquakeFeed(realtime, seen, Config.USGS_BOUNDS, lookback_days=Config.LOOKBACK_DAYS)
    return _feed


@celery.task
def poll_earthquakes():
    """
    Periodic task: publish earthquakes not seen before
    """
    if not realtime.configured:
        logger.error("Ably not configured, skipping USGS poll")
        return 0
    published = get_feed().poll_once()
    if published:
        logger.info(f"Published {len(published)} new earthquake(s)")
    return len(published)


@celery.task(bind=True, max_retries=3)
def broadcast_alert(self, alert):
    """
    Publish a single alert on the alert channel
    """
    try:
        realtime.broadcast_alert(alert)
        logger.info(f"Broadcast alert {alert.get('type')}: {alert.get('title')}")
        return True
    except Exception as exc:
        logger.error(f"Alert broadcast failed: {str(exc)}")
        # Retry with exponential backoff
        raise self.retry(exc=exc, countdown=10 * (2 ** self.request.retries))


@celery.task
def cleanup_safety_windows():
    """
    Periodic task: clear safety windows whose expiry has passed
    """
    if not supabase:
        logger.error("Supabase not configured")
        return 0
    service = FamilyService(
        FamilyRepository(supabase),
        UserRepository(supabase),
        NotificationService(NotificationRepository(supabase)),
    )
    return service.cleanup_expired_windows()
