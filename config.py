"""
Configuration management for the Lin Yone relief backend
"""
import os
import re
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
LEADING_INT_RE = re.compile(r'^\s*([+-]?\d+)')


def _leading_int(value):
    match = LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else None


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return float(default)


class Config:
    """Application configuration"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('FLASK_SECRET_KEY', 'linyone_is_the_key')

    # Supabase Configuration
    SUPABASE_URL = os.environ.get('SUPABASE_URL', '')
    SUPABASE_KEY = os.environ.get('SUPABASE_KEY', '')

    # Ably realtime
    ABLY_API_KEY = os.environ.get('ABLY_API_KEY', '')
    ABLY_CHANNEL = os.environ.get('ABLY_CHANNEL', 'earthquakes-myanmar')
    ABLY_TOKEN_TTL_MS = int(_env_float('ABLY_TOKEN_TTL_MS', 60 * 60 * 1000))

    # Gemini (the edge function used GCP_GEMINI_API_KEY)
    GEMINI_API_KEY = os.environ.get('GEMINI_API_KEY') or os.environ.get('GCP_GEMINI_API_KEY', '')
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'gemini-1.5-flash')
    GEMINI_CHAT_MODEL = os.environ.get('GEMINI_CHAT_MODEL', 'gemini-2.5-flash')

    # Family safety check window
    SAFETY_WINDOW_SECONDS = os.environ.get('SAFETY_WINDOW_SECONDS')
    SAFETY_WINDOW_MINUTES = os.environ.get('SAFETY_WINDOW_MINUTES')

    # USGS earthquake polling
    POLL_INTERVAL_SECONDS = _env_float('POLL_INTERVAL_SECONDS', 30)
    LOOKBACK_DAYS = _env_float('LOOKBACK_DAYS', 7)
    USGS_BOUNDS = {
        'minlatitude': _env_float('USGS_MIN_LATITUDE', 9.5),
        'maxlatitude': _env_float('USGS_MAX_LATITUDE', 28.6),
        'minlongitude': _env_float('USGS_MIN_LONGITUDE', 92.2),
        'maxlongitude': _env_float('USGS_MAX_LONGITUDE', 101.2),
    }

    # Nominatim asks for an identifying user agent
    NOMINATIM_USER_AGENT = os.environ.get(
        'NOMINATIM_USER_AGENT',
        'LinnYone-App (Disaster Response) - https://github.com/2-lazyyyy/linyone'
    )

    # Static datasets for the matchers
    CONTACTS_PATH = os.environ.get('CONTACTS_PATH', os.path.join(BASE_DIR, 'data', 'contacts.json'))
    THERAPY_DATA_PATH = os.environ.get('THERAPY_DATA_PATH', os.path.join(BASE_DIR, 'data', 'therapy_sessions.json'))

    # Redis Configuration for Celery
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')

    # Logging; an empty LOG_FILE keeps logs on stderr only
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE', 'linyone.log')

    @classmethod
    def is_supabase_configured(cls):
        """Check if Supabase is properly configured"""
        return bool(cls.SUPABASE_URL and cls.SUPABASE_KEY)

    @classmethod
    def is_ably_configured(cls):
        return bool(cls.ABLY_API_KEY)

    @classmethod
    def is_gemini_configured(cls):
        return bool(cls.GEMINI_API_KEY)

    @classmethod
    def safety_window_seconds(cls) -> int:
        """Duration of a safety check window. Seconds win over minutes; default is 5 minutes.

        Values are read by their leading integer, so "90s" is 90 and "1.5" is 1.
        """
        if cls.SAFETY_WINDOW_SECONDS:
            seconds = _leading_int(cls.SAFETY_WINDOW_SECONDS)
            return max(0, seconds) if seconds is not None else 0
        minutes = _leading_int(cls.SAFETY_WINDOW_MINUTES or '5')
        if minutes is None:
            minutes = 5
        return max(0, minutes * 60)

    @classmethod
    def get_config_status(cls):
        """Get configuration status for debugging"""
        return {
            'supabase_configured': cls.is_supabase_configured(),
            'ably_configured': cls.is_ably_configured(),
            'gemini_configured': cls.is_gemini_configured(),
            'supabase_url_set': bool(cls.SUPABASE_URL),
            'supabase_key_set': bool(cls.SUPABASE_KEY),
            'ably_channel': cls.ABLY_CHANNEL,
            'safety_window_seconds': cls.safety_window_seconds(),
            'poll_interval_seconds': cls.POLL_INTERVAL_SECONDS,
        }
