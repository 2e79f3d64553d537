#!/usr/bin/env python3
"""
Standalone USGS poller: publishes new earthquakes to Ably without Celery.

Usage: ABLY_API_KEY=<key> python earthquake_publisher.py
"""
import sys
import time
from config import Config
from services.earthquake_service import EarthquakeFeed, MemorySeenSet
from services.realtime_service import RealtimeService
from utils.logger import get_logger


def main():
    logger = get_logger()
    if not Config.is_ably_configured():
        logger.error("ABLY_API_KEY environment variable is required")
        sys.exit(1)

    realtime = RealtimeService(Config.ABLY_API_KEY, Config.ABLY_CHANNEL)
    feed = EarthquakeFeed(realtime, MemorySeenSet(), Config.USGS_BOUNDS, lookback_days=Config.LOOKBACK_DAYS)
    logger.info(f"Starting earthquake publisher on channel {Config.ABLY_CHANNEL}")
    try:
        while True:
            feed.poll_once()
            time.sleep(Config.POLL_INTERVAL_SECONDS)
    except KeyboardInterrupt:
        logger.info("Publisher stopped")


if __name__ == "__main__":
    main()
