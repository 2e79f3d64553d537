#!/usr/bin/env python3
"""
Startup script for the Lin Yone relief backend: Redis check, Celery worker
and beat, then the Flask app in the foreground.
"""
import os
import sys
import subprocess
import time
import redis
from celery_config import ALERTS_QUEUE, MAINTENANCE_QUEUE
from config import Config

WORKER_QUEUES = ",".join(["celery", ALERTS_QUEUE, MAINTENANCE_QUEUE])


def redis_reachable():
    try:
        redis.Redis.from_url(Config.REDIS_URL).ping()
    except redis.RedisError as e:
        print(f"❌ Redis unreachable at {Config.REDIS_URL}: {e}")
        return False
    print("✅ Redis reachable")
    return True


def spawn_celery(component, *extra):
    """Launch `celery -A celery_config <component>` in the background."""
    cmd = [sys.executable, "-m", "celery", "-A", "celery_config", component, "--loglevel=info", *extra]
    try:
        process = subprocess.Popen(cmd)
    except OSError as e:
        print(f"❌ Could not start Celery {component}: {e}")
        return None
    print(f"✅ Celery {component} started (pid {process.pid})")
    return process


def print_config():
    print("\n📋 Configuration:")
    for key, value in Config.get_config_status().items():
        print(f"  {'✅' if value else '❌'} {key}: {value}")
    if not Config.is_ably_configured():
        print("  ⚠️  ABLY_API_KEY missing: earthquakes and alerts will not be published")


def main():
    print("🌏  Lin Yone Relief Backend")
    print("=" * 50)
    print_config()

    print("\n🚀 Background jobs...")
    if redis_reachable():
        spawn_celery("worker", "-Q", WORKER_QUEUES, "--concurrency=2")
        spawn_celery("beat")
        time.sleep(2)
    else:
        print("⚠️  Skipping Celery. Run earthquake_publisher.py to poll USGS without Redis.")

    print("\n🚀 Flask on http://127.0.0.1:5000 ...")
    try:
        subprocess.run([sys.executable, os.path.join(os.path.dirname(os.path.abspath(__file__)), "app.py")])
    except KeyboardInterrupt:
        print("\n👋 Shutting down...")


if __name__ == "__main__":
    main()
