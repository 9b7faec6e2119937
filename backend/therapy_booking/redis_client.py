# backend/therapy_booking/redis_client.py

from redis import Redis

from .config import settings

# from_url does not connect; the first command does
redis_client = Redis.from_url(
    settings.redis_url,
    socket_timeout=2.0,
    decode_responses=True,
)
