"""
Token Blacklist Management
==========================

Redis-backed token blacklist for fast JWT revocation checks.
The database table (TokenBlacklist) is the durable copy and is consulted
whenever Redis is not configured or cannot answer.
"""

import logging
from datetime import datetime
from typing import Optional

from redis import Redis

from .config import get_settings

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "token:blacklist:"

_redis_client: Optional[Redis] = None


def get_redis_client() -> Optional[Redis]:
    """Get Redis client (singleton). None when REDIS_URL is not configured."""
    global _redis_client

    redis_url = get_settings().redis_url
    if not redis_url:
        return None

    if _redis_client is None:
        try:
            client = Redis.from_url(redis_url, decode_responses=True)
            client.ping()
            _redis_client = client
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Using database fallback.")
            return None

    return _redis_client


def add_to_blacklist(jti: str, expires_at: datetime, token_type: str = "access") -> bool:
    """
    Add a token JTI to the Redis blacklist.

    Args:
        jti: JWT ID (unique identifier)
        expires_at: When the token would naturally expire
        token_type: "access" or "refresh"

    Returns:
        True if added to Redis, False if only the database copy will exist
    """
    redis = get_redis_client()

    if redis:
        try:
            ttl_seconds = max(int((expires_at - datetime.utcnow()).total_seconds()), 60)
            redis.setex(f"{BLACKLIST_PREFIX}{jti}", ttl_seconds, token_type)
            return True
        except Exception as e:
            logger.warning(f"Redis blacklist add failed: {e}")

    return False


def is_blacklisted(jti: str) -> Optional[bool]:
    """
    Check if a token JTI is blacklisted in Redis.

    Returns:
        True if blacklisted, None if the caller must check the database
    """
    redis = get_redis_client()

    if redis:
        try:
            if redis.exists(f"{BLACKLIST_PREFIX}{jti}"):
                return True
        except Exception as e:
            logger.warning(f"Redis blacklist check failed: {e}")

    return None


def remove_expired_blacklist_entries(db_session) -> int:
    """
    Clean up expired blacklist entries from database.

    Returns:
        Number of entries removed
    """
    from .db.models import TokenBlacklist

    count = db_session.query(TokenBlacklist).filter(
        TokenBlacklist.expires_at < datetime.utcnow()
    ).delete()
    db_session.commit()

    if count:
        logger.info(f"Removed {count} expired blacklist entries")
    return count
