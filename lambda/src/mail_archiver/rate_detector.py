"""Sliding-window detection of inbound email bursts."""

import logging
import math

from botocore.exceptions import BotoCoreError, ClientError

from mail_archiver.archive_index import now_ms
from mail_archiver.config import ArchiverConfig
from mail_archiver.s3_manager import RATE_KEY, get_json, put_json

logger = logging.getLogger(__name__)

MIN_RATE_TTL_SECONDS = 60


def rate_ttl_seconds(window_ms: int) -> int:
    """Keep the counter for twice the window, never less than a minute."""
    return max(math.ceil(window_ms / 500), MIN_RATE_TTL_SECONDS)


def check_rate(bucket: str, config: ArchiverConfig, now: int | None = None) -> bool:
    """Record this email and report whether the window now holds more than the threshold.

    An unreadable counter counts as empty so a storage hiccup never marks
    traffic as high frequency.
    """
    now = now_ms() if now is None else now
    window = config.rate_window_ms

    try:
        stored = get_json(bucket, RATE_KEY)
    except (ClientError, BotoCoreError, ValueError):
        logger.warning("Could not read rate counter, treating as empty", exc_info=True)
        stored = None

    timestamps = [ts for ts in stored if isinstance(ts, int) and now - ts < window] if isinstance(stored, list) else []
    timestamps.append(now)

    try:
        put_json(bucket, RATE_KEY, timestamps, ttl_seconds=rate_ttl_seconds(window))
    except (ClientError, BotoCoreError):
        logger.warning("Could not persist rate counter", exc_info=True)

    return len(timestamps) > config.rate_threshold
