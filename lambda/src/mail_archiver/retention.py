"""Expiry, quota eviction, entry-count cap and starring for archived emails."""

import logging
from typing import Literal

from mail_archiver.archive_index import ArchiveEntry, ArchiveIndex, now_ms
from mail_archiver.config import ArchiverConfig
from mail_archiver.s3_manager import delete_keys, fetch_index, image_key, store_index, text_key

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

# (max size in bytes, ttl in seconds); first band with size <= max wins.
IMAGE_TTL_TIERS: tuple[tuple[float, int], ...] = (
    (1 * MIB, 5184000),
    (2 * MIB, 2592000),
    (5 * MIB, 1296000),
    (float("inf"), 604800),
)

StarOutcome = Literal["starred", "missing", "quota_exceeded"]


def image_ttl(size: int, multiplier: float = 1.0) -> int:
    """Retention for an image of the given size: bigger images are kept for less time."""
    for max_size, ttl in IMAGE_TTL_TIERS:
        if size <= max_size:
            return int(ttl * multiplier)
    return int(IMAGE_TTL_TIERS[-1][1] * multiplier)


def payload_keys(entry: ArchiveEntry) -> list[str]:
    keys = [text_key(entry.id)] if entry.text_size > 0 else []
    keys.extend(image_key(entry.id, img.index) for img in entry.images)
    return keys


def load_index(bucket: str) -> ArchiveIndex:
    """Load the index snapshot. An unreadable snapshot is replaced by an empty index."""
    try:
        return ArchiveIndex.from_dict(fetch_index(bucket))
    except (ValueError, KeyError, TypeError, AttributeError):
        logger.exception("Archive index is corrupt, starting from an empty index")
        return ArchiveIndex()


def clean_expired_entries(index: ArchiveIndex, text_ttl_seconds: int, now: int) -> list[ArchiveEntry]:
    """Remove unstarred entries whose text and every image have outlived their TTL.

    A single live image keeps the whole entry, text included. Payloads are not
    touched here; callers delete them before persisting the index.
    """
    expired: set[int] = set()
    for entry in index.entries:
        if entry.starred:
            continue
        text_expired = now > entry.timestamp + text_ttl_seconds * 1000
        images_expired = all(now > entry.timestamp + img.ttl_seconds * 1000 for img in entry.images)
        if text_expired and images_expired:
            expired.add(entry.id)
    return index.remove(expired)


def run_cleanup(bucket: str, config: ArchiverConfig, now: int | None = None) -> ArchiveIndex:
    """Load the index, sweep expired entries and persist only if anything changed."""
    index = load_index(bucket)
    removed = clean_expired_entries(index, config.text_ttl_seconds, now_ms() if now is None else now)
    if removed:
        delete_keys(bucket, [key for entry in removed for key in payload_keys(entry)])
        store_index(bucket, index.to_dict())
        logger.info("Expired %d archived emails", len(removed))
    return index


def entry_score(entry: ArchiveEntry, config: ArchiverConfig, now: int) -> float:
    """Eviction priority: large entries and entries far into their own retention go first."""
    max_ttl_ms = max(config.text_ttl_seconds, entry.max_ttl_seconds, 1) * 1000
    age = now - entry.timestamp
    return (
        config.eviction_size_weight * (entry.size / config.eviction_size_norm)
        + config.eviction_age_weight * (age / max_ttl_ms)
    )


def evict_for_space(
    bucket: str, index: ArchiveIndex, needed: int, config: ArchiverConfig, now: int | None = None
) -> int:
    """Evict unstarred entries, highest score first, until `needed` bytes fit under the quota.

    Each pass removes one entry or stops, so the loop ends after at most one pass
    per entry. Running out of candidates is logged, not raised. Returns the
    number of entries evicted.
    """
    now = now_ms() if now is None else now
    target = config.max_storage - needed
    evicted = 0

    for _ in range(len(index.entries)):
        if index.total_size <= target:
            break
        candidates = [e for e in index.entries if not e.starred]
        if not candidates:
            break
        victim = max(candidates, key=lambda e: entry_score(e, config, now))
        delete_keys(bucket, payload_keys(victim))
        index.remove({victim.id})
        evicted += 1
        logger.info("Evicted entry %s (%d bytes) for space", victim.id, victim.size)

    if index.total_size > target:
        logger.warning(
            "Quota still exceeded after evicting %d entries: %d used, %d target", evicted, index.total_size, target
        )
    return evicted


def trim_old_entries(bucket: str, index: ArchiveIndex, max_entries: int) -> int:
    """Delete the oldest unstarred entries beyond the entry-count cap."""
    unstarred = sorted((e for e in index.entries if not e.starred), key=lambda e: e.timestamp)
    excess = unstarred[: max(len(unstarred) - max_entries, 0)]
    if not excess:
        return 0
    delete_keys(bucket, [key for entry in excess for key in payload_keys(entry)])
    index.remove({e.id for e in excess})
    index.recalculate()
    logger.info("Trimmed %d entries over the %d entry cap", len(excess), max_entries)
    return len(excess)


def delete_entry_images(bucket: str, index: ArchiveIndex, entry_id: int) -> int | None:
    """Delete an entry's stored images but keep the entry and its text.

    Returns the bytes freed, or None if the entry is gone or has no images.
    """
    entry = index.get(entry_id)
    if entry is None or not entry.images:
        return None
    freed = sum(img.size for img in entry.images)
    delete_keys(bucket, [image_key(entry_id, img.index) for img in entry.images])
    entry.images = []
    index.recalculate()
    logger.info("Deleted images of entry %s (%d bytes)", entry_id, freed)
    return freed


def star_entry(index: ArchiveIndex, entry_id: int, star_max_storage: int) -> StarOutcome:
    entry = index.get(entry_id)
    if entry is None:
        return "missing"
    if entry.starred:
        return "starred"
    if index.starred_size() + entry.size > star_max_storage:
        return "quota_exceeded"
    entry.starred = True
    return "starred"


def unstar_entry(index: ArchiveIndex, entry_id: int) -> bool:
    entry = index.get(entry_id)
    if entry is None:
        return False
    entry.starred = False
    return True
