"""S3 operations backing the archive: raw email, payloads, index and state."""

import json
import logging
import math
from collections.abc import Iterable
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

S3_CLIENT = boto3.client("s3")

INDEX_KEY = "archive/index.json"
RATE_KEY = "state/email-rate.json"
CONFIG_KEY = "config/system.json"

# S3 caps DeleteObjects at 1000 keys per request.
_DELETE_BATCH = 1000


def text_key(entry_id: int) -> str:
    return f"archive/text/{entry_id}.eml"


def image_key(entry_id: int, image_index: int) -> str:
    return f"archive/images/{entry_id}/{image_index}"


def fetch_raw_email(bucket: str, key: str) -> bytes:
    """Fetch a raw email from S3."""
    response = S3_CLIENT.get_object(Bucket=bucket, Key=key)
    return response["Body"].read()


def get_bytes(bucket: str, key: str) -> bytes | None:
    """Fetch an object's body. Returns None if it doesn't exist."""
    try:
        response = S3_CLIENT.get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if e.response["Error"]["Code"] == "NoSuchKey":
            return None
        raise
    return response["Body"].read()


def put_bytes(
    bucket: str,
    key: str,
    data: bytes,
    content_type: str = "application/octet-stream",
    ttl_seconds: int | None = None,
) -> None:
    """Upload an object. A TTL becomes an `expire-days` tag for the bucket lifecycle rules."""
    kwargs: dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": data, "ContentType": content_type}
    if ttl_seconds is not None:
        kwargs["Tagging"] = f"expire-days={max(1, math.ceil(ttl_seconds / 86400))}"
    S3_CLIENT.put_object(**kwargs)


def get_json(bucket: str, key: str) -> Any | None:
    body = get_bytes(bucket, key)
    if body is None:
        return None
    return json.loads(body.decode("utf-8"))


def put_json(bucket: str, key: str, value: Any, ttl_seconds: int | None = None) -> None:
    data = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    put_bytes(bucket, key, data, content_type="application/json", ttl_seconds=ttl_seconds)


def delete_keys(bucket: str, keys: Iterable[str]) -> None:
    """Delete a set of objects with batched DeleteObjects calls.

    Returns only after every batch has completed so callers can safely persist
    an index snapshot that no longer references the deleted payloads.
    """
    keys = list(keys)
    for start in range(0, len(keys), _DELETE_BATCH):
        batch = keys[start : start + _DELETE_BATCH]
        response = S3_CLIENT.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
        )
        for error in response.get("Errors", []):
            logger.warning("Failed to delete %s: %s", error.get("Key"), error.get("Message"))


def store_stripped_email(bucket: str, entry_id: int, data: bytes) -> int:
    """Store the stripped .eml for an entry. Returns bytes stored, 0 on failure."""
    try:
        put_bytes(bucket, text_key(entry_id), data, content_type="message/rfc822")
    except (ClientError, BotoCoreError):
        logger.exception("Failed to store stripped email for entry %s", entry_id)
        return 0
    return len(data)


def store_image(bucket: str, entry_id: int, image_index: int, data: bytes, content_type: str) -> bool:
    """Store one image payload. Returns False if the upload failed."""
    try:
        put_bytes(bucket, image_key(entry_id, image_index), data, content_type=content_type)
    except (ClientError, BotoCoreError):
        logger.exception("Failed to store image %d for entry %s", image_index, entry_id)
        return False
    return True


def fetch_stripped_email(bucket: str, entry_id: int) -> bytes | None:
    """Fetch the stored .eml for an entry. Returns None once it has expired."""
    return get_bytes(bucket, text_key(entry_id))


def fetch_image(bucket: str, entry_id: int, image_index: int) -> bytes | None:
    return get_bytes(bucket, image_key(entry_id, image_index))


def fetch_index(bucket: str) -> dict[str, Any] | None:
    """Fetch the archive index snapshot. Returns None if it doesn't exist yet."""
    return get_json(bucket, INDEX_KEY)


def store_index(bucket: str, snapshot: dict[str, Any]) -> None:
    """Upload the whole archive index snapshot."""
    put_json(bucket, INDEX_KEY, snapshot)


def fetch_config_overrides(bucket: str) -> dict[str, Any]:
    """Fetch operator overrides for the runtime config; empty if none are set."""
    try:
        overrides = get_json(bucket, CONFIG_KEY)
    except ValueError:
        logger.warning("Config overrides at %s are not valid JSON, ignoring", CONFIG_KEY)
        return {}
    return overrides if isinstance(overrides, dict) else {}


def tag_raw_email(bucket: str, key: str) -> None:
    """Tag a raw email as processed so it expires after 7 days instead of 30."""
    S3_CLIENT.put_object_tagging(
        Bucket=bucket,
        Key=key,
        Tagging={"TagSet": [{"Key": "status", "Value": "processed"}]},
    )
