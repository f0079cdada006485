"""Lambda handler for Telegram webhook updates (buttons under email notifications)."""

import base64
import hmac
import json
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, get_args

from mail_archiver.archive_index import ArchiveIndex
from mail_archiver.attachments import PHOTO_TYPES, format_size
from mail_archiver.config import ArchiverConfig, get_ssm_param, resolve_config
from mail_archiver.notifier import ask_delete_confirmation, attach_keyboard
from mail_archiver.retention import delete_entry_images, run_cleanup, star_entry, unstar_entry
from mail_archiver.s3_manager import fetch_config_overrides, fetch_image, fetch_stripped_email, store_index
from mail_archiver.telegram_client import (
    MEDIA_GROUP_LIMIT,
    MediaItem,
    answer_callback_query,
    send_document,
    send_media_group,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

BUCKET_NAME = os.environ["BUCKET_NAME"]
TELEGRAM_CHAT_ID = os.environ["TELEGRAM_CHAT_ID"]
SSM_BOT_TOKEN_PARAM = os.environ["SSM_BOT_TOKEN_PARAM"]
SSM_WEBHOOK_SECRET_PARAM = os.environ["SSM_WEBHOOK_SECRET_PARAM"]

SECRET_HEADER = "x-telegram-bot-api-secret-token"
EXPIRED = "Email data has expired"

CallbackAction = Literal["star", "unstar", "att", "eml", "del_email", "confirm_del_email", "cancel_del_email"]
_ACTIONS: frozenset[str] = frozenset(get_args(CallbackAction))

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w -]")


@dataclass(frozen=True)
class CallbackCommand:
    action: CallbackAction
    entry_id: int

    @classmethod
    def decode(cls, data: str) -> "CallbackCommand | None":
        """Parse `action:entry_id` callback data. Returns None for anything unrecognised."""
        action, sep, value = data.partition(":")
        if not sep or action not in _ACTIONS:
            return None
        try:
            entry_id = int(value)
        except ValueError:
            return None
        return cls(action=action, entry_id=entry_id)  # type: ignore[arg-type]


def handle_update(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Process a Telegram webhook request from a Lambda function URL."""
    try:
        return _handle(event)
    except Exception:
        logger.exception("Failed to process webhook update")
        return {"statusCode": 500, "body": "Internal error"}


def _handle(event: dict[str, Any]) -> dict[str, Any]:
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    secret = get_ssm_param(SSM_WEBHOOK_SECRET_PARAM)
    if not hmac.compare_digest(headers.get(SECRET_HEADER, ""), secret):
        logger.warning("Rejected webhook call with a bad secret token")
        return {"statusCode": 403, "body": "Unauthorized"}

    try:
        update = json.loads(_body(event))
    except ValueError:
        return {"statusCode": 400, "body": "Bad request"}
    if not isinstance(update, dict):
        return {"statusCode": 400, "body": "Bad request"}

    callback = update.get("callback_query")
    if not callback:
        return {"statusCode": 200, "body": "OK"}

    chat_id = str(((callback.get("message") or {}).get("chat") or {}).get("id", ""))
    if chat_id != str(TELEGRAM_CHAT_ID):
        logger.warning("Ignoring callback from chat %s", chat_id)
        return {"statusCode": 200, "body": "OK"}

    bot_token = get_ssm_param(SSM_BOT_TOKEN_PARAM)
    command = CallbackCommand.decode(callback.get("data") or "")
    if command is None:
        answer_callback_query(bot_token, callback["id"], "Unknown action")
        return {"statusCode": 200, "body": "OK"}

    config = resolve_config(fetch_config_overrides(BUCKET_NAME), os.environ)
    toast = apply_command(command, config, bot_token)
    answer_callback_query(bot_token, callback["id"], toast)
    return {"statusCode": 200, "body": "OK"}


def apply_command(command: CallbackCommand, config: ArchiverConfig, bot_token: str) -> str:
    """Apply a callback command against the swept index and return the toast to show."""
    index = run_cleanup(BUCKET_NAME, config)
    toast = _COMMANDS[command.action](index, command.entry_id, config, bot_token)
    logger.info("Entry %s: %s", command.entry_id, command.action)
    return toast


def _star(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    outcome = star_entry(index, entry_id, config.star_max_storage)
    if outcome == "missing":
        return EXPIRED
    if outcome == "quota_exceeded":
        used = format_size(index.starred_size())
        return f"Star storage full ({used}/{format_size(config.star_max_storage)})"
    store_index(BUCKET_NAME, index.to_dict())
    _refresh_keyboard(index, entry_id, bot_token)
    return "⭐ Starred"


def _unstar(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    if not unstar_entry(index, entry_id):
        return EXPIRED
    store_index(BUCKET_NAME, index.to_dict())
    _refresh_keyboard(index, entry_id, bot_token)
    return "Unstarred"


def _send_images(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    """Re-send stored images as replies to the notification, photos and documents in separate albums."""
    entry = index.get(entry_id)
    if entry is None or not entry.images:
        return "No stored image attachments"

    groups: dict[str, list[MediaItem]] = {"photo": [], "document": []}
    for img in entry.images:
        data = fetch_image(BUCKET_NAME, entry_id, img.index)
        if data is None:
            continue
        kind = "photo" if img.mime_type in PHOTO_TYPES else "document"
        groups[kind].append(MediaItem(kind, data, img.filename or f"image_{img.index}", img.mime_type))

    sent = 0
    for items in groups.values():
        for start in range(0, len(items), MEDIA_GROUP_LIMIT):
            batch = items[start : start + MEDIA_GROUP_LIMIT]
            if send_media_group(bot_token, TELEGRAM_CHAT_ID, batch, reply_to=entry_id):
                sent += len(batch)

    if not any(groups.values()):
        return "Attachments have expired"
    if not sent:
        return "Failed to send attachments"
    return f"📎 Sent {sent} attachment{'s' if sent != 1 else ''}"


def _send_eml(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    data = fetch_stripped_email(BUCKET_NAME, entry_id)
    if data is None:
        return EXPIRED
    entry = index.get(entry_id)
    subject = (entry.subject if entry else "") or "email"
    filename = _UNSAFE_FILENAME_CHARS.sub("_", subject)[:50] + ".eml"
    if not send_document(bot_token, TELEGRAM_CHAT_ID, data, filename, "message/rfc822", reply_to=entry_id):
        return "Failed to send .eml"
    return "📄 .eml sent"


def _request_delete(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    entry = index.get(entry_id)
    if entry is None:
        return "No stored data"
    if entry.starred:
        return "⭐ Starred email, unstar it before deleting"
    ask_delete_confirmation(bot_token, TELEGRAM_CHAT_ID, entry_id)
    return "⚠️ Tap again to confirm"


def _confirm_delete(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    freed = delete_entry_images(BUCKET_NAME, index, entry_id)
    if freed is None:
        return "No attachments to delete"
    store_index(BUCKET_NAME, index.to_dict())
    _refresh_keyboard(index, entry_id, bot_token)
    return f"🗑 Deleted attachments, freed {format_size(freed)}"


def _cancel_delete(index: ArchiveIndex, entry_id: int, config: ArchiverConfig, bot_token: str) -> str:
    _refresh_keyboard(index, entry_id, bot_token)
    return "Cancelled"


def _refresh_keyboard(index: ArchiveIndex, entry_id: int, bot_token: str) -> None:
    entry = index.get(entry_id)
    starred = entry.starred if entry else False
    image_count = len(entry.images) if entry else 0
    attach_keyboard(bot_token, TELEGRAM_CHAT_ID, entry_id, starred=starred, image_count=image_count)


_COMMANDS: dict[str, Callable[[ArchiveIndex, int, ArchiverConfig, str], str]] = {
    "star": _star,
    "unstar": _unstar,
    "att": _send_images,
    "eml": _send_eml,
    "del_email": _request_delete,
    "confirm_del_email": _confirm_delete,
    "cancel_del_email": _cancel_delete,
}


def _body(event: dict[str, Any]) -> str:
    body = event.get("body") or "{}"
    if event.get("isBase64Encoded"):
        return base64.b64decode(body).decode("utf-8")
    return body
