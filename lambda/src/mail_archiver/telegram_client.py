"""Telegram Bot API calls with bounded retry."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal

import requests

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.5
REQUEST_TIMEOUT = 10
UPLOAD_TIMEOUT = 60
MEDIA_GROUP_LIMIT = 10

# (filename, content, mime type) as accepted by requests' `files=`.
Upload = tuple[str, bytes, str]


@dataclass
class MediaItem:
    kind: Literal["photo", "document"]
    data: bytes
    filename: str
    mime_type: str


def call_api(
    bot_token: str, method: str, payload: dict[str, Any], files: dict[str, Upload] | None = None
) -> dict[str, Any]:
    """POST a Bot API method, retrying rate limits, 5xx and network errors.

    With `files` the request is sent as multipart form data, so nested payload
    values must already be JSON strings.

    Never raises: a failure is returned as a result with `ok` false so callers
    can decide whether to carry on.
    """
    url = f"{API_BASE}/bot{bot_token}/{method}"
    if files:
        request: dict[str, Any] = {"data": payload, "files": files, "timeout": UPLOAD_TIMEOUT}
    else:
        request = {"json": payload, "timeout": REQUEST_TIMEOUT}
    for attempt in range(1, MAX_RETRIES + 1):
        last_attempt = attempt == MAX_RETRIES
        try:
            result = requests.post(url, **request).json()
        except requests.RequestException as e:
            if last_attempt:
                logger.warning("%s: failed after %d attempts: %s", method, MAX_RETRIES, e)
                return {"ok": False, "description": str(e)}
            delay = RETRY_BASE_DELAY * 2 ** (attempt - 1)
            logger.info("%s: network error, retrying in %.1fs (attempt %d): %s", method, delay, attempt, e)
            time.sleep(delay)
            continue

        if result.get("ok"):
            return result

        error_code = result.get("error_code") or 0
        if error_code == 429 and not last_attempt:
            wait = (result.get("parameters") or {}).get("retry_after") or 1
            logger.info("%s: rate limited, waiting %ss (attempt %d)", method, wait, attempt)
            time.sleep(wait)
            continue
        if error_code >= 500 and not last_attempt:
            delay = RETRY_BASE_DELAY * 2 ** (attempt - 1)
            logger.info("%s: server error %d, retrying in %.1fs (attempt %d)", method, error_code, delay, attempt)
            time.sleep(delay)
            continue

        logger.warning("%s error: %s", method, result)
        return result

    return {"ok": False, "description": "retries exhausted"}


def send_message(
    bot_token: str,
    chat_id: str,
    text: str,
    disable_notification: bool = False,
    reply_markup: dict[str, Any] | None = None,
) -> int | None:
    """Send an HTML message. Returns the new message id, or None on failure."""
    payload: dict[str, Any] = {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "HTML",
        "disable_notification": disable_notification,
    }
    if reply_markup:
        payload["reply_markup"] = reply_markup
    result = call_api(bot_token, "sendMessage", payload)
    if not result.get("ok"):
        return None
    return result.get("result", {}).get("message_id")


def edit_reply_markup(bot_token: str, chat_id: str, message_id: int, reply_markup: dict[str, Any]) -> bool:
    payload = {"chat_id": chat_id, "message_id": message_id, "reply_markup": reply_markup}
    return bool(call_api(bot_token, "editMessageReplyMarkup", payload).get("ok"))


def _upload_fields(chat_id: str, reply_to: int | None) -> dict[str, Any]:
    fields: dict[str, Any] = {"chat_id": chat_id}
    if reply_to:
        fields["reply_parameters"] = json.dumps({"message_id": reply_to})
    return fields


def send_photo(
    bot_token: str, chat_id: str, data: bytes, filename: str, mime_type: str, reply_to: int | None = None
) -> bool:
    files = {"photo": (filename, data, mime_type)}
    return bool(call_api(bot_token, "sendPhoto", _upload_fields(chat_id, reply_to), files=files).get("ok"))


def send_document(
    bot_token: str, chat_id: str, data: bytes, filename: str, mime_type: str, reply_to: int | None = None
) -> bool:
    files = {"document": (filename, data, mime_type)}
    return bool(call_api(bot_token, "sendDocument", _upload_fields(chat_id, reply_to), files=files).get("ok"))


def send_media_group(bot_token: str, chat_id: str, items: list[MediaItem], reply_to: int | None = None) -> bool:
    """Upload files as one album. A single item is sent on its own since albums need two or more."""
    if not items:
        return False
    if len(items) == 1:
        item = items[0]
        send = send_photo if item.kind == "photo" else send_document
        return send(bot_token, chat_id, item.data, item.filename, item.mime_type, reply_to)

    payload = _upload_fields(chat_id, reply_to)
    files: dict[str, Upload] = {}
    media = []
    for i, item in enumerate(items):
        field = f"file{i}"
        files[field] = (item.filename or f"attachment_{i}", item.data, item.mime_type)
        media.append({"type": item.kind, "media": f"attach://{field}"})
    payload["media"] = json.dumps(media)
    return bool(call_api(bot_token, "sendMediaGroup", payload, files=files).get("ok"))


def delete_message(bot_token: str, chat_id: str, message_id: int) -> None:
    """Best effort: the message may already be gone."""
    try:
        requests.post(
            f"{API_BASE}/bot{bot_token}/deleteMessage",
            json={"chat_id": chat_id, "message_id": message_id},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException:
        logger.info("deleteMessage failed for %s", message_id)


def answer_callback_query(bot_token: str, callback_query_id: str, text: str | None = None) -> None:
    payload: dict[str, Any] = {"callback_query_id": callback_query_id}
    if text:
        payload["text"] = text
    try:
        requests.post(f"{API_BASE}/bot{bot_token}/answerCallbackQuery", json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException:
        logger.info("answerCallbackQuery failed for %s", callback_query_id)
