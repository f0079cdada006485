"""Main Lambda handler for archiving inbound emails."""

import logging
import os
from email.utils import parseaddr
from typing import Any

from mail_archiver.archive_index import ArchiveEntry, ArchiveIndex, ImageRef, now_ms
from mail_archiver.attachments import (
    attachment_bytes,
    build_attachment_summary,
    build_unstored_listing,
    image_filename,
    split_attachments,
)
from mail_archiver.config import ArchiverConfig, get_ssm_param, resolve_config
from mail_archiver.email_parser import Attachment, ParsedEmail, parse_email
from mail_archiver.encoding import recover_body
from mail_archiver.mime_stripper import strip_attachments
from mail_archiver.notifier import (
    append_extras,
    attach_keyboard,
    build_compact_notification_text,
    build_degraded_notification_text,
    build_notification_text,
    html_to_text,
    notify_email,
    notify_failure,
    unsubscribe_url,
)
from mail_archiver.rate_detector import check_rate
from mail_archiver.retention import evict_for_space, image_ttl, run_cleanup, trim_old_entries
from mail_archiver.s3_manager import (
    fetch_config_overrides,
    fetch_raw_email,
    store_image,
    store_index,
    store_stripped_email,
    tag_raw_email,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

BUCKET_NAME = os.environ["BUCKET_NAME"]
TELEGRAM_CHAT_ID = os.environ["TELEGRAM_CHAT_ID"]
SSM_BOT_TOKEN_PARAM = os.environ["SSM_BOT_TOKEN_PARAM"]


def process_email(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Process an incoming SES email event."""
    try:
        return _handle(event)
    except Exception:
        logger.exception("Failed to process email")
        _send_failure_notice(event)
        return {"statusCode": 500, "body": "Internal error"}


def _handle(event: dict[str, Any]) -> dict[str, Any]:
    mail = event["Records"][0]["ses"]["mail"]
    message_id = mail["messageId"]
    raw_from, raw_to = _envelope(mail)

    raw_email_key = f"raw-emails/{message_id}"
    logger.info("Processing email %s", message_id)

    config = resolve_config(fetch_config_overrides(BUCKET_NAME), os.environ)
    bot_token = get_ssm_param(SSM_BOT_TOKEN_PARAM)
    raw_email = fetch_raw_email(BUCKET_NAME, raw_email_key)
    high_frequency = check_rate(BUCKET_NAME, config)

    try:
        parsed = parse_email(raw_email)
    except Exception as e:
        logger.warning("Failed to parse email %s: %s", message_id, e)
        subject = str(mail.get("commonHeaders", {}).get("subject", ""))
        text = build_degraded_notification_text(raw_from, raw_to, subject, str(e))
        notify_email(bot_token, TELEGRAM_CHAT_ID, text, silent=high_frequency)
        tag_raw_email(BUCKET_NAME, raw_email_key)
        return {"statusCode": 200, "body": "Unparseable email notified"}

    recovered = recover_body(raw_email, parsed.text, parsed.html)
    body = recovered.text or (html_to_text(recovered.html) if recovered.html else "")

    images, unstored = split_attachments(parsed.attachments, config.attach_max_size, config.tracking_pixel_size)

    if high_frequency:
        text = build_compact_notification_text(parsed, raw_from, raw_to)
    else:
        summary = build_attachment_summary(parsed.attachments, config.attach_max_size, config.tracking_pixel_size)
        text = build_notification_text(parsed, raw_from, raw_to, body, summary, config.body_max_length)
        text = append_extras(text, build_unstored_listing(unstored), unsubscribe_url(parsed))

    notification_id = notify_email(bot_token, TELEGRAM_CHAT_ID, text, silent=high_frequency)
    if notification_id is None:
        logger.warning("Notification for %s was not delivered; skipping archive", message_id)
        return {"statusCode": 502, "body": "Notification failed"}

    entry = _archive(raw_email, parsed, images, notification_id, raw_from, config)
    attach_keyboard(bot_token, TELEGRAM_CHAT_ID, notification_id, starred=False, image_count=len(entry.images))

    tag_raw_email(BUCKET_NAME, raw_email_key)
    logger.info("Archived email %s as entry %s (%d bytes)", message_id, entry.id, entry.size)
    return {"statusCode": 200, "body": "Processed"}


def _archive(
    raw_email: bytes,
    parsed: ParsedEmail,
    images: list[Attachment],
    entry_id: int,
    raw_from: str,
    config: ArchiverConfig,
) -> ArchiveEntry:
    """Store the stripped email and as many images as the quota allows, then index them."""
    text_size = store_stripped_email(BUCKET_NAME, entry_id, strip_attachments(raw_email))
    index = run_cleanup(BUCKET_NAME, config)
    _ensure_space(index, text_size, config)

    stored: list[ImageRef] = []
    stored_bytes = 0
    for i, attachment in enumerate(images):
        data = attachment_bytes(attachment)
        needed = text_size + stored_bytes + len(data)
        if not _ensure_space(index, needed, config):
            logger.info("Skipping image %d: storage full (%d bytes needed)", i, needed)
            continue
        if not store_image(BUCKET_NAME, entry_id, i, data, attachment.content_type):
            continue
        stored.append(
            ImageRef(
                index=i,
                size=len(data),
                ttl_seconds=image_ttl(len(data), config.image_ttl_multiplier),
                filename=image_filename(attachment, i),
                mime_type=attachment.content_type,
            )
        )
        stored_bytes += len(data)

    _, sender_address = parseaddr(parsed.sender)
    entry = ArchiveEntry(
        id=entry_id,
        timestamp=now_ms(),
        text_size=text_size,
        images=stored,
        sender=(sender_address or raw_from).lower(),
        subject=parsed.subject,
    )
    index.add(entry)
    trim_old_entries(BUCKET_NAME, index, config.max_email_entries)
    store_index(BUCKET_NAME, index.to_dict())
    return entry


def _ensure_space(index: ArchiveIndex, needed: int, config: ArchiverConfig) -> bool:
    if index.total_size + needed > config.max_storage:
        evict_for_space(BUCKET_NAME, index, needed, config)
    return index.total_size + needed <= config.max_storage


def _envelope(mail: dict[str, Any]) -> tuple[str, str]:
    destination = mail.get("destination") or ["unknown"]
    return mail.get("source") or "unknown", destination[0]


def _send_failure_notice(event: dict[str, Any]) -> None:
    try:
        raw_from, raw_to = _envelope(event["Records"][0]["ses"]["mail"])
        notify_failure(get_ssm_param(SSM_BOT_TOKEN_PARAM), TELEGRAM_CHAT_ID, raw_from, raw_to)
    except Exception:
        logger.exception("Failed to send failure notice")
