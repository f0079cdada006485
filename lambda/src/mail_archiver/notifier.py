"""Format email notifications and deliver them to the Telegram chat."""

import html
import re
from typing import Any

from mail_archiver.email_parser import ParsedEmail
from mail_archiver.telegram_client import edit_reply_markup, send_message

MESSAGE_LIMIT = 4096
TRUNCATED_SUFFIX = "\n...(truncated)"
SEPARATOR = "\n━━━━━━━━━━━━━━━━━━━━\n\n"
NO_SUBJECT = "(no subject)"
NO_BODY = "(no body)"

_UNSUBSCRIBE_URL = re.compile(r"https?://[^\s>,]+")
_BLOCK_TAGS = re.compile(r"<\s*(br|/p|/div|/li|/tr|/h[1-6])\b[^>]*>", re.IGNORECASE)
_DROP_BLOCKS = re.compile(r"<(script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")


def esc(text: str) -> str:
    return html.escape(text, quote=False)


def html_to_text(markup: str) -> str:
    text = _DROP_BLOCKS.sub("", markup)
    text = _BLOCK_TAGS.sub("\n", text)
    text = html.unescape(_TAGS.sub("", text))
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def unsubscribe_url(parsed: ParsedEmail) -> str | None:
    header = parsed.header("list-unsubscribe")
    if not header:
        return None
    match = _UNSUBSCRIBE_URL.search(header)
    return match.group(0) if match else None


def _fit_body(header_len: int, body: str, max_len: int) -> str:
    """Truncate the body for readability, then until the escaped message fits Telegram's limit."""
    if len(body) > max_len:
        body = body[:max_len] + TRUNCATED_SUFFIX
    escaped = esc(body)
    if header_len + len(escaped) <= MESSAGE_LIMIT:
        return escaped

    length = min(len(body), MESSAGE_LIMIT - header_len - len(esc(TRUNCATED_SUFFIX)) - 20)
    while length > 100:
        candidate = esc(body[:length] + TRUNCATED_SUFFIX)
        if header_len + len(candidate) <= MESSAGE_LIMIT:
            return candidate
        length -= 50
    return esc(body[:100] + TRUNCATED_SUFFIX)


def build_notification_text(
    parsed: ParsedEmail, raw_from: str, raw_to: str, body: str, attachment_summary: str, body_max_length: int
) -> str:
    lines = [
        "📧 <b>New email</b>",
        "",
        f"<b>From:</b> {esc(parsed.sender or raw_from)}",
        f"<b>To:</b> {esc(parsed.to or raw_to)}",
    ]
    if parsed.cc:
        lines.append(f"<b>Cc:</b> {esc(parsed.cc)}")
    if parsed.reply_to and parsed.reply_to != (parsed.sender or raw_from):
        lines.append(f"<b>Reply-To:</b> {esc(parsed.reply_to)}")
    if parsed.date:
        lines.append(f"<b>Date:</b> {esc(parsed.date)}")
    lines.append(f"<b>Subject:</b> {esc(parsed.subject or NO_SUBJECT)}")
    if attachment_summary:
        lines.extend(["", f"📎 {esc(attachment_summary)}"])

    header = "\n".join(lines) + "\n" + SEPARATOR
    return header + _fit_body(len(header), body or NO_BODY, body_max_length or 1500)


def build_compact_notification_text(parsed: ParsedEmail, raw_from: str, raw_to: str) -> str:
    text = f"📧 {esc(parsed.sender or raw_from)}\n<b>{esc(parsed.subject or NO_SUBJECT)}</b>"
    if parsed.date:
        text += f" - {esc(parsed.date)}"
    return text + f"\nTo: {esc(raw_to)}"


def build_degraded_notification_text(raw_from: str, raw_to: str, subject: str, error: str) -> str:
    return (
        "⚠️ <b>New email (could not be parsed)</b>\n\n"
        f"<b>From:</b> {esc(raw_from)}\n"
        f"<b>To:</b> {esc(raw_to)}\n"
        f"<b>Subject:</b> {esc(subject or NO_SUBJECT)}"
        f"{SEPARATOR}"
        "The message could not be parsed; please read it in your mailbox.\n"
        f"Error: {esc(error)}"
    )


def build_failure_text(raw_from: str, raw_to: str) -> str:
    return (
        "❌ <b>Email processing failed</b>\n\n"
        f"<b>From:</b> {esc(raw_from)}\n"
        f"<b>To:</b> {esc(raw_to)}\n\n"
        "Please read the original in your mailbox."
    )


def build_email_keyboard(entry_id: int, starred: bool, image_count: int = 0) -> dict[str, Any]:
    """Action row under a notification: images, .eml, star toggle and image deletion."""
    row = []
    if image_count:
        row.append({"text": f"📎 Attachments ({image_count})", "callback_data": f"att:{entry_id}"})
    row.append({"text": "📄 .eml", "callback_data": f"eml:{entry_id}"})
    row.append(
        {"text": "⭐ Unstar", "callback_data": f"unstar:{entry_id}"}
        if starred
        else {"text": "Star", "callback_data": f"star:{entry_id}"}
    )
    if image_count:
        row.append({"text": "🗑 Delete attachments", "callback_data": f"del_email:{entry_id}"})
    return {"inline_keyboard": [row]}


def build_delete_confirm_keyboard(entry_id: int) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": "⚠️ Confirm delete", "callback_data": f"confirm_del_email:{entry_id}"},
                {"text": "Cancel", "callback_data": f"cancel_del_email:{entry_id}"},
            ]
        ]
    }


def append_extras(text: str, unstored_listing: str, unsubscribe: str | None) -> str:
    """Add the not-stored attachment list and unsubscribe link if they still fit."""
    extras = f"\n\n📋 {esc(unstored_listing)}" if unstored_listing else ""
    if unsubscribe:
        extras += f'\n\n🔗 <a href="{html.escape(unsubscribe)}">Unsubscribe from this list</a>'
    if extras and len(text) + len(extras) <= MESSAGE_LIMIT:
        return text + extras
    return text


def notify_email(bot_token: str, chat_id: str, text: str, silent: bool) -> int | None:
    """Deliver an email notification. Returns the message id used to key the archive."""
    return send_message(bot_token, chat_id, text, disable_notification=silent)


def attach_keyboard(bot_token: str, chat_id: str, message_id: int, starred: bool, image_count: int = 0) -> bool:
    keyboard = build_email_keyboard(message_id, starred, image_count)
    return edit_reply_markup(bot_token, chat_id, message_id, keyboard)


def ask_delete_confirmation(bot_token: str, chat_id: str, message_id: int) -> bool:
    return edit_reply_markup(bot_token, chat_id, message_id, build_delete_confirm_keyboard(message_id))


def notify_failure(bot_token: str, chat_id: str, raw_from: str, raw_to: str) -> None:
    """Publish a failure notification for processing errors."""
    send_message(bot_token, chat_id, build_failure_text(raw_from, raw_to))
