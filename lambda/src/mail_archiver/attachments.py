"""Decide what to do with each attachment of an inbound email."""

import base64
import binascii
import math
from dataclasses import dataclass
from typing import Literal

from mail_archiver.email_parser import Attachment

AttachmentAction = Literal["skip", "ignore", "listOnly", "sendPhoto", "sendDocument"]

PHOTO_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/bmp"})
GIF_TYPE = "image/gif"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
}


@dataclass
class Classification:
    action: AttachmentAction
    size: int
    mime: str


def attachment_size(attachment: Attachment) -> int:
    """Payload size in bytes. Base64 text is sized as ceil(len * 3 / 4)."""
    if not attachment.data:
        return 0
    if isinstance(attachment.data, str):
        return math.ceil(len(attachment.data) * 3 / 4)
    return len(attachment.data)


def attachment_bytes(attachment: Attachment) -> bytes:
    if isinstance(attachment.data, str):
        try:
            return base64.b64decode(attachment.data)
        except binascii.Error:
            return b""
    return attachment.data or b""


def is_image(mime: str) -> bool:
    return mime in PHOTO_TYPES or mime == GIF_TYPE


def classify_attachment(attachment: Attachment, max_size: int, tracking_pixel_size: int) -> Classification:
    """Classify one attachment.

    Small inline images are treated as tracking pixels; a threshold of 0
    disables that rule since no size is below zero.
    """
    size = attachment_size(attachment)
    mime = (attachment.content_type or "").lower()
    inline = attachment.disposition == "inline" or attachment.related

    if not attachment.data:
        return Classification("skip", size, mime)
    if is_image(mime) and inline and size < tracking_pixel_size:
        return Classification("ignore", size, mime)
    if size > max_size:
        return Classification("listOnly", size, mime)
    if mime == GIF_TYPE or not is_image(mime):
        return Classification("sendDocument", size, mime)
    return Classification("sendPhoto", size, mime)


def image_filename(attachment: Attachment, index: int) -> str:
    if attachment.filename:
        return attachment.filename
    return f"image_{index}{_EXTENSIONS.get(attachment.content_type.lower(), '')}"


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def build_attachment_summary(attachments: list[Attachment], max_size: int, tracking_pixel_size: int) -> str:
    """One-line count of photos, documents and oversized files; empty if none."""
    photos = docs = oversized = 0
    for attachment in attachments:
        action = classify_attachment(attachment, max_size, tracking_pixel_size).action
        if action == "sendPhoto":
            photos += 1
        elif action == "sendDocument":
            docs += 1
        elif action == "listOnly":
            oversized += 1

    parts: list[str] = []
    if photos:
        parts.append(f"{photos} image{'s' if photos != 1 else ''}")
    if docs:
        parts.append(f"{docs} document{'s' if docs != 1 else ''}")
    if oversized:
        parts.append(f"{oversized} oversized file{'s' if oversized != 1 else ''}")
    return f"Attachments: {', '.join(parts)}" if parts else ""


def split_attachments(
    attachments: list[Attachment], max_size: int, tracking_pixel_size: int
) -> tuple[list[Attachment], list[tuple[str, int]]]:
    """Split attachments into images to archive and (filename, size) of everything not stored."""
    images: list[Attachment] = []
    unstored: list[tuple[str, int]] = []
    for attachment in attachments:
        result = classify_attachment(attachment, max_size, tracking_pixel_size)
        if result.action in ("skip", "ignore"):
            continue
        if result.action != "listOnly" and is_image(result.mime):
            images.append(attachment)
        else:
            unstored.append((attachment.filename or "unnamed", result.size))
    return images, unstored


def build_unstored_listing(unstored: list[tuple[str, int]]) -> str:
    if not unstored:
        return ""
    lines = [f"  - {name} ({format_size(size)})" for name, size in unstored]
    return "Attachments not stored:\n" + "\n".join(lines)
