"""Recover message bodies that were decoded with the wrong charset."""

import base64
import binascii
import logging
import quopri
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

FALLBACK_CHARSETS = ("gbk", "gb18030", "big5", "shift_jis", "euc-kr", "windows-1252")

REPLACEMENT_CHAR = "\ufffd"
READABLE_SAMPLE_SIZE = 200
READABLE_RATIO = 0.6

_HEADER_END = re.compile(r"\r?\n\r?\n")
_BOUNDARY = re.compile(r'boundary="?([^\s";]+)"?', re.IGNORECASE)


@dataclass
class RecoveredBody:
    text: str | None
    html: str | None
    charset: str | None = None


def is_garbled(text: str | None) -> bool:
    return bool(text) and REPLACEMENT_CHAR in text


def is_readable_text(text: str) -> bool:
    """Heuristic: most of the first 200 chars are ASCII printable, CJK or line breaks."""
    if not text:
        return False
    sample = text[:READABLE_SAMPLE_SIZE]
    readable = sum(1 for ch in sample if _is_readable_char(ord(ch)))
    return readable / len(sample) > READABLE_RATIO


def _is_readable_char(c: int) -> bool:
    return (
        0x20 <= c <= 0x7E
        or 0x4E00 <= c <= 0x9FFF
        or 0x3400 <= c <= 0x4DBF
        or 0x3000 <= c <= 0x303F
        or 0xFF00 <= c <= 0xFFEF
        or c in (0x0A, 0x0D)
    )


def decode_with_fallbacks(data: bytes) -> tuple[str, str] | None:
    """Try each fallback charset strictly. Returns (text, charset) or None."""
    if not data:
        return None
    for charset in FALLBACK_CHARSETS:
        try:
            text = data.decode(charset)
        except UnicodeDecodeError:
            continue
        if not is_garbled(text) and is_readable_text(text):
            return text, charset
    return None


def extract_raw_text_body(raw_email: bytes) -> bytes | None:
    """Locate the first text/plain (else text/html) body and undo its transfer encoding.

    The message is handled as latin-1 so every byte maps to exactly one character
    and the original octets can be recovered with a plain encode.
    """
    raw = raw_email.decode("latin-1")
    match = _HEADER_END.search(raw)
    if match is None:
        return None

    headers = raw[: match.start()]
    content_type = _header_value(headers, "Content-Type").lower()
    if content_type.startswith("multipart/"):
        boundary = _BOUNDARY.search(headers)
        if boundary is None:
            return None
        return _find_text_part(raw[match.end() :], boundary.group(1))

    cte = _header_value(headers, "Content-Transfer-Encoding")
    return _decode_transfer_encoding(raw[match.end() :], cte)


def _find_text_part(body: str, boundary: str) -> bytes | None:
    html_part: bytes | None = None
    for part in body.split("--" + boundary):
        match = _HEADER_END.search(part)
        if match is None:
            continue
        part_headers = part[: match.start()]
        content_type = _header_value(part_headers, "Content-Type").lower() or "text/plain"

        if content_type.startswith("multipart/"):
            nested_boundary = _BOUNDARY.search(part_headers)
            if nested_boundary is None:
                continue
            nested = _find_text_part(part[match.end() :], nested_boundary.group(1))
            if nested is not None:
                return nested
            continue

        if "text/plain" not in content_type and "text/html" not in content_type:
            continue

        payload = part[match.end() :]
        if payload.endswith("\r\n"):
            payload = payload[:-2]
        elif payload.endswith("\n"):
            payload = payload[:-1]
        decoded = _decode_transfer_encoding(payload, _header_value(part_headers, "Content-Transfer-Encoding"))

        if "text/plain" in content_type:
            return decoded
        if html_part is None:
            html_part = decoded
    return html_part


def _header_value(headers: str, name: str) -> str:
    match = re.search(rf"^{name}:[ \t]*([^\r\n]*)", headers, re.IGNORECASE | re.MULTILINE)
    return match.group(1).strip() if match else ""


def _decode_transfer_encoding(payload: str, cte: str) -> bytes | None:
    """Undo the transfer encoding. Returns None for a base64 body that cannot be decoded."""
    octets = payload.encode("latin-1")
    encoding = cte.lower()
    if "base64" in encoding:
        compact = re.sub(rb"\s", b"", octets)
        # Senders often drop the trailing padding.
        compact += b"=" * (-len(compact) % 4)
        try:
            return base64.b64decode(compact, validate=True)
        except binascii.Error:
            logger.info("Malformed base64 body, skipping charset recovery")
            return None
    if "quoted-printable" in encoding:
        return quopri.decodestring(octets)
    return octets


def recover_body(raw_email: bytes, text: str | None, html: str | None) -> RecoveredBody:
    """Re-decode a garbled text or HTML body from the raw message bytes.

    Returns the inputs unchanged when nothing is garbled or no fallback charset
    produces readable text.
    """
    text_garbled = is_garbled(text)
    html_garbled = is_garbled(html)
    if not text_garbled and not html_garbled:
        return RecoveredBody(text=text, html=html)

    body = extract_raw_text_body(raw_email)
    if not body:
        return RecoveredBody(text=text, html=html)

    result = decode_with_fallbacks(body)
    if result is None:
        return RecoveredBody(text=text, html=html)

    recovered, charset = result
    logger.info("Encoding fallback: fixed body with %s", charset)
    if text_garbled:
        return RecoveredBody(text=recovered, html=html, charset=charset)
    return RecoveredBody(text=text, html=recovered, charset=charset)
