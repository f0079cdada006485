"""Tests for mime_stripper module."""

import base64
from collections.abc import Callable

from mail_archiver.email_parser import parse_email
from mail_archiver.mime_stripper import PLACEHOLDER, strip_attachments

RAW_MIXED = (
    b'Content-Type: multipart/mixed; boundary="XYZ"\r\n'
    b"\r\n"
    b"--XYZ\r\n"
    b"Content-Type: text/plain\r\n"
    b"\r\n"
    b"hello\r\n"
    b"--XYZ\r\n"
    b"Content-Type: application/pdf\r\n"
    b"Content-Transfer-Encoding: base64\r\n"
    b"\r\n"
    b"JVBERi0xLjQK\r\n"
    b"--XYZ--\r\n"
)


def test_strip_replaces_binary_body_with_placeholder() -> None:
    expected = (
        b'Content-Type: multipart/mixed; boundary="XYZ"\r\n'
        b"\r\n"
        b"--XYZ\r\n"
        b"Content-Type: text/plain\r\n"
        b"\r\n"
        b"hello\r\n"
        b"--XYZ\r\n"
        b"Content-Type: application/pdf\r\n"
        b"Content-Transfer-Encoding: base64\r\n"
        b"\r\n"
        b"[attachment removed]\r\n"
        b"--XYZ--\r\n"
    )
    assert strip_attachments(RAW_MIXED) == expected


def test_single_part_message_is_unchanged(make_mime_email: Callable[..., bytes]) -> None:
    raw = make_mime_email(body="Just text")
    assert strip_attachments(raw) == raw


def test_message_without_header_separator_is_unchanged() -> None:
    raw = b"Subject: nothing else"
    assert strip_attachments(raw) == raw


def test_all_text_multipart_is_unchanged(make_mime_email: Callable[..., bytes]) -> None:
    raw = make_mime_email(body="plain", html="<p>rich</p>")
    assert strip_attachments(raw) == raw


def test_strip_nested_multipart(make_mime_email: Callable[..., bytes]) -> None:
    image = b"\x89PNG" + bytes(range(256)) * 8
    raw = make_mime_email(
        body="plain body",
        html="<p>rich body</p>",
        attachments=[("photo.png", "image/png", image)],
    )

    stripped = strip_attachments(raw)

    assert base64.b64encode(image)[:60] not in stripped
    assert PLACEHOLDER.encode() in stripped
    assert b"<p>rich body</p>" in stripped
    assert len(stripped) < len(raw)

    original = parse_email(raw)
    reparsed = parse_email(stripped)
    assert reparsed.text == original.text
    assert reparsed.html == original.html
    assert reparsed.subject == original.subject
    assert [a.filename for a in reparsed.attachments] == ["photo.png"]


def test_text_parts_are_kept_byte_for_byte(make_mime_email: Callable[..., bytes]) -> None:
    raw = make_mime_email(
        body="keep me",
        attachments=[
            ("doc.pdf", "application/pdf", b"pdf-data" * 100),
            ("notes.txt", "text/plain", b"attached notes"),
        ],
    )

    stripped = strip_attachments(raw)
    reparsed = parse_email(stripped)

    assert reparsed.text.strip() == "keep me"
    notes = [a for a in reparsed.attachments if a.filename == "notes.txt"]
    assert notes[0].data == b"attached notes"
    assert base64.b64encode(b"pdf-data" * 100)[:40] not in stripped


def test_part_without_content_type_is_kept_as_text() -> None:
    raw = (
        b'Content-Type: multipart/mixed; boundary="XYZ"\r\n'
        b"\r\n"
        b"--XYZ\r\n"
        b"Content-Transfer-Encoding: 7bit\r\n"
        b"\r\n"
        b"plain words\r\n"
        b"--XYZ\r\n"
        b"Content-Type: application/pdf\r\n"
        b"\r\n"
        b"%PDF\r\n"
        b"--XYZ--\r\n"
    )

    stripped = strip_attachments(raw)

    assert b"--XYZ\r\nContent-Transfer-Encoding: 7bit\r\n\r\nplain words\r\n" in stripped
    assert b"%PDF" not in stripped
    assert PLACEHOLDER.encode() in stripped
