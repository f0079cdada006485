"""Shared test fixtures for the mail archiver tests."""

import os
from collections.abc import Callable
from email.message import EmailMessage

import pytest

# Set dummy AWS credentials so module-level boto3.client() calls don't fail during import.
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("BUCKET_NAME", "test-bucket")
os.environ.setdefault("TELEGRAM_CHAT_ID", "4242")
os.environ.setdefault("SSM_BOT_TOKEN_PARAM", "/test/bot-token")
os.environ.setdefault("SSM_WEBHOOK_SECRET_PARAM", "/test/webhook-secret")

from mail_archiver.archive_index import ArchiveEntry, ImageRef
from mail_archiver.config import ArchiverConfig

MIB = 1024 * 1024
DAY_MS = 86_400_000
NOW = 1_700_000_000_000


@pytest.fixture
def config() -> ArchiverConfig:
    """Default configuration."""
    return ArchiverConfig()


@pytest.fixture
def make_entry() -> Callable[..., ArchiveEntry]:
    """Factory for archive entries; each of `image_sizes` becomes an image with `image_ttl_seconds`.

    Usage:
        entry = make_entry(1, age_days=10, text_size=1000, image_sizes=[MIB])
    """

    def _make(
        entry_id: int,
        age_days: float = 0,
        text_size: int = 1000,
        image_sizes: list[int] | None = None,
        image_ttl_seconds: int = 5184000,
        starred: bool = False,
        sender: str = "sender@example.com",
        subject: str = "Subject",
    ) -> ArchiveEntry:
        images = [
            ImageRef(index=i, size=size, ttl_seconds=image_ttl_seconds, filename=f"img{i}.png", mime_type="image/png")
            for i, size in enumerate(image_sizes or [])
        ]
        return ArchiveEntry(
            id=entry_id,
            timestamp=NOW - int(age_days * DAY_MS),
            starred=starred,
            text_size=text_size,
            images=images,
            sender=sender,
            subject=subject,
        )

    return _make


@pytest.fixture
def make_mime_email() -> Callable[..., bytes]:
    """Factory fixture to build raw MIME email bytes.

    Usage:
        email_bytes = make_mime_email(
            sender="test@example.com",
            subject="Test",
            body="Email body",
            attachments=[("photo.jpg", "image/jpeg", b"jpeg-data")],
        )
    """

    def _make(
        sender: str = "test@example.com",
        subject: str = "Test Subject",
        body: str = "Test body",
        attachments: list[tuple[str, str, bytes]] | None = None,
        html: str | None = None,
    ) -> bytes:
        msg = EmailMessage()
        msg["From"] = sender
        msg["Subject"] = subject
        msg["To"] = "inbox@example.com"
        msg.set_content(body)
        if html is not None:
            msg.add_alternative(html, subtype="html")

        if attachments:
            for filename, content_type, data in attachments:
                maintype, subtype = content_type.split("/")
                msg.add_attachment(
                    data,
                    maintype=maintype,
                    subtype=subtype,
                    filename=filename,
                )

        return msg.as_bytes()

    return _make
