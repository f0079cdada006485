"""Parse raw inbound emails into headers, bodies and attachments."""

import email
import email.policy
from dataclasses import dataclass, field
from email.message import EmailMessage


@dataclass
class Attachment:
    filename: str
    content_type: str
    data: bytes | str | None
    disposition: str = "attachment"
    related: bool = False


@dataclass
class ParsedEmail:
    sender: str
    subject: str
    text: str
    html: str
    attachments: list[Attachment]
    to: str = ""
    cc: str = ""
    bcc: str = ""
    reply_to: str = ""
    date: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)

    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return None


def parse_email(raw_email: bytes) -> ParsedEmail:
    """Parse a raw email from S3 into structured data.

    Text bodies are decoded with their declared charset and undecodable bytes
    become U+FFFD, which is what the encoding recovery step looks for.
    """
    msg = email.message_from_bytes(raw_email, policy=email.policy.default)

    parsed = ParsedEmail(
        sender=str(msg.get("From", "")),
        subject=str(msg.get("Subject", "")),
        text="",
        html="",
        attachments=[],
        to=str(msg.get("To", "")),
        cc=str(msg.get("Cc", "")),
        bcc=str(msg.get("Bcc", "")),
        reply_to=str(msg.get("Reply-To", "")),
        date=str(msg.get("Date", "")),
        headers=[(key.lower(), str(value)) for key, value in msg.items()],
    )
    _collect_parts(msg, parsed, related=False)
    return parsed


def _collect_parts(part: EmailMessage, parsed: ParsedEmail, related: bool) -> None:
    if part.is_multipart():
        related = related or part.get_content_type() == "multipart/related"
        for sub in part.iter_parts():
            _collect_parts(sub, parsed, related)
        return

    content_type = part.get_content_type()
    disposition = part.get_content_disposition() or ""

    if disposition != "attachment" and content_type == "text/plain" and not parsed.text:
        parsed.text = _decode_text(part)
        return
    if disposition != "attachment" and content_type == "text/html" and not parsed.html:
        parsed.html = _decode_text(part)
        return

    payload = part.get_payload(decode=True)
    parsed.attachments.append(
        Attachment(
            filename=part.get_filename() or "",
            content_type=content_type,
            data=payload if isinstance(payload, bytes) and payload else None,
            disposition=disposition or ("inline" if related else "attachment"),
            related=related,
        )
    )


def _decode_text(part: EmailMessage) -> str:
    payload = part.get_payload(decode=True)
    if not isinstance(payload, bytes):
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")
