"""Tests for notifier module."""

from unittest.mock import MagicMock, patch

from mail_archiver.email_parser import ParsedEmail
from mail_archiver.notifier import (
    MESSAGE_LIMIT,
    NO_BODY,
    NO_SUBJECT,
    TRUNCATED_SUFFIX,
    append_extras,
    ask_delete_confirmation,
    attach_keyboard,
    build_compact_notification_text,
    build_degraded_notification_text,
    build_delete_confirm_keyboard,
    build_email_keyboard,
    build_failure_text,
    build_notification_text,
    html_to_text,
    notify_email,
    notify_failure,
    unsubscribe_url,
)


def _make_parsed_email(**overrides: object) -> ParsedEmail:
    defaults: dict[str, object] = {
        "sender": "Alice <alice@example.com>",
        "subject": "Quarterly report",
        "text": "Body text",
        "html": "",
        "attachments": [],
        "to": "inbox@example.com",
        "date": "Mon, 1 Jan 2024 10:00:00 +0000",
    }
    defaults.update(overrides)
    return ParsedEmail(**defaults)  # type: ignore[arg-type]


def test_notification_text_has_headers_and_body() -> None:
    text = build_notification_text(_make_parsed_email(), "raw@x", "to@x", "Body text", "", 1500)

    assert "<b>From:</b> Alice &lt;alice@example.com&gt;" in text
    assert "<b>To:</b> inbox@example.com" in text
    assert "<b>Subject:</b> Quarterly report" in text
    assert "<b>Date:</b>" in text
    assert text.endswith("Body text")


def test_notification_text_escapes_html_in_body() -> None:
    text = build_notification_text(_make_parsed_email(), "raw@x", "to@x", "a < b & c", "", 1500)
    assert text.endswith("a &lt; b &amp; c")


def test_notification_text_placeholders() -> None:
    text = build_notification_text(_make_parsed_email(subject="", sender=""), "raw@x", "to@x", "", "", 1500)

    assert NO_SUBJECT in text
    assert "<b>From:</b> raw@x" in text
    assert text.endswith(NO_BODY)


def test_notification_text_optional_headers() -> None:
    parsed = _make_parsed_email(cc="bob@example.com", reply_to="replies@example.com")
    text = build_notification_text(parsed, "raw@x", "to@x", "b", "Attachments: 1 image", 1500)

    assert "<b>Cc:</b> bob@example.com" in text
    assert "<b>Reply-To:</b> replies@example.com" in text
    assert "📎 Attachments: 1 image" in text


def test_notification_body_truncated_to_max_length() -> None:
    text = build_notification_text(_make_parsed_email(), "raw@x", "to@x", "x" * 3000, "", 1500)

    assert text.endswith("x" * 1500 + TRUNCATED_SUFFIX)
    assert "x" * 1501 not in text


def test_notification_fits_message_limit_after_escaping() -> None:
    body = "&" * 3000
    text = build_notification_text(_make_parsed_email(), "raw@x", "to@x", body, "", 4000)

    assert len(text) <= MESSAGE_LIMIT
    assert text.endswith(TRUNCATED_SUFFIX)


def test_compact_notification_text() -> None:
    text = build_compact_notification_text(_make_parsed_email(), "raw@x", "to@x")

    assert text.startswith("📧 Alice &lt;alice@example.com&gt;")
    assert "<b>Quarterly report</b>" in text
    assert text.endswith("To: to@x")
    assert "Body text" not in text


def test_degraded_notification_text() -> None:
    text = build_degraded_notification_text("raw@x", "to@x", "", "boom <err>")

    assert "could not be parsed" in text
    assert NO_SUBJECT in text
    assert "boom &lt;err&gt;" in text


def test_failure_text() -> None:
    text = build_failure_text("raw@x", "to@x")
    assert "raw@x" in text
    assert "to@x" in text


def test_html_to_text() -> None:
    markup = "<style>p {}</style><p>Hello&nbsp;<b>there</b></p><br><div>line &amp; more</div><script>x()</script>"
    assert html_to_text(markup) == "Hello\xa0there\n\nline & more"


def test_unsubscribe_url() -> None:
    parsed = _make_parsed_email(
        headers=[("list-unsubscribe", "<mailto:u@example.com>, <https://example.com/unsub?id=1>")]
    )
    assert unsubscribe_url(parsed) == "https://example.com/unsub?id=1"
    assert unsubscribe_url(_make_parsed_email()) is None
    assert unsubscribe_url(_make_parsed_email(headers=[("list-unsubscribe", "<mailto:u@example.com>")])) is None


def test_email_keyboard() -> None:
    assert build_email_keyboard(5, starred=False) == {
        "inline_keyboard": [
            [
                {"text": "📄 .eml", "callback_data": "eml:5"},
                {"text": "Star", "callback_data": "star:5"},
            ]
        ]
    }
    assert build_email_keyboard(5, starred=True)["inline_keyboard"][0][1]["callback_data"] == "unstar:5"


def test_email_keyboard_with_images() -> None:
    row = build_email_keyboard(7, starred=False, image_count=3)["inline_keyboard"][0]

    assert [b["callback_data"] for b in row] == ["att:7", "eml:7", "star:7", "del_email:7"]
    assert row[0]["text"] == "📎 Attachments (3)"


def test_delete_confirm_keyboard() -> None:
    row = build_delete_confirm_keyboard(7)["inline_keyboard"][0]
    assert [b["callback_data"] for b in row] == ["confirm_del_email:7", "cancel_del_email:7"]


def test_append_extras() -> None:
    text = append_extras("base", "Attachments not stored:\n  - a.pdf (1.0 KB)", "https://example.com/u?a=1&b=2")

    assert "📋 Attachments not stored:" in text
    assert 'href="https://example.com/u?a=1&amp;b=2"' in text


def test_append_extras_skipped_when_over_limit() -> None:
    base = "x" * (MESSAGE_LIMIT - 5)
    assert append_extras(base, "Attachments not stored:\n  - a.pdf (1.0 KB)", None) == base


@patch("mail_archiver.notifier.send_message", return_value=99)
def test_notify_email_returns_message_id(mock_send: MagicMock) -> None:
    assert notify_email("TOKEN", "42", "text", silent=True) == 99
    mock_send.assert_called_once_with("TOKEN", "42", "text", disable_notification=True)


@patch("mail_archiver.notifier.edit_reply_markup", return_value=True)
def test_attach_keyboard(mock_edit: MagicMock) -> None:
    assert attach_keyboard("TOKEN", "42", 99, starred=False) is True
    mock_edit.assert_called_once_with("TOKEN", "42", 99, build_email_keyboard(99, False))


@patch("mail_archiver.notifier.send_message")
def test_notify_failure_sends_message(mock_send: MagicMock) -> None:
    notify_failure("TOKEN", "42", "raw@x", "to@x")
    mock_send.assert_called_once()
    assert "raw@x" in mock_send.call_args[0][2]


@patch("mail_archiver.notifier.edit_reply_markup", return_value=True)
def test_attach_keyboard_with_images(mock_edit: MagicMock) -> None:
    attach_keyboard("TOKEN", "42", 99, starred=True, image_count=2)
    mock_edit.assert_called_once_with("TOKEN", "42", 99, build_email_keyboard(99, True, 2))


@patch("mail_archiver.notifier.edit_reply_markup", return_value=True)
def test_ask_delete_confirmation(mock_edit: MagicMock) -> None:
    assert ask_delete_confirmation("TOKEN", "42", 99) is True
    mock_edit.assert_called_once_with("TOKEN", "42", 99, build_delete_confirm_keyboard(99))
