"""Build a reduced .eml with binary attachment bodies removed."""

import re

PLACEHOLDER = "[attachment removed]"

_HEADER_END = re.compile(r"\r?\n\r?\n")
_BOUNDARY = re.compile(r'boundary="?([^\s";]+)"?', re.IGNORECASE)
_CONTENT_TYPE = re.compile(r"^Content-Type:[ \t]*([^\r\n;]+)", re.IGNORECASE | re.MULTILINE)


def strip_attachments(raw_email: bytes) -> bytes:
    """Replace every non-text MIME part body with a placeholder.

    Headers, boundaries and text parts are kept byte for byte so the result
    still parses as the same message, minus the attachment payloads.
    Single-part messages are returned unchanged.
    """
    raw = raw_email.decode("latin-1")
    match = _HEADER_END.search(raw)
    if match is None:
        return raw_email

    boundary = _BOUNDARY.search(raw[: match.start()])
    if boundary is None:
        return raw_email

    return _strip_multipart(raw, boundary.group(1)).encode("latin-1")


def _strip_multipart(raw: str, boundary: str) -> str:
    delimiter = "--" + boundary
    parts = raw.split(delimiter)

    result = [parts[0]]
    for part in parts[1:]:
        match = _HEADER_END.search(part)
        # The closing delimiter leaves a piece starting with "--" (the epilogue).
        if match is None or part.startswith("--"):
            result.append(part)
            continue

        headers = part[: match.start()]
        content_type = _CONTENT_TYPE.search(headers)
        # A part without Content-Type is text/plain.
        mime = content_type.group(1).strip().lower() if content_type else "text/plain"

        if mime.startswith("text/"):
            result.append(part)
        elif mime.startswith("multipart/"):
            nested = _BOUNDARY.search(headers)
            if nested is None:
                result.append(part)
            else:
                body = part[match.end() :]
                result.append(part[: match.end()] + _strip_multipart(body, nested.group(1)))
        else:
            newline = "\r\n" if "\r\n" in match.group(0) else "\n"
            result.append(part[: match.end()] + PLACEHOLDER + newline)

    return delimiter.join(result)
