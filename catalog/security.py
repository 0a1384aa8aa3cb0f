import re


_REDACTION_PATTERNS = [
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]{6,}"),
    re.compile(r"(?i)([?&](?:api_key|key|token|access_token)=)([^&\s]+)"),
    re.compile(r"(?i)(//[^:/@\s]+:)([^@\s]+)(?=@)"),
]


def redact_sensitive(text):
    """Mask credentials in catalog URLs and auth headers before they reach a log line."""
    if not text:
        return text
    redacted = str(text)
    for pattern in _REDACTION_PATTERNS:
        redacted = pattern.sub(r"\1***", redacted)
    return redacted


__all__ = ["redact_sensitive"]
