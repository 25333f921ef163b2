import re

_REDACTION_RULES = [
    (re.compile(r"sk-[A-Za-z0-9_-]{10,}"), "sk-REDACTED"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._-]{10,}"), r"\1REDACTED"),
    (re.compile(r"(?i)(api[_-]?key\s*[:=]\s*)(\S+)"), r"\1REDACTED"),
    (re.compile(r"(?i)(token\s*[:=]\s*)(\S+)"), r"\1REDACTED"),
]


def sanitize_error_message(value):
    if not value or not isinstance(value, str):
        return value
    sanitized = value
    for pattern, replacement in _REDACTION_RULES:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


class CareVisionError(Exception):
    """Base class for errors surfaced to the dashboard."""


class ConfigurationError(CareVisionError):
    pass


class CameraAccessDenied(CareVisionError):
    pass


class FrameCaptureError(CareVisionError):
    pass


class InferenceError(CareVisionError):
    pass


class SessionStateError(CareVisionError):
    """Raised when start/stop is requested from a state that does not allow it."""
