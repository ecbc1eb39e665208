"""Credential redaction and secure logging setup.

Access and refresh tokens travel through headers, request bodies and
error messages. This module keeps them out of log output:
- Pattern based redaction of JWTs and bearer credentials
- Header, URL and payload sanitizers for debug logging
- A logging formatter that sanitizes every record
"""

import copy
import logging
import re
import sys
from typing import Any, Dict, Iterable, Mapping, Optional

# Patterns for credentials that may appear in free text
SENSITIVE_PATTERNS = {
    "jwt_token": re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"),
    "bearer_token": re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    "basic_auth": re.compile(r"Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE),
}

# Headers that should never be logged
SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "x-access-token",
    "x-refresh-token",
    "x-csrf-token",
}

# Substrings of payload keys whose values are always redacted
SENSITIVE_KEYS = {"password", "token", "secret", "credential", "auth"}

SENSITIVE_QUERY_PARAMS = (
    "access_token",
    "refresh_token",
    "token",
    "password",
    "secret",
    "api_key",
    "key",
)


def sanitize_string(value: str) -> str:
    """Redact credentials embedded in a string.

    Each match is replaced in place, so surrounding context such as the
    URL or error text stays readable.

    :param value: String to sanitize
    :type value: str
    :return: String with credentials redacted
    :rtype: str
    """
    if not value:
        return value
    for pattern_name, pattern in SENSITIVE_PATTERNS.items():
        value = pattern.sub(f"<{pattern_name}:REDACTED>", value)
    return value


def sanitize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a copy of request or response headers safe for logging.

    :param headers: HTTP headers
    :type headers: Optional[Mapping[str, Any]]
    :return: Sanitized headers dictionary
    :rtype: Dict[str, Any]
    """
    if not headers:
        return {}
    sanitized: Dict[str, Any] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            if isinstance(value, str) and value:
                sanitized[key] = f"<REDACTED:length={len(value)}>"
            else:
                sanitized[key] = "<REDACTED>"
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_url(url: str) -> str:
    """Redact credential query parameters from a URL.

    :param url: URL to sanitize
    :type url: str
    :return: URL with sensitive parameter values replaced
    :rtype: str
    """
    if not url:
        return url
    for param in SENSITIVE_QUERY_PARAMS:
        url = re.sub(
            rf"([?&]{param}=)[^&#\s]+", r"\1<REDACTED>", url, flags=re.IGNORECASE
        )
    return url


def safe_log_dict(
    data: Any, sanitize_keys: Optional[Iterable[str]] = None
) -> Any:
    """Create a copy of a payload that is safe to log.

    Values under keys containing a sensitive substring (``accessToken``,
    ``refresh_token``, ``password`` ...) are replaced, and remaining
    strings are pattern sanitized. Nested dicts and lists are walked.

    :param data: Payload to sanitize
    :type data: Any
    :param sanitize_keys: Additional key substrings to redact
    :type sanitize_keys: Optional[Iterable[str]]
    :return: Sanitized copy
    :rtype: Any
    """
    if not data:
        return data
    keys = set(SENSITIVE_KEYS)
    if sanitize_keys:
        keys.update(k.lower() for k in sanitize_keys)

    def _walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            out = {}
            for key, value in obj.items():
                if any(s in str(key).lower() for s in keys):
                    out[key] = "<REDACTED>"
                else:
                    out[key] = _walk(value)
            return out
        if isinstance(obj, list):
            return [_walk(item) for item in obj]
        if isinstance(obj, str):
            return sanitize_string(obj)
        return obj

    return _walk(copy.deepcopy(data))


class SanitizingFormatter(logging.Formatter):
    """Formatter that redacts credentials from every log record."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record after sanitizing its message.

        The message is rendered with its arguments first so credentials
        passed as ``%s`` arguments are caught as well.

        :param record: Log record to format
        :type record: logging.LogRecord
        :return: Sanitized log line
        :rtype: str
        """
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = sanitize_string(message)
        record.args = None
        return super().format(record)


_LOGGING_CONFIGURED = False


def setup_secure_logging(level: str = "INFO", force: bool = False) -> None:
    """Configure root logging with credential redaction.

    Only the first call installs the handler unless ``force`` is set.

    :param level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    :type level: str
    :param force: Reinstall the handler even if logging was already set up
    :type force: bool
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED and not force:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping duplicate setup"
        )
        return

    formatter = SanitizingFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    # httpx logs full request lines at INFO
    logging.getLogger("httpx").setLevel(
        max(logging.WARNING, getattr(logging, level.upper()))
    )

    _LOGGING_CONFIGURED = True
    logging.getLogger(__name__).debug(f"Secure logging configured at {level.upper()}")
