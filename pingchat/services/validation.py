"""
Message content validation and sanitization.
"""
import re
from typing import List, Pattern

from pingchat.core.config import Settings
from pingchat.core.errors import ValidationError

# Markup and script fragments stripped from user text
_STRIP_PATTERNS = [
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\bon\w+=", re.IGNORECASE),
]

# Each hit adds one to the spam score
_SPAM_PATTERNS = [
    re.compile(r"(buy|sell|click|visit|http|www|\.com|\.net|\.org)", re.IGNORECASE),
    re.compile(r"(free|money|cash|earn|income|profit)", re.IGNORECASE),
    re.compile(r"(limited|offer|discount|sale|deal)", re.IGNORECASE),
]

_WHITESPACE_RUN = re.compile(r"[ \t]{2,}")


def sanitize_text(value: str) -> str:
    """Trim and strip markup-ish fragments from user supplied text."""
    if not isinstance(value, str):
        return ""
    cleaned = value.strip()
    for pattern in _STRIP_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return _WHITESPACE_RUN.sub(" ", cleaned).strip()


def spam_score(value: str) -> int:
    return sum(len(pattern.findall(value)) for pattern in _SPAM_PATTERNS)


class MessageValidator:
    """Length bound, forbidden-content filter and spam score for ping and chat text."""

    def __init__(self, settings: Settings):
        self.max_length = settings.message_max_length
        self.spam_threshold = settings.message_spam_threshold
        self.forbidden: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in settings.forbidden_patterns]

    def clean(self, text: str) -> str:
        """
        Return the sanitized message.

        Raises:
            ValidationError: empty, too long, forbidden or spammy content
        """
        if isinstance(text, str):
            for pattern in self.forbidden:
                if pattern.search(text):
                    raise ValidationError("Message contains forbidden content")

        sanitized = sanitize_text(text)
        if not sanitized:
            raise ValidationError("Message cannot be empty")
        if len(sanitized) > self.max_length:
            raise ValidationError(f"Message must be at most {self.max_length} characters")
        if spam_score(sanitized) > self.spam_threshold:
            raise ValidationError("Message appears to be spam")
        return sanitized
