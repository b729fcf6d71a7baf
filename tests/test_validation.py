"""
Tests for message sanitization and content checks.
"""
import pytest

from pingchat.core.errors import ValidationError
from pingchat.services.validation import MessageValidator, sanitize_text, spam_score


@pytest.fixture
def validator(settings):
    return MessageValidator(settings)


def test_sanitize_strips_markup_and_collapses_spaces():
    assert sanitize_text("  <b>Hi</b>   there  ") == "bHi/b there"


def test_sanitize_non_string():
    assert sanitize_text(None) == ""


def test_clean_returns_sanitized_text(validator):
    assert validator.clean("  Is this still available?  ") == "Is this still available?"


@pytest.mark.parametrize("text", ["", "   ", "<>"])
def test_clean_rejects_empty(validator, text):
    with pytest.raises(ValidationError):
        validator.clean(text)


def test_clean_enforces_max_length(validator):
    assert validator.clean("x" * 500) == "x" * 500
    with pytest.raises(ValidationError):
        validator.clean("x" * 501)


@pytest.mark.parametrize("text", [
    "<script>alert(1)</script>",
    "javascript:alert(1)",
    "img onerror=steal()",
])
def test_clean_rejects_forbidden_content(validator, text):
    with pytest.raises(ValidationError):
        validator.clean(text)


def test_spam_score_counts_pattern_hits():
    assert spam_score("Nice bike") == 0
    assert spam_score("free cash, click www.deal.com") >= 5


def test_clean_rejects_spam(validator):
    with pytest.raises(ValidationError):
        validator.clean("FREE money!! click www.profit.com for a limited offer, buy now, cash deal")
