import pytest

from marketsync.utils.message_validation import (
    contains_contact_keywords,
    contains_phone_number,
    contains_url,
    validate_message,
)


@pytest.mark.parametrize(
    "text",
    [
        "see https://example.com/item",
        "www.example.org",
        "my store is shop.example.com",
        "bit.ly/abc123",
    ],
)
def test_contains_url(text):
    assert contains_url(text)


def test_plain_text_is_not_a_url():
    assert not contains_url("is it still available? thanks")


@pytest.mark.parametrize("text", ["call 11 98765-4321", "+55 (11) 98765-4321", "123456789012"])
def test_contains_phone_number(text):
    assert contains_phone_number(text)


def test_short_numbers_are_not_phone_numbers():
    assert not contains_phone_number("I can do 150 for both, level 42")


def test_contact_keywords():
    assert contains_contact_keywords("add me on WhatsApp")
    assert contains_contact_keywords("me liga depois")
    assert not contains_contact_keywords("what's up")


@pytest.mark.parametrize(
    "text, reason_fragment, detected",
    [
        ("", "Invalid", None),
        ("   ", "Empty", None),
        ("visit https://example.com", "Links", "url"),
        ("my number is 11 98765-4321", "Phone", "phone_number"),
        ("whatsapp 1198 7654 32", "external contact", "contact_info"),
    ],
)
def test_validate_message_rejections(text, reason_fragment, detected):
    result = validate_message(text)

    assert result.is_valid is False
    assert reason_fragment in result.reason
    assert result.detected_content == detected


def test_validate_message_accepts_normal_chat():
    assert validate_message("Is the skin still available? I can pay today.").is_valid
    # keyword alone without a number is allowed
    assert validate_message("I don't use telegram, only this chat").is_valid
