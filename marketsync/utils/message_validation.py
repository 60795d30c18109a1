"""
Outgoing chat text validation.

Buyers and sellers must not move the negotiation off-platform, so text that
carries links, phone numbers or contact handles is rejected before it is sent.
"""

import re
from dataclasses import dataclass

URL_PATTERNS = [
    re.compile(
        r"https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b([-a-zA-Z0-9()@:%_+.~#?&/=]*)",
        re.IGNORECASE,
    ),
    re.compile(
        r"www\.[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b([-a-zA-Z0-9()@:%_+.~#?&/=]*)",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b[a-zA-Z0-9][-a-zA-Z0-9]{0,62}(\.[a-zA-Z0-9][-a-zA-Z0-9]{0,62})*\."
        r"(com|net|org|br|io|app|dev|co|me|info|biz|online|site|tech|store|shop|xyz|club|link"
        r"|tv|us|uk|ca|au|de|fr|es|it|ru|cn|jp|in|edu|gov|mil)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(bit\.ly|tinyurl\.com|goo\.gl|ow\.ly|short\.link|cutt\.ly|rb\.gy|is\.gd|buff\.ly|adf\.ly|t\.co)/[a-zA-Z0-9]+",
        re.IGNORECASE,
    ),
]

PHONE_PATTERNS = [
    re.compile(r"\+55\s*\(?\d{2}\)?\s*\d{4,5}[-\s]?\d{4}"),
    re.compile(r"\(?\d{2}\)?\s*\d{4,5}[-\s]?\d{4}"),
    re.compile(r"\b\d{9,15}\b"),
    re.compile(r"\+\d{1,3}\s*\(?\d{1,4}\)?\s*\d{4,10}[-\s]?\d{0,10}"),
]

CONTACT_KEYWORDS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"whats\s*app",
        r"telegram",
        r"discord",
        r"skype",
        r"\bwpp\b",
        r"\bzap\b",
        r"me\s*liga",
        r"ligue\s*para",
        r"chama\s*no",
        r"adiciona\s*no",
    )
]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    reason: str | None = None
    detected_content: str | None = None


def contains_url(text: str) -> bool:
    return any(pattern.search(text) for pattern in URL_PATTERNS)


def contains_phone_number(text: str) -> bool:
    clean_text = re.sub(r"[,;.!?]", " ", text)
    for pattern in PHONE_PATTERNS:
        for match in pattern.finditer(clean_text):
            digits = re.sub(r"\D", "", match.group(0))
            if 8 <= len(digits) <= 15:
                return True
    return False


def contains_contact_keywords(text: str) -> bool:
    return any(pattern.search(text) for pattern in CONTACT_KEYWORDS)


def validate_message(content: str) -> ValidationResult:
    if not content or not isinstance(content, str):
        return ValidationResult(False, "Invalid message")

    text = content.strip()
    if not text:
        return ValidationResult(False, "Empty message")

    if contains_url(text):
        return ValidationResult(False, "Links and URLs are not allowed in chat", "url")

    if contains_phone_number(text):
        return ValidationResult(False, "Phone numbers are not allowed in chat", "phone_number")

    if contains_contact_keywords(text) and re.search(r"\d{8,}", re.sub(r"\D", "", text)):
        return ValidationResult(
            False, "Sharing external contact details is not allowed", "contact_info"
        )

    return ValidationResult(True)
