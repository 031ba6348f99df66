# leadrelay/services/fields.py
"""
Heuristic lookup of contact fields in a lead's free-form answer map.

Answers are keyed by whatever label the form author typed, so the phone,
email and name fields are found by key synonyms. Synonyms are tried in the
order listed below; within one synonym the first matching key (in answer
order) wins. When no key matches, values are scanned for something that
looks like the wanted kind of data.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Tuple

PHONE_KEY_TERMS: Tuple[str, ...] = ("whatsapp", "celular", "telefone", "phone", "mobile")
EMAIL_KEY_TERMS: Tuple[str, ...] = ("email", "e-mail")
NAME_KEY_TERMS: Tuple[str, ...] = ("nome", "name", "full_name", "completo")

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_CHARS_PATTERN = re.compile(r"^\+?[\d\s().\-]+$")
_NON_DIGITS = re.compile(r"\D+")

# Keys that hold wrapped answers, e.g. {"value": "..."}
_WRAPPER_KEYS = ("value", "answer", "response", "text", "content", "selected")


def unwrap_answer(value: Any) -> str:
    """Flatten an answer value to a trimmed string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (str, int, float)):
        return str(value).strip()
    if isinstance(value, Mapping):
        for key in _WRAPPER_KEYS:
            text = unwrap_answer(value.get(key))
            if text:
                return text
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(part for part in (unwrap_answer(v) for v in value) if part)
    return str(value).strip()


def digits_only(value: Any) -> str:
    return _NON_DIGITS.sub("", unwrap_answer(value))


def looks_like_email(value: str) -> bool:
    return bool(_EMAIL_PATTERN.match(value))


def looks_like_phone(value: str, min_digits: int = 10) -> bool:
    if not value or not _PHONE_CHARS_PATTERN.match(value):
        return False
    return len(digits_only(value)) >= min_digits


def _find_by_key(data: Mapping[str, Any], terms: Iterable[str]) -> Optional[str]:
    for term in terms:
        for key, value in data.items():
            if term in str(key).lower():
                text = unwrap_answer(value)
                if text:
                    return text
    return None


def find_phone(data: Optional[Mapping[str, Any]], min_digits: int = 10) -> Optional[str]:
    """
    Raw phone answer, or None when nothing phone-like is present.

    A phone-keyed answer with enough digits wins, then any phone-looking
    value. A phone-keyed answer without enough digits (a "Sim" to "Contato
    por WhatsApp?") is only returned when nothing better exists, so the
    lead is reported as having an invalid number.
    """
    if not data:
        return None
    weak_match = None
    for term in PHONE_KEY_TERMS:
        for key, value in data.items():
            if term not in str(key).lower():
                continue
            text = unwrap_answer(value)
            if not text:
                continue
            if len(digits_only(text)) >= min_digits:
                return text
            if weak_match is None:
                weak_match = text
    for value in data.values():
        text = unwrap_answer(value)
        if looks_like_phone(text, min_digits):
            return text
    return weak_match


def find_email(data: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not data:
        return None
    found = _find_by_key(data, EMAIL_KEY_TERMS)
    if found and looks_like_email(found):
        return found
    for value in data.values():
        text = unwrap_answer(value)
        if looks_like_email(text):
            return text
    return None


def find_name(data: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not data:
        return None
    return _find_by_key(data, NAME_KEY_TERMS)


def normalize_phone(value: Any, min_digits: int = 10) -> Optional[str]:
    """Digits of a phone answer, or None when shorter than ``min_digits``."""
    digits = digits_only(value)
    if len(digits) < min_digits:
        return None
    return digits


def split_name(full_name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    parts = (full_name or "").split()
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[-1]


@dataclass(frozen=True)
class PhoneLookup:
    raw: Optional[str]
    digits: Optional[str]

    @property
    def found(self) -> bool:
        return self.raw is not None

    @property
    def valid(self) -> bool:
        return self.digits is not None

    @property
    def skip_reason(self) -> Optional[str]:
        if not self.found:
            return "No phone number found"
        if not self.valid:
            return "Invalid phone number"
        return None


def lookup_phone(data: Optional[Mapping[str, Any]], min_digits: int = 10) -> PhoneLookup:
    raw = find_phone(data, min_digits)
    digits = normalize_phone(raw, min_digits) if raw is not None else None
    return PhoneLookup(raw=raw, digits=digits)
