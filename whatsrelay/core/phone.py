"""Recipient normalization for WhatsApp addressing."""

from __future__ import annotations

import re
from dataclasses import dataclass

from whatsrelay.config import PhoneConfig
from whatsrelay.core.errors import InvalidRecipient

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class PhoneNumberPolicy:
    """Turn a free-form phone number into the digits WhatsApp addresses.

    Rule: strip every non-digit. When default_country_code is set and the
    result has exactly national_number_length digits without already starting
    with the country code, the country code is prepended.

    The defaults ("1", 10) assume North American numbers. Deployments in other
    regions should set their own country code or disable it with "".
    """

    default_country_code: str = "1"
    national_number_length: int = 10

    @classmethod
    def from_config(cls, phone_config: PhoneConfig) -> "PhoneNumberPolicy":
        return cls(
            default_country_code=phone_config.default_country_code,
            national_number_length=phone_config.national_number_length,
        )

    def normalize(self, phone_number: str) -> str:
        cleaned = _NON_DIGITS.sub("", phone_number or "")
        if not cleaned:
            raise InvalidRecipient(f"Recipient has no digits: {phone_number!r}")

        code = self.default_country_code
        if code and len(cleaned) == self.national_number_length and not cleaned.startswith(code):
            cleaned = code + cleaned
        return cleaned

    def chat_id(self, phone_number: str, suffix: str) -> str:
        return f"{self.normalize(phone_number)}{suffix}"
