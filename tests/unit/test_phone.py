"""Unit tests for recipient normalization."""

import pytest

from whatsrelay.config import PhoneConfig
from whatsrelay.constants import SOCKET_CHAT_SUFFIX, WEB_CHAT_SUFFIX
from whatsrelay.core.errors import InvalidRecipient
from whatsrelay.core.phone import PhoneNumberPolicy


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(555) 123-4567", "15551234567"),
        ("+1 555 123 4567", "15551234567"),
        ("15551234567", "15551234567"),
        ("+44 20 7946 0958", "442079460958"),
        ("1234567890", "1234567890"),
    ],
)
def test_normalize_default_policy(raw: str, expected: str) -> None:
    assert PhoneNumberPolicy().normalize(raw) == expected


def test_normalize_rejects_input_without_digits() -> None:
    with pytest.raises(InvalidRecipient):
        PhoneNumberPolicy().normalize("call me")


def test_invalid_recipient_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        PhoneNumberPolicy().normalize("")


def test_empty_country_code_disables_prefixing() -> None:
    policy = PhoneNumberPolicy(default_country_code="")

    assert policy.normalize("555 123 4567") == "5551234567"


def test_policy_from_config() -> None:
    policy = PhoneNumberPolicy.from_config(PhoneConfig(default_country_code="91", national_number_length=10))

    assert policy.normalize("98765 43210") == "919876543210"


def test_chat_id_appends_engine_suffix() -> None:
    policy = PhoneNumberPolicy()

    assert policy.chat_id("555-123-4567", WEB_CHAT_SUFFIX) == "15551234567@c.us"
    assert policy.chat_id("555-123-4567", SOCKET_CHAT_SUFFIX) == "15551234567@s.whatsapp.net"
