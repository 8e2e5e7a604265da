"""Tests for user-facing error messages."""

import pytest

from newsdash.services.errors import ErrorKind, NormalizedError
from newsdash.services.normalizer import MESSAGES, rate_limit_message, user_message


class TestUserMessage:
    def test_known_code_dutch_by_default(self):
        error = NormalizedError(code=ErrorKind.NOT_FOUND, message="Article 7 not found")

        assert user_message(error) == "De gevraagde resource kon niet worden gevonden."

    def test_known_code_english(self):
        error = NormalizedError(code=ErrorKind.TIMEOUT, message="timed out")

        assert user_message(error, "en") == "The server did not respond in time."

    def test_unknown_locale_falls_back_to_dutch(self):
        error = NormalizedError(code=ErrorKind.MISSING_QUERY, message="q required")

        assert user_message(error, "fr") == "Voer een zoekterm in."

    def test_unmapped_code_uses_server_message(self):
        error = NormalizedError(code=ErrorKind.UNKNOWN, message="Quota for tenant exceeded")

        assert user_message(error, "en") == "Quota for tenant exceeded"

    def test_blank_message_uses_generic_fallback(self):
        error = NormalizedError(code=ErrorKind.HTTP_ERROR, message="  ")

        assert user_message(error) == "Er is een onbekende fout opgetreden."
        assert user_message(error, "en") == "An unknown error occurred."

    @pytest.mark.parametrize("code", list(ErrorKind))
    @pytest.mark.parametrize("locale", [None, *MESSAGES])
    def test_every_code_yields_a_message(self, code, locale):
        error = NormalizedError(code=code, message="")

        assert user_message(error, locale).strip()


class TestRateLimitMessage:
    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0, "Probeer het over 1 minuut opnieuw."),
            (30, "Probeer het over 1 minuut opnieuw."),
            (61, "Probeer het over 2 minuten opnieuw."),
            (600, "Probeer het over 10 minuten opnieuw."),
        ],
    )
    def test_dutch(self, seconds, expected):
        assert rate_limit_message(seconds).endswith(expected)

    def test_english(self):
        assert rate_limit_message(45, "en") == (
            "You have reached the limit. Try again in 1 minute."
        )
        assert rate_limit_message(150, "en").endswith("3 minutes.")
