"""
Maps normalized errors to user-facing messages.

Pure functions only. Every code, known or not, yields a non-empty string.
"""

import math

from newsdash.services.errors import ErrorKind, NormalizedError

DEFAULT_LOCALE = "nl"

MESSAGES: dict[str, dict[ErrorKind, str]] = {
    "nl": {
        ErrorKind.NOT_FOUND: "De gevraagde resource kon niet worden gevonden.",
        ErrorKind.DATABASE_ERROR: "Er is een serverfout opgetreden. Probeer het later opnieuw.",
        ErrorKind.INVALID_DATE: "De opgegeven datum is ongeldig.",
        ErrorKind.INVALID_SOURCE: "De opgegeven nieuwsbron is onbekend.",
        ErrorKind.MISSING_QUERY: "Voer een zoekterm in.",
        ErrorKind.SEARCH_ERROR: "Er is een fout opgetreden tijdens het zoeken.",
        ErrorKind.SCRAPING_FAILED: "Het ophalen van nieuws is mislukt.",
        ErrorKind.INVALID_REQUEST: "Het verzoek is ongeldig.",
        ErrorKind.INVALID_ID: "Het opgegeven ID is ongeldig.",
        ErrorKind.NETWORK_ERROR: "Geen verbinding met de server.",
        ErrorKind.TIMEOUT: "De server reageert niet op tijd.",
        ErrorKind.CIRCUIT_OPEN: "De server is tijdelijk niet beschikbaar.",
    },
    "en": {
        ErrorKind.NOT_FOUND: "The requested resource could not be found.",
        ErrorKind.DATABASE_ERROR: "A server error occurred. Please try again later.",
        ErrorKind.INVALID_DATE: "The given date is invalid.",
        ErrorKind.INVALID_SOURCE: "The given news source is unknown.",
        ErrorKind.MISSING_QUERY: "Please enter a search term.",
        ErrorKind.SEARCH_ERROR: "An error occurred while searching.",
        ErrorKind.SCRAPING_FAILED: "Fetching news failed.",
        ErrorKind.INVALID_REQUEST: "The request is invalid.",
        ErrorKind.INVALID_ID: "The given ID is invalid.",
        ErrorKind.NETWORK_ERROR: "Unable to reach the server.",
        ErrorKind.TIMEOUT: "The server did not respond in time.",
        ErrorKind.CIRCUIT_OPEN: "The server is temporarily unavailable.",
    },
}

FALLBACKS = {
    "nl": "Er is een onbekende fout opgetreden.",
    "en": "An unknown error occurred.",
}


def _locale(locale: str | None) -> str:
    if locale and locale in MESSAGES:
        return locale
    return DEFAULT_LOCALE


def user_message(error: NormalizedError, locale: str | None = None) -> str:
    """Return the message to show for an error in the given locale."""
    loc = _locale(locale)
    known = MESSAGES[loc].get(error.code)
    if known:
        return known
    if error.message and error.message.strip():
        return error.message
    return FALLBACKS[loc]


def rate_limit_message(reset_in_seconds: float, locale: str | None = None) -> str:
    minutes = max(1, math.ceil(reset_in_seconds / 60))
    if _locale(locale) == "en":
        unit = "minute" if minutes == 1 else "minutes"
        return f"You have reached the limit. Try again in {minutes} {unit}."
    unit = "minuut" if minutes == 1 else "minuten"
    return f"Je hebt de limiet bereikt. Probeer het over {minutes} {unit} opnieuw."
