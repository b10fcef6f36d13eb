"""
Error taxonomy for the helpem backend.

Only OracleUnavailable, QuotaExceeded and AuthFailed are hard failures of a
chat turn. Malformed oracle output and unknown priority targets degrade to a
conversational reply and never reach the caller as exceptions.
"""

GENERIC_FAILURE_MESSAGE = "Sorry, something went wrong. Please try again."


class HelpemError(Exception):
    """Base class for errors the HTTP layer maps to a status code."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OracleUnavailable(HelpemError):
    """The language oracle errored, timed out or returned nothing."""

    status_code = 503

    def __init__(self, message: str = GENERIC_FAILURE_MESSAGE):
        super().__init__(message)


class QuotaExceeded(HelpemError):
    """The monthly usage ceiling has been reached."""

    status_code = 429

    def __init__(self, message: str, stats: dict | None = None):
        super().__init__(message)
        self.stats = stats or {}


class AuthFailed(HelpemError):
    status_code = 401


class TranscriptionFailed(HelpemError):
    status_code = 502


class SpeechFailed(HelpemError):
    status_code = 502


class StaleResult(HelpemError):
    """An oracle reply arrived after a newer utterance superseded it."""

    status_code = 409
