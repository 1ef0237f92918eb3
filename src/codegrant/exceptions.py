"""Exception hierarchy for codegrant.

All exceptions inherit from :class:`CodegrantError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`codegrant.exit_codes`.
The top-level error handler in :func:`codegrant.app.main` catches
``CodegrantError`` and exits with the appropriate code.

Every failure of an authorization attempt is terminal: nothing here is
retried internally. Callers that want to try again start a brand-new
attempt, which gets a fresh state token and a fresh authorization code.

Subclass hierarchy::

    CodegrantError (exit 1)
    +-- InvalidRequestError           (exit 2)
    +-- ConfigError                   (exit 1)
    +-- CredentialsUnavailableError   (exit 3)
    +-- InternalError                 (exit 1)
    |   +-- BrowserOpenError          (exit 1)
    +-- AuthorizationDeniedError      (exit 4)
    +-- StateMismatchError            (exit 5)
    +-- InvalidCallbackInputError     (exit 2)
    |   +-- MissingCodeError          (exit 2)
    +-- AuthTimeoutError              (exit 6)
    +-- AuthorizationCancelledError   (exit 130)
    +-- TokenExchangeError            (exit 7)
    +-- RefreshTokenMissingError      (exit 8)
"""

from __future__ import annotations

from codegrant.exit_codes import (
    EXIT_AUTH_DENIED,
    EXIT_CANCELLED,
    EXIT_CREDENTIALS_UNAVAILABLE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_REFRESH_TOKEN_MISSING,
    EXIT_STATE_MISMATCH,
    EXIT_TIMEOUT,
    EXIT_TOKEN_EXCHANGE_FAILED,
)


class CodegrantError(Exception):
    """Base exception for all codegrant errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`codegrant.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidRequestError(CodegrantError):
    """Raised when an authorization request is malformed (e.g. no scopes)."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(CodegrantError):
    """Raised for configuration problems (invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class CredentialsUnavailableError(CodegrantError):
    """Raised when the OAuth client id/secret cannot be obtained."""

    exit_code = EXIT_CREDENTIALS_UNAVAILABLE


class InternalError(CodegrantError):
    """Raised on local failures unrelated to the provider (entropy, sockets)."""

    exit_code = EXIT_GENERIC_FAILURE


class BrowserOpenError(InternalError):
    """Raised when the system browser cannot be launched for the loopback flow."""


class AuthorizationDeniedError(CodegrantError):
    """Raised when the callback carries an OAuth ``error`` (denied consent, provider error).

    Args:
        error: The provider's ``error`` value, e.g. ``"access_denied"``.
        description: The optional ``error_description`` value.
    """

    exit_code = EXIT_AUTH_DENIED

    def __init__(self, error: str, description: str | None = None):
        message = f"authorization error: {error}"
        if description:
            message += f" ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class StateMismatchError(CodegrantError):
    """Raised when the callback's ``state`` differs from the attempt's token."""

    exit_code = EXIT_STATE_MISMATCH


class InvalidCallbackInputError(CodegrantError):
    """Raised when pasted or received callback data cannot be used."""

    exit_code = EXIT_INVALID_USAGE


class MissingCodeError(InvalidCallbackInputError):
    """Raised when a callback carries neither ``code`` nor ``error``."""


class AuthTimeoutError(CodegrantError):
    """Raised when no callback arrives before the attempt's deadline.

    Named with an ``Auth`` prefix to avoid shadowing the built-in
    ``TimeoutError``.
    """

    exit_code = EXIT_TIMEOUT


class AuthorizationCancelledError(CodegrantError):
    """Raised when the caller cancels an attempt that is still waiting."""

    exit_code = EXIT_CANCELLED


class TokenExchangeError(CodegrantError):
    """Raised when the token endpoint rejects the code or cannot be reached."""

    exit_code = EXIT_TOKEN_EXCHANGE_FAILED


class RefreshTokenMissingError(CodegrantError):
    """Raised when the token exchange succeeds but returns no refresh token."""

    exit_code = EXIT_REFRESH_TOKEN_MISSING
