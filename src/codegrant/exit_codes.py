"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure category of an authorization
attempt and is referenced by the corresponding
:class:`~codegrant.exceptions.CodegrantError` subclass. Shell wrappers can
tell "the user clicked deny" apart from "the login timed out" without
parsing stderr.

Example::

    $ codegrant login -s openid
    $ echo $?
    4   # EXIT_AUTH_DENIED -- the user refused consent
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified or internal error occurred."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments, or unusable input pasted at the manual prompt."""

EXIT_CREDENTIALS_UNAVAILABLE = 3
"""The OAuth client id/secret could not be resolved."""

EXIT_AUTH_DENIED = 4
"""The provider or the user declined the authorization request."""

EXIT_STATE_MISMATCH = 5
"""The callback's state token did not match the attempt's token."""

EXIT_TIMEOUT = 6
"""No callback arrived before the attempt's deadline."""

EXIT_TOKEN_EXCHANGE_FAILED = 7
"""The token endpoint rejected the code or could not be reached."""

EXIT_REFRESH_TOKEN_MISSING = 8
"""The token endpoint answered without a refresh token."""

EXIT_CANCELLED = 130
"""The attempt was cancelled (Ctrl-C or an external cancel signal)."""
