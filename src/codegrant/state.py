"""Anti-forgery state tokens for authorization attempts.

A state token binds one authorization request to its callback. It is
generated once per attempt, embedded in the authorization URL, and compared
exactly once against the ``state`` returned by the provider.
"""

from __future__ import annotations

import hmac
import secrets

STATE_BYTES = 32


def generate_state() -> str:
    """Return a fresh, URL-safe random state token.

    Raises:
        OSError: If the operating system's entropy source fails.
    """
    return secrets.token_urlsafe(STATE_BYTES)


def state_matches(expected: str, received: str) -> bool:
    """Compare a callback's state against the attempt's token."""
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
