"""codegrant -- OAuth 2.0 authorization-code login for command-line tools.

This package obtains a long-lived refresh token for a user by driving them
through a provider's consent screen, capturing the authorization code, and
exchanging it at the token endpoint. The code is captured either by an
ephemeral loopback HTTP listener or by a manual paste-the-redirect-URL
prompt.

Typical usage::

    from codegrant import authorize

    refresh_token = authorize(["openid", "email"], timeout=120)

Modules:
    flow: The authorization coordinator.
    callback: Loopback and manual callback acquisition strategies.
    exchange: Authorization-code grant against the token endpoint.
    urls: Authorization URL building and callback parsing.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and client-credential lookup.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"

from codegrant.flow import AuthorizationFlow, authorize  # noqa: E402

__all__ = ["AuthorizationFlow", "authorize", "__version__"]
