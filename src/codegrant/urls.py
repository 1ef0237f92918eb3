"""Authorization URL building and callback parsing.

Both callback acquisition strategies funnel the provider's redirect through
:func:`parse_callback_query` (the loopback listener with the request path,
the manual prompt via :func:`parse_callback_input`), so they produce the same
:class:`~codegrant.models.CallbackResult` shape and feed the same validation
in :mod:`codegrant.flow`.
"""

from __future__ import annotations

from typing import Sequence
from urllib.parse import parse_qs, urlencode, urlparse, urlsplit, urlunsplit

from codegrant.exceptions import InvalidCallbackInputError
from codegrant.models import CallbackResult, Endpoint

CALLBACK_PATH = "/oauth2/callback"

MANUAL_REDIRECT_URI = "http://localhost:1"
"""Redirect target for the manual flow.

Port 1 on loopback never answers, so after consent the browser shows a
connection error whose address bar holds the code the user pastes back.
"""


def loopback_redirect_uri(port: int) -> str:
    """Return the redirect target served by a loopback listener on *port*."""
    return f"http://127.0.0.1:{port}{CALLBACK_PATH}"


def build_authorization_url(
    endpoint: Endpoint,
    client_id: str,
    scopes: Sequence[str],
    redirect_uri: str,
    state: str,
    force_consent: bool = True,
) -> str:
    """Compose the provider authorization URL for one attempt.

    Args:
        endpoint: Provider endpoints; ``extra_params`` are appended after
            the standard parameters.
        client_id: Registered OAuth client id.
        scopes: Requested scopes, joined with spaces.
        redirect_uri: Where the provider sends the user back to.
        state: The attempt's anti-forgery token.
        force_consent: When ``False``, a ``prompt`` extra param is dropped so
            the provider may skip the consent screen.

    Returns:
        The absolute authorization URL.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
    }
    for key, value in endpoint.extra_params.items():
        if key == "prompt" and not force_consent:
            continue
        params.setdefault(key, value)

    # Preserve any query string already present on the configured URL.
    parts = urlsplit(endpoint.authorization_url)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def parse_callback_query(query: str) -> CallbackResult:
    """Extract ``code``/``state``/``error`` from a raw query string."""
    return CallbackResult.from_query(parse_qs(query, keep_blank_values=True))


def parse_callback_input(line: str) -> CallbackResult:
    """Parse the redirected URL (or bare query string) pasted by the user.

    Accepted forms::

        http://localhost:1/?code=abc&state=xyz
        ?code=abc&state=xyz
        code=abc&state=xyz

    Raises:
        InvalidCallbackInputError: If the line is empty or has no query
            parameters.
    """
    text = line.strip()
    if not text:
        raise InvalidCallbackInputError("no redirect URL was entered")

    if "://" in text:
        try:
            parsed = urlparse(text)
        except ValueError as exc:
            raise InvalidCallbackInputError(f"could not parse redirect URL: {exc}") from exc
        query = parsed.query
    elif text.startswith("?"):
        query = text[1:]
    elif "=" in text and " " not in text:
        query = text
    else:
        query = ""

    if not query or "=" not in query:
        raise InvalidCallbackInputError(
            "pasted text is not a redirect URL with query parameters "
            "(copy the full address from the browser after approving access)"
        )
    return parse_callback_query(query)
