"""Authorization-code grant against the provider's token endpoint.

:func:`exchange_code` performs exactly one request per call. It never
retries: an authorization code is single-use, so replaying it after a
failure is guaranteed to be rejected.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from codegrant.exceptions import TokenExchangeError
from codegrant.models import ClientCredentials, Endpoint, TokenResult

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE_TIMEOUT = 30.0


def exchange_code(
    code: str,
    redirect_uri: str,
    credentials: ClientCredentials,
    endpoint: Endpoint,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> TokenResult:
    """Exchange an authorization code for access and refresh tokens.

    Args:
        code: The authorization code received from the callback.
        redirect_uri: The exact redirect target used in the authorization
            request; providers reject the exchange if it differs.
        credentials: Client id and secret, sent in the form body.
        endpoint: Provider endpoints; only ``token_url`` is used.
        timeout: HTTP timeout in seconds.

    Returns:
        The parsed :class:`~codegrant.models.TokenResult`. Its
        ``refresh_token`` may be ``None``; deciding whether that is an
        error is left to the caller.

    Raises:
        TokenExchangeError: On transport errors, non-2xx statuses, a
            non-JSON body, or a body without ``access_token``.
    """
    data: dict[str, str] = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": credentials.client_id,
    }
    if credentials.client_secret:
        data["client_secret"] = credentials.client_secret

    logger.debug("Exchanging authorization code at %s", endpoint.token_url)
    try:
        response = httpx.post(
            endpoint.token_url,
            data=data,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        token_data: Any = response.json()
    except httpx.HTTPStatusError as exc:
        raise TokenExchangeError(
            f"Token exchange failed with status {exc.response.status_code}: "
            f"{_error_detail(exc.response)}"
        ) from exc
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Token exchange failed: {exc}") from exc
    except ValueError as exc:
        raise TokenExchangeError(f"Token endpoint returned invalid JSON: {exc}") from exc

    if not isinstance(token_data, dict) or not token_data.get("access_token"):
        raise TokenExchangeError("Token response missing 'access_token' field")

    try:
        return TokenResult.from_response(token_data)
    except ValidationError as exc:
        raise TokenExchangeError(f"Token response is malformed: {exc}") from exc


def _error_detail(response: httpx.Response) -> str:
    """Prefer the OAuth ``error``/``error_description`` pair over the raw body."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        detail = str(body["error"])
        if body.get("error_description"):
            detail += f" ({body['error_description']})"
        return detail
    return response.text.strip() or response.reason_phrase
