"""Pydantic models shared across the codegrant package.

Configuration models:
    :class:`Endpoint`, :class:`ClientCredentials`, :class:`GlobalConfig`.

Per-attempt models:
    :class:`AuthorizeOptions`, :class:`CallbackResult`, :class:`TokenResult`.

Every per-attempt instance is created fresh for one
:meth:`~codegrant.flow.AuthorizationFlow.authorize` call and discarded at its
end.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

GOOGLE_AUTHORIZATION_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

MISSING_CODE = "missing code"
"""Error value recorded when a callback carries neither ``code`` nor ``error``."""


# ---------------------------------------------------------------------------
# Configuration models
# ---------------------------------------------------------------------------


class Endpoint(BaseModel):
    """OAuth provider endpoints.

    Injected into :class:`~codegrant.flow.AuthorizationFlow` so that the whole
    flow can run against a fake provider in tests.
    """

    authorization_url: str
    token_url: str
    extra_params: dict[str, str] = Field(
        default_factory=dict,
        description="Additional query parameters appended to the authorization URL",
    )

    @classmethod
    def google(cls) -> "Endpoint":
        """Google's endpoints, requesting offline access with forced consent."""
        return cls(
            authorization_url=GOOGLE_AUTHORIZATION_URL,
            token_url=GOOGLE_TOKEN_URL,
            extra_params={
                "access_type": "offline",
                "prompt": "consent",
                "include_granted_scopes": "true",
            },
        )


class ClientCredentials(BaseModel):
    """The registered OAuth client identifier and secret."""

    client_id: str = Field(min_length=1)
    client_secret: str = ""

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r}, client_secret='***')"

    __str__ = __repr__


class GlobalConfig(BaseModel):
    """Top-level configuration stored in ``config.json``.

    Loaded by :func:`~codegrant.config.load_global_config`. Every field has a
    default so a missing file behaves like an empty one.
    """

    endpoint: Optional[Endpoint] = None
    default_timeout: float = Field(default=120.0, gt=0)
    client_id_source: Optional[str] = Field(
        default=None,
        description="Credential source for the client id (env:VAR or file:/path)",
    )
    client_secret_source: Optional[str] = Field(
        default=None,
        description="Credential source for the client secret (env:VAR or file:/path)",
    )


# ---------------------------------------------------------------------------
# Per-attempt models
# ---------------------------------------------------------------------------


class AuthorizeOptions(BaseModel):
    """One authorization request.

    Scopes are kept in the order given with duplicates removed. Emptiness is
    checked by the coordinator rather than here, so that the failure is
    reported as :class:`~codegrant.exceptions.InvalidRequestError`.
    """

    scopes: list[str] = Field(default_factory=list)
    manual: bool = False
    timeout: float = Field(default=120.0, gt=0, description="Seconds")
    force_consent: bool = True

    @field_validator("scopes")
    @classmethod
    def dedupe_scopes(cls, value: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for scope in value:
            scope = scope.strip()
            if scope:
                seen.setdefault(scope, None)
        return list(seen)


class CallbackResult(BaseModel):
    """The values delivered by the provider's redirect.

    Exactly one of ``code`` and ``error`` is non-empty.
    """

    code: str = ""
    state: str = ""
    error: str = ""
    error_description: str = ""

    @model_validator(mode="after")
    def check_code_xor_error(self) -> "CallbackResult":
        if bool(self.code) == bool(self.error):
            raise ValueError("exactly one of 'code' and 'error' must be set")
        return self

    @classmethod
    def from_query(cls, params: Mapping[str, list[str]]) -> "CallbackResult":
        """Build a result from parsed query parameters.

        Used by both acquisition strategies. An ``error`` parameter wins over
        ``code``; when neither is present the result records
        :data:`MISSING_CODE`.

        Args:
            params: Output of :func:`urllib.parse.parse_qs`.
        """

        def first(name: str) -> str:
            values = params.get(name) or [""]
            return values[0].strip()

        state = first("state")
        error = first("error")
        if error:
            return cls(
                state=state,
                error=error,
                error_description=first("error_description"),
            )
        code = first("code")
        if code:
            return cls(code=code, state=state)
        return cls(state=state, error=MISSING_CODE)


class TokenResult(BaseModel):
    """Token endpoint response for an authorization-code grant."""

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: Optional[str] = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenResult":
        """Validate a decoded JSON token response, ignoring unknown fields."""
        known = {name: data[name] for name in cls.model_fields if name in data}
        return cls.model_validate(known)
