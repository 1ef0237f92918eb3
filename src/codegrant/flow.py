"""Authorization coordinator -- one OAuth authorization-code attempt.

:class:`AuthorizationFlow` wires the collaborators together::

    credential source -> state generator -> URL builder
        -> callback acquirer (loopback or manual)
        -> state validation -> token exchanger -> refresh token

Every collaborator is injectable so the whole flow can run against a fake
provider. Each call to :meth:`AuthorizationFlow.authorize` is an independent
attempt with its own state token, deadline and (for the loopback strategy)
listener port; nothing is shared between attempts.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional, TextIO

from codegrant.callback import CallbackAcquirer, Deadline, LoopbackAcquirer, ManualAcquirer
from codegrant.callback.loopback import BrowserOpener
from codegrant.config import load_endpoint, read_client_credentials
from codegrant.exceptions import (
    AuthorizationDeniedError,
    CodegrantError,
    CredentialsUnavailableError,
    InternalError,
    InvalidRequestError,
    MissingCodeError,
    RefreshTokenMissingError,
    StateMismatchError,
)
from codegrant.exchange import DEFAULT_EXCHANGE_TIMEOUT, exchange_code
from codegrant.models import (
    MISSING_CODE,
    AuthorizeOptions,
    CallbackResult,
    ClientCredentials,
    Endpoint,
    TokenResult,
)
from codegrant.state import generate_state, state_matches
from codegrant.urls import build_authorization_url

logger = logging.getLogger(__name__)

CredentialSource = Callable[[], ClientCredentials]
StateGenerator = Callable[[], str]
Exchanger = Callable[..., TokenResult]


class AuthorizationFlow:
    """Run authorization-code attempts against one provider.

    Args:
        credential_source: Returns the OAuth client credentials. Called once
            per attempt, after the request has been validated.
        state_generator: Returns a fresh anti-forgery token.
        endpoint: Provider endpoints. Defaults to the configured endpoint,
            or Google's when none is configured.
        open_browser: Browser opener for the loopback strategy.
        input_stream: Stream the manual strategy reads from.
        exchanger: Performs the token request; see
            :func:`~codegrant.exchange.exchange_code`.
    """

    def __init__(
        self,
        credential_source: CredentialSource = read_client_credentials,
        state_generator: StateGenerator = generate_state,
        endpoint: Optional[Endpoint] = None,
        open_browser: Optional[BrowserOpener] = None,
        input_stream: Optional[TextIO] = None,
        exchanger: Exchanger = exchange_code,
    ) -> None:
        self._credential_source = credential_source
        self._state_generator = state_generator
        self._endpoint = endpoint
        self._open_browser = open_browser
        self._input_stream = input_stream
        self._exchanger = exchanger

    @property
    def endpoint(self) -> Endpoint:
        if self._endpoint is None:
            self._endpoint = load_endpoint()
        return self._endpoint

    def acquirer_for(self, options: AuthorizeOptions) -> CallbackAcquirer:
        """Pick the single callback strategy for *options*."""
        if options.manual:
            return ManualAcquirer(stream=self._input_stream)
        return LoopbackAcquirer(open_browser=self._open_browser)

    def authorize(
        self,
        options: AuthorizeOptions,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """Run one attempt and return the refresh token.

        Args:
            options: Scopes, strategy, and time budget for this attempt.
            cancel: Optional event; setting it aborts a pending wait.

        Returns:
            The refresh token issued by the provider.

        Raises:
            InvalidRequestError: If no scopes were requested.
            CredentialsUnavailableError: If the client credentials cannot be read.
            InternalError: If no state token can be generated, or the
                callback listener cannot start.
            BrowserOpenError: If the browser cannot be opened (loopback).
            AuthorizationDeniedError: If the provider redirected with an error.
            MissingCodeError: If the redirect carried neither code nor error.
            InvalidCallbackInputError: If pasted input is unusable (manual).
            StateMismatchError: If the returned state is not this attempt's.
            AuthTimeoutError: If the deadline passes first.
            AuthorizationCancelledError: If *cancel* is set while waiting.
            TokenExchangeError: If the token endpoint rejects the code.
            RefreshTokenMissingError: If no refresh token was issued.
        """
        if not options.scopes:
            raise InvalidRequestError("missing scopes")

        deadline = Deadline(options.timeout, cancel)
        credentials = self._load_credentials()
        state = self._new_state()
        endpoint = self.endpoint

        def build_url(redirect_uri: str) -> str:
            return build_authorization_url(
                endpoint,
                credentials.client_id,
                options.scopes,
                redirect_uri,
                state,
                force_consent=options.force_consent,
            )

        acquirer = self.acquirer_for(options)
        logger.debug(
            "Starting %s authorization for %d scope(s), timeout %gs",
            acquirer.name,
            len(options.scopes),
            options.timeout,
        )
        result, redirect_uri = acquirer.acquire(build_url, deadline)
        self._check_callback(result, state)

        # The exchange shares the attempt's budget.
        deadline.check("the token exchange")
        exchange_timeout = min(DEFAULT_EXCHANGE_TIMEOUT, deadline.remaining())
        tokens = self._exchanger(
            result.code,
            redirect_uri,
            credentials,
            endpoint,
            timeout=exchange_timeout,
        )
        if not tokens.refresh_token:
            raise RefreshTokenMissingError(
                "no refresh token returned; revoke the app's access and try again "
                "with consent forced"
            )
        logger.debug("Authorization complete")
        return tokens.refresh_token

    def _load_credentials(self) -> ClientCredentials:
        try:
            return self._credential_source()
        except CredentialsUnavailableError:
            raise
        except (CodegrantError, OSError, ValueError) as exc:
            raise CredentialsUnavailableError(f"client credentials unavailable: {exc}") from exc

    def _new_state(self) -> str:
        try:
            state = self._state_generator()
        except (OSError, NotImplementedError) as exc:
            raise InternalError(f"could not generate state token: {exc}") from exc
        if not state:
            raise InternalError("could not generate state token: empty value")
        return state

    @staticmethod
    def _check_callback(result: CallbackResult, expected_state: str) -> None:
        if result.error == MISSING_CODE:
            raise MissingCodeError(MISSING_CODE)
        if result.error:
            logger.debug("Provider returned error %r", result.error)
            raise AuthorizationDeniedError(result.error, result.error_description or None)
        if not state_matches(expected_state, result.state):
            raise StateMismatchError("state mismatch")


def authorize(
    scopes: Iterable[str],
    manual: bool = False,
    timeout: float = 120.0,
    force_consent: bool = True,
    cancel: Optional[threading.Event] = None,
    **deps,
) -> str:
    """Convenience wrapper: build options and run one :class:`AuthorizationFlow` attempt.

    Extra keyword arguments are passed to :class:`AuthorizationFlow`.
    """
    options = AuthorizeOptions(
        scopes=list(scopes),
        manual=manual,
        timeout=timeout,
        force_consent=force_consent,
    )
    return AuthorizationFlow(**deps).authorize(options, cancel=cancel)
