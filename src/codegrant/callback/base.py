"""Abstract base class for callback acquisition strategies.

This module defines the two types every strategy works with:

- :class:`Deadline` -- the single time bound (plus optional cancel signal)
  threaded through one authorization attempt.
- :class:`CallbackAcquirer` -- the abstract base class that each way of
  obtaining the provider's redirect must extend.

A strategy receives a ``build_url`` callable rather than a finished URL:
the loopback listener only knows its redirect target after it has bound a
port, and the authorization URL must embed that exact target.

See Also:
    :mod:`codegrant.callback.loopback` and :mod:`codegrant.callback.manual`
    for the two concrete strategies.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from codegrant.exceptions import AuthorizationCancelledError, AuthTimeoutError
from codegrant.models import CallbackResult

POLL_INTERVAL = 0.1
"""Seconds between deadline/cancel checks while a strategy is blocked."""

UrlBuilder = Callable[[str], str]
"""Maps a redirect target to the finalized authorization URL."""


class Deadline:
    """Monotonic expiry plus an optional cancel signal for one attempt.

    Args:
        timeout: Seconds from now until the attempt expires.
        cancel: Event that, once set, aborts any wait on this deadline.
    """

    def __init__(self, timeout: float, cancel: Optional[threading.Event] = None) -> None:
        self._timeout = timeout
        self._expires_at = time.monotonic() + timeout
        self._cancel = cancel

    @property
    def timeout(self) -> float:
        """The total budget this deadline was created with."""
        return self._timeout

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def check(self, waiting_for: str = "authorization") -> None:
        """Raise if the attempt has been cancelled or has run out of time.

        Raises:
            AuthorizationCancelledError: If the cancel event is set.
            AuthTimeoutError: If the deadline has passed.
        """
        if self.cancelled():
            raise AuthorizationCancelledError("authorization cancelled")
        if self.expired():
            raise AuthTimeoutError(
                f"timed out after {self._timeout:g}s waiting for {waiting_for}"
            )

    def slice(self, interval: float = POLL_INTERVAL) -> float:
        """Length of the next blocking wait: at most *interval*, at most what remains."""
        return min(interval, self.remaining())


class CallbackAcquirer(ABC):
    """Abstract base class for callback acquisition strategies.

    Each strategy produces exactly one :class:`~codegrant.models.CallbackResult`
    per call, or raises. Strategies never validate the state token or talk to
    the token endpoint; that is the coordinator's job.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in log messages (``"loopback"``, ``"manual"``)."""
        ...

    @abstractmethod
    def acquire(self, build_url: UrlBuilder, deadline: Deadline) -> tuple[CallbackResult, str]:
        """Obtain the provider's redirect for one attempt.

        Args:
            build_url: Returns the authorization URL for a redirect target.
            deadline: Bounds the whole wait.

        Returns:
            A tuple of ``(callback_result, redirect_uri)``, where
            ``redirect_uri`` is the exact target embedded in the URL and must
            be replayed to the token endpoint.

        Raises:
            AuthTimeoutError: If the deadline passes first.
            AuthorizationCancelledError: If the deadline's cancel event is set.
        """
        ...
