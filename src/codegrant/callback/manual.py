"""Manual prompt strategy -- the user pastes the redirected URL back.

For headless terminals (SSH sessions, containers) where no browser can be
opened locally. The authorization URL is printed, the user opens it on any
device, approves access, and copies the address the provider redirected to
back into the terminal.

The read honours the attempt's deadline: when the input stream is backed by
a file descriptor, it is polled with :mod:`selectors` in short slices so the
wait can end on timeout or cancellation without leaving a thread blocked on
the stream.
"""

from __future__ import annotations

import io
import logging
import selectors
import sys
from typing import Optional, TextIO

from codegrant.callback.base import CallbackAcquirer, Deadline, UrlBuilder
from codegrant.exceptions import InvalidCallbackInputError
from codegrant.models import CallbackResult
from codegrant.output import prompt
from codegrant.urls import MANUAL_REDIRECT_URI, parse_callback_input

logger = logging.getLogger(__name__)


class ManualAcquirer(CallbackAcquirer):
    """Print the authorization URL and read the pasted redirect URL.

    Args:
        stream: Where the redirect URL is read from. Defaults to
            :data:`sys.stdin`, resolved at call time.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    @property
    def name(self) -> str:
        return "manual"

    def acquire(self, build_url: UrlBuilder, deadline: Deadline) -> tuple[CallbackResult, str]:
        """Prompt for and parse one pasted redirect URL.

        Raises:
            InvalidCallbackInputError: On EOF or a line that is not a
                redirect URL with query parameters.
            AuthTimeoutError: If nothing is entered in time.
            AuthorizationCancelledError: If the deadline's cancel event is set.
        """
        deadline.check()
        auth_url = build_url(MANUAL_REDIRECT_URI)

        prompt("Open this URL in a browser and approve access:")
        prompt(f"\n{auth_url}\n")
        prompt(
            "Your browser will then fail to load a localhost page. "
            "Copy the full address from its address bar and paste it here:"
        )

        stream = self._stream if self._stream is not None else sys.stdin
        line = _read_line(stream, deadline)
        if not line:
            raise InvalidCallbackInputError("input closed before a redirect URL was entered")
        logger.debug("Read %d characters from manual prompt", len(line))
        return parse_callback_input(line), MANUAL_REDIRECT_URI


def _read_line(stream: TextIO, deadline: Deadline) -> str:
    """Read one line, giving up when *deadline* expires or is cancelled."""
    try:
        fd = stream.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation):
        # In-memory stream: data is either there or never will be.
        return stream.readline()

    selector = selectors.DefaultSelector()
    try:
        selector.register(fd, selectors.EVENT_READ)
    except (OSError, ValueError):
        selector.close()
        # Platforms that cannot select on this stream (stdin on Windows).
        logger.debug("Input stream is not selectable; reading without a deadline")
        return stream.readline()

    with selector:
        while True:
            deadline.check("the pasted redirect URL")
            if selector.select(deadline.slice()):
                return stream.readline()
