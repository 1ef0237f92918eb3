"""Loopback listener strategy -- capture the redirect on a local HTTP server.

Flow:
    1. Bind a :class:`~http.server.ThreadingHTTPServer` on ``127.0.0.1`` with port 0,
       letting the kernel pick a free ephemeral port.
    2. Substitute that port into the redirect target and finalize the
       authorization URL.
    3. Serve on a worker thread while a second worker thread opens the
       system browser; the caller's thread waits on a queue for whichever
       reports first.
    4. Tear the server down before returning, on success, failure, timeout
       or cancellation alike. Open connections are shut down so their
       handler threads exit with it.

The listener binds the loopback interface only: the callback carries a
secret authorization code.
"""

from __future__ import annotations

import html
import logging
import queue
import socket
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from codegrant.callback.base import POLL_INTERVAL, CallbackAcquirer, Deadline, UrlBuilder
from codegrant.exceptions import BrowserOpenError, InternalError
from codegrant.models import MISSING_CODE, CallbackResult
from codegrant.output import info, prompt
from codegrant.urls import CALLBACK_PATH, loopback_redirect_uri, parse_callback_query

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
BROWSER_JOIN_TIMEOUT = 2.0
REQUEST_TIMEOUT = 10.0

BrowserOpener = Callable[[str], None]


def open_system_browser(url: str) -> None:
    """Open *url* in the default browser.

    Raises:
        BrowserOpenError: If no browser could be launched.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        raise BrowserOpenError(f"could not open a web browser: {exc}") from exc
    if not opened:
        raise BrowserOpenError(
            "no web browser available; rerun with --manual to paste the redirect URL"
        )


class _CallbackServer(ThreadingHTTPServer):
    """One-shot callback server: only the first callback request is delivered.

    Each connection gets its own daemon thread, so an idle connection (such
    as a browser's speculative preconnect) never holds up the real callback.
    Open connections are tracked so teardown can shut them down instead of
    waiting for their read timeouts.
    """

    daemon_threads = True
    block_on_close = False

    def __init__(self, deliver: Callable[[CallbackResult], None]) -> None:
        super().__init__((LOOPBACK_HOST, 0), _CallbackHandler)
        self.callback_path = CALLBACK_PATH
        self._deliver = deliver
        self._lock = threading.Lock()
        self._delivered = False
        self._connections: set[socket.socket] = set()

    @property
    def port(self) -> int:
        return self.server_address[1]

    def offer(self, result: CallbackResult) -> bool:
        """Deliver *result* unless a callback was already accepted."""
        with self._lock:
            if self._delivered:
                return False
            self._delivered = True
        self._deliver(result)
        return True

    def process_request(self, request: Any, client_address: Any) -> None:
        with self._lock:
            self._connections.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request: Any) -> None:
        with self._lock:
            self._connections.discard(request)
        super().shutdown_request(request)

    def close_connections(self) -> None:
        """Shut down every open connection, waking handlers blocked on a read."""
        with self._lock:
            connections = list(self._connections)
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Already closed by its handler.
                continue


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    timeout = REQUEST_TIMEOUT

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self._send_page(404, "Not found", "This address is not an authorization callback.")
            return

        result = parse_callback_query(parsed.query)
        if not self.server.offer(result):
            logger.debug("Ignoring duplicate callback request")
            self._send_page(
                409,
                "Already handled",
                "This sign-in has already been completed. You can close this window.",
            )
            return

        if result.error == MISSING_CODE:
            self._send_page(400, "Authorization failed", "No authorization code was received.")
        elif result.error:
            detail = result.error
            if result.error_description:
                detail += f" - {result.error_description}"
            self._send_page(200, "Authorization failed", f"The provider reported: {detail}")
        else:
            self._send_page(
                200,
                "Authorization received",
                "You can close this window and return to the terminal.",
            )

    def _send_page(self, status: int, title: str, message: str) -> None:
        body = (
            "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
            f"<title>{html.escape(title)}</title></head>"
            f"<body><h2>{html.escape(title)}</h2><p>{html.escape(message)}</p></body></html>"
        ).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        # Query strings carry the authorization code; log the method line only.
        logger.debug("callback listener: %s", getattr(self, "command", None) or "request")


class LoopbackAcquirer(CallbackAcquirer):
    """Capture the authorization redirect on an ephemeral loopback listener.

    Args:
        open_browser: Side effect that presents the authorization URL to the
            user. Runs on its own thread, concurrently with the wait. A
            failure aborts the attempt unless a callback has already
            arrived.
    """

    def __init__(self, open_browser: Optional[BrowserOpener] = None) -> None:
        self._open_browser = open_browser or open_system_browser

    @property
    def name(self) -> str:
        return "loopback"

    def acquire(self, build_url: UrlBuilder, deadline: Deadline) -> tuple[CallbackResult, str]:
        """Bind the listener, open the browser, and wait for the first callback.

        The listener is closed and its connections shut down when this returns
        or raises. The browser opener thread is only joined for
        ``BROWSER_JOIN_TIMEOUT`` seconds: ``webbrowser.open`` cannot be
        interrupted, so an opener that hangs is left running as a daemon
        thread after the attempt ends.

        Raises:
            InternalError: If the listener cannot bind.
            BrowserOpenError: If the browser opener fails before any callback.
            AuthTimeoutError: If no callback arrives in time.
            AuthorizationCancelledError: If the deadline's cancel event is set.
        """
        deadline.check()
        events: queue.Queue[tuple[str, Any]] = queue.Queue()

        try:
            server = _CallbackServer(lambda result: events.put(("callback", result)))
        except OSError as exc:
            raise InternalError(f"could not start local callback listener: {exc}") from exc

        redirect_uri = loopback_redirect_uri(server.port)
        server_thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": POLL_INTERVAL},
            name=f"codegrant-listener-{server.port}",
            daemon=True,
        )
        browser_thread: Optional[threading.Thread] = None
        try:
            auth_url = build_url(redirect_uri)
            server_thread.start()
            logger.debug("Listening for authorization callback on %s", redirect_uri)

            info("Opening your browser to authorize access...")
            prompt(f"If it does not open, visit this URL:\n\n{auth_url}\n")
            browser_thread = threading.Thread(
                target=self._run_opener,
                args=(auth_url, events),
                name="codegrant-browser",
                daemon=True,
            )
            browser_thread.start()

            result = self._wait(events, deadline)
        finally:
            if server_thread.is_alive():
                server.shutdown()
                server_thread.join()
            server.close_connections()
            server.server_close()
            if browser_thread is not None:
                browser_thread.join(BROWSER_JOIN_TIMEOUT)
            logger.debug("Callback listener on port %d closed", server.port)

        return result, redirect_uri

    def _run_opener(self, url: str, events: queue.Queue[tuple[str, Any]]) -> None:
        try:
            self._open_browser(url)
        except BrowserOpenError as exc:
            events.put(("browser_error", exc))
        except Exception as exc:  # forwarded to the waiting thread
            events.put(("browser_error", BrowserOpenError(f"could not open a web browser: {exc}")))
        else:
            events.put(("browser_opened", None))

    def _wait(self, events: queue.Queue[tuple[str, Any]], deadline: Deadline) -> CallbackResult:
        while True:
            try:
                kind, payload = events.get(timeout=deadline.slice())
            except queue.Empty:
                deadline.check("the browser callback")
                continue

            if kind == "callback":
                return payload
            if kind == "browser_error":
                raise payload
            logger.debug("Browser opened; waiting for callback")
            deadline.check("the browser callback")
