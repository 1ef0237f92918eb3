"""Tests for the loopback listener strategy."""

from __future__ import annotations

import socket
import threading
import time
import webbrowser
from typing import Callable
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from codegrant.callback import Deadline, LoopbackAcquirer, open_system_browser
from codegrant.callback.loopback import _CallbackHandler, _CallbackServer
from codegrant.exceptions import (
    AuthorizationCancelledError,
    AuthTimeoutError,
    BrowserOpenError,
    InternalError,
)
from codegrant.models import MISSING_CODE, CallbackResult, Endpoint
from codegrant.urls import build_authorization_url

ENDPOINT = Endpoint(authorization_url="https://idp.example/auth", token_url="https://idp.example/token")


def _url_builder(state: str = "S", seen: list[str] | None = None) -> Callable[[str], str]:
    def build(redirect_uri: str) -> str:
        if seen is not None:
            seen.append(redirect_uri)
        return build_authorization_url(ENDPOINT, "id", ["openid"], redirect_uri, state)

    return build


def _port_of(redirect_uri: str) -> int:
    return int(redirect_uri.split(":")[2].split("/")[0])


def _assert_port_released(port: int) -> None:
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=1.0).close()
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", port))


def _listener_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name.startswith("codegrant-listener")]


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------


class TestLoopbackAcquire:
    def test_captures_code_and_state(self, quiet_output, redirecting_browser) -> None:
        opener = redirecting_browser()
        result, redirect_uri = LoopbackAcquirer(open_browser=opener).acquire(
            _url_builder("state123"), Deadline(10.0)
        )

        assert result.code == "abc"
        assert result.state == "state123"
        assert redirect_uri.startswith("http://127.0.0.1:")
        assert redirect_uri.endswith("/oauth2/callback")
        assert len(opener.urls) == 1
        assert "redirect_uri=http%3A%2F%2F127.0.0.1%3A" in opener.urls[0]

    def test_listener_released_after_success(self, quiet_output, redirecting_browser) -> None:
        _, redirect_uri = LoopbackAcquirer(open_browser=redirecting_browser()).acquire(
            _url_builder(), Deadline(10.0)
        )
        _assert_port_released(_port_of(redirect_uri))
        assert _listener_threads() == []

    def test_provider_error(self, quiet_output, redirecting_browser) -> None:
        opener = redirecting_browser(error="access_denied", error_description="denied")
        result, _ = LoopbackAcquirer(open_browser=opener).acquire(_url_builder(), Deadline(10.0))
        assert result.error == "access_denied"
        assert result.error_description == "denied"
        assert result.code == ""

    def test_missing_code(self, quiet_output, redirecting_browser) -> None:
        opener = redirecting_browser(code="")
        result, _ = LoopbackAcquirer(open_browser=opener).acquire(_url_builder(), Deadline(10.0))
        assert result.error == MISSING_CODE

    def test_forwarded_state_is_not_checked_here(self, quiet_output, redirecting_browser) -> None:
        opener = redirecting_browser(state="WRONG")
        result, _ = LoopbackAcquirer(open_browser=opener).acquire(_url_builder("S"), Deadline(10.0))
        assert result.state == "WRONG"

    def test_timeout_releases_port(self, quiet_output) -> None:
        seen: list[str] = []
        started = time.monotonic()
        with pytest.raises(AuthTimeoutError, match="timed out"):
            LoopbackAcquirer(open_browser=lambda url: None).acquire(
                _url_builder(seen=seen), Deadline(0.3)
            )
        assert time.monotonic() - started < 5.0
        assert len(seen) == 1
        _assert_port_released(_port_of(seen[0]))
        assert _listener_threads() == []

    def test_cancel_stops_wait_promptly(self, quiet_output) -> None:
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(AuthorizationCancelledError):
                LoopbackAcquirer(open_browser=lambda url: None).acquire(
                    _url_builder(), Deadline(30.0, cancel)
                )
        finally:
            timer.cancel()
        assert time.monotonic() - started < 5.0

    def test_already_cancelled(self, quiet_output) -> None:
        cancel = threading.Event()
        cancel.set()
        calls: list[str] = []
        with pytest.raises(AuthorizationCancelledError):
            LoopbackAcquirer(open_browser=calls.append).acquire(_url_builder(), Deadline(30.0, cancel))
        assert calls == []

    def test_browser_open_error(self, quiet_output) -> None:
        def opener(url: str) -> None:
            raise BrowserOpenError("no browser")

        with pytest.raises(BrowserOpenError, match="no browser"):
            LoopbackAcquirer(open_browser=opener).acquire(_url_builder(), Deadline(10.0))

    def test_unexpected_opener_failure_wrapped(self, quiet_output) -> None:
        def opener(url: str) -> None:
            raise RuntimeError("launcher crashed")

        with pytest.raises(BrowserOpenError, match="launcher crashed") as excinfo:
            LoopbackAcquirer(open_browser=opener).acquire(_url_builder(), Deadline(10.0))
        assert isinstance(excinfo.value, InternalError)

    def test_callback_before_opener_failure_wins(self, quiet_output, redirecting_browser) -> None:
        follow = redirecting_browser()

        def opener(url: str) -> None:
            follow(url)
            raise BrowserOpenError("launcher exited non-zero")

        result, _ = LoopbackAcquirer(open_browser=opener).acquire(_url_builder(), Deadline(10.0))
        assert result.code == "abc"

    def test_bind_failure_is_internal_error(self, quiet_output) -> None:
        with patch(
            "codegrant.callback.loopback._CallbackServer",
            side_effect=OSError("address unavailable"),
        ):
            with pytest.raises(InternalError, match="address unavailable"):
                LoopbackAcquirer(open_browser=lambda url: None).acquire(_url_builder(), Deadline(1.0))

    def test_progress_printed_to_stderr(self, capfd, redirecting_browser) -> None:
        LoopbackAcquirer(open_browser=redirecting_browser()).acquire(_url_builder(), Deadline(10.0))
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "https://idp.example/auth?" in captured.err


@pytest.fixture
def idle_connections():
    """Sockets opened to the listener that never send a request."""
    sockets: list[socket.socket] = []
    yield sockets
    for sock in sockets:
        sock.close()


def _preconnect(url: str, sockets: list[socket.socket]) -> str:
    """Open an idle connection to the redirect target, as browsers do; return the target."""
    query = parse_qs(urlparse(url).query)
    redirect_uri = query["redirect_uri"][0]
    sockets.append(socket.create_connection(("127.0.0.1", _port_of(redirect_uri)), timeout=5.0))
    return redirect_uri


class TestIdleConnections:
    def test_timeout_not_delayed(self, quiet_output, idle_connections) -> None:
        started = time.monotonic()
        with pytest.raises(AuthTimeoutError):
            LoopbackAcquirer(open_browser=lambda url: _preconnect(url, idle_connections)).acquire(
                _url_builder(), Deadline(0.5)
            )
        assert time.monotonic() - started < 2.0
        assert _listener_threads() == []

    def test_callback_not_blocked(self, quiet_output, idle_connections) -> None:
        def opener(url: str) -> None:
            redirect_uri = _preconnect(url, idle_connections)
            time.sleep(0.2)
            httpx.get(f"{redirect_uri}?code=abc&state=S", timeout=5.0, trust_env=False)

        started = time.monotonic()
        result, _ = LoopbackAcquirer(open_browser=opener).acquire(_url_builder(), Deadline(3.0))
        assert result.code == "abc"
        assert time.monotonic() - started < 2.0

    def test_idle_connection_closed_on_teardown(self, quiet_output, idle_connections) -> None:
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        try:
            with pytest.raises(AuthorizationCancelledError):
                LoopbackAcquirer(open_browser=lambda url: _preconnect(url, idle_connections)).acquire(
                    _url_builder(), Deadline(30.0, cancel)
                )
        finally:
            timer.cancel()
        sock = idle_connections[0]
        sock.settimeout(2.0)
        assert sock.recv(1) == b""


# ---------------------------------------------------------------------------
# Callback server
# ---------------------------------------------------------------------------


@pytest.fixture
def callback_server():
    delivered: list[CallbackResult] = []
    server = _CallbackServer(delivered.append)
    thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    thread.start()
    yield server, delivered
    server.shutdown()
    server.server_close()
    thread.join()


def _get(server: _CallbackServer, path: str) -> httpx.Response:
    return httpx.get(f"http://127.0.0.1:{server.port}{path}", timeout=5.0, trust_env=False)


class TestCallbackServer:
    def test_binds_loopback_only(self, callback_server) -> None:
        server, _ = callback_server
        assert server.server_address[0] == "127.0.0.1"
        assert server.port > 0

    def test_other_paths_get_404(self, callback_server) -> None:
        server, delivered = callback_server
        assert _get(server, "/favicon.ico").status_code == 404
        assert _get(server, "/?code=abc&state=s").status_code == 404
        assert delivered == []

    def test_success_page(self, callback_server) -> None:
        server, delivered = callback_server
        response = _get(server, "/oauth2/callback?code=abc&state=s")
        assert response.status_code == 200
        assert "close this window" in response.text
        assert response.headers["cache-control"] == "no-store"
        assert delivered == [CallbackResult(code="abc", state="s")]

    def test_first_callback_wins(self, callback_server) -> None:
        server, delivered = callback_server
        assert _get(server, "/oauth2/callback?code=first&state=s").status_code == 200
        second = _get(server, "/oauth2/callback?code=second&state=s")
        assert second.status_code == 409
        assert "Already handled" in second.text
        assert [r.code for r in delivered] == ["first"]

    def test_missing_code_page(self, callback_server) -> None:
        server, delivered = callback_server
        assert _get(server, "/oauth2/callback?state=s").status_code == 400
        assert delivered[0].error == MISSING_CODE

    def test_error_page_escapes_values(self, callback_server) -> None:
        server, delivered = callback_server
        response = _get(
            server,
            "/oauth2/callback?error=access_denied&error_description=%3Cscript%3Ealert(1)%3C%2Fscript%3E",
        )
        assert response.status_code == 200
        assert "access_denied" in response.text
        assert "<script>" not in response.text
        assert "&lt;script&gt;" in response.text
        assert delivered[0].error == "access_denied"

    def test_code_not_logged(self, callback_server, caplog) -> None:
        server, _ = callback_server
        with caplog.at_level("DEBUG", logger="codegrant"):
            _get(server, "/oauth2/callback?code=supersecretcode&state=s")
        assert "supersecretcode" not in caplog.text

    def test_timed_out_request_logged_quietly(self, callback_server, caplog, capfd, monkeypatch) -> None:
        server, delivered = callback_server
        monkeypatch.setattr(_CallbackHandler, "timeout", 0.2)
        with caplog.at_level("DEBUG", logger="codegrant"):
            with socket.create_connection(("127.0.0.1", server.port), timeout=5.0) as sock:
                # The handler times out and closes the connection.
                assert sock.recv(1) == b""
            time.sleep(0.1)

        assert "callback listener: request" in caplog.text
        assert "Traceback" not in capfd.readouterr().err
        assert delivered == []


# ---------------------------------------------------------------------------
# System browser
# ---------------------------------------------------------------------------


class TestOpenSystemBrowser:
    def test_opens(self) -> None:
        with patch("codegrant.callback.loopback.webbrowser.open", return_value=True) as mock_open:
            open_system_browser("https://idp.example/auth")
        mock_open.assert_called_once_with("https://idp.example/auth")

    def test_no_browser_available(self) -> None:
        with patch("codegrant.callback.loopback.webbrowser.open", return_value=False):
            with pytest.raises(BrowserOpenError, match="--manual"):
                open_system_browser("https://idp.example/auth")

    def test_webbrowser_error(self) -> None:
        with patch(
            "codegrant.callback.loopback.webbrowser.open",
            side_effect=webbrowser.Error("boom"),
        ):
            with pytest.raises(BrowserOpenError, match="boom"):
                open_system_browser("https://idp.example/auth")
