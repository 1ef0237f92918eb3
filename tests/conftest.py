"""Shared test fixtures for codegrant.

Provides isolated config environments, output state management, a CLI
runner, and a fake OAuth provider: a local token endpoint plus a browser
opener double that follows the authorization URL's redirect. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from codegrant.models import ClientCredentials, Endpoint
from codegrant.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches a reference to sys.stderr at creation time.
    When Typer's CliRunner redirects that stream during a test and the test
    finishes, the cached reference becomes stale ("I/O operation on closed
    file"). Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _restore_package_logger() -> None:
    """Undo ``attach_logging`` calls made by CLI invocations."""
    logger = logging.getLogger("codegrant")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user config, and clears the CODEGRANT_*
    environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("codegrant.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ["CODEGRANT_CLIENT_ID", "CODEGRANT_CLIENT_SECRET"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet, colourless output manager for tests that don't check output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Fake OAuth provider
# ---------------------------------------------------------------------------


class FakeTokenServer:
    """A local token endpoint that records every exchange request.

    ``status`` and ``body`` control the next responses. Requests whose
    ``grant_type`` is not ``authorization_code`` or whose ``code`` is empty
    are answered with ``400 invalid_grant``, like a real provider.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, str]] = []
        self.headers: list[dict[str, str]] = []
        self.status = 200
        self.body: Any = {
            "access_token": "at",
            "refresh_token": "rt",
            "token_type": "Bearer",
            "expires_in": 3600,
        }
        fake = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self) -> None:
                length = int(self.headers.get("Content-Length", "0"))
                form = parse_qs(self.rfile.read(length).decode("utf-8"))
                fields = {key: values[0] for key, values in form.items()}
                fake.requests.append(fields)
                fake.headers.append({k.lower(): v for k, v in self.headers.items()})

                if fields.get("grant_type") != "authorization_code" or not fields.get("code"):
                    status, body = 400, json.dumps({"error": "invalid_grant"})
                elif isinstance(fake.body, str):
                    status, body = fake.status, fake.body
                else:
                    status, body = fake.status, json.dumps(fake.body)

                payload = body.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, format: str, *args: Any) -> None:
                pass

        self._server = HTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self._server.server_address[1]}"

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(
            authorization_url=f"{self.base_url}/auth",
            token_url=f"{self.base_url}/token",
            extra_params={"access_type": "offline", "prompt": "consent"},
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join()


@pytest.fixture
def token_server(monkeypatch: pytest.MonkeyPatch) -> FakeTokenServer:
    """A running :class:`FakeTokenServer`, stopped after the test."""
    for var in ["HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"]:
        monkeypatch.delenv(var, raising=False)
    server = FakeTokenServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def client_credentials() -> ClientCredentials:
    return ClientCredentials(client_id="id", client_secret="secret")


@pytest.fixture
def redirecting_browser() -> Callable[..., Callable[[str], None]]:
    """Factory for browser opener doubles that follow the authorization URL.

    The returned opener reads ``redirect_uri`` and ``state`` from the
    authorization URL and requests the redirect target the way a browser
    would after consent. Keyword arguments replace the query parameters
    sent; ``state=None`` echoes the state from the URL.

    Every URL the opener receives is appended to ``opener.urls``.
    """

    def make(
        state: Optional[str] = None,
        **params: str,
    ) -> Callable[[str], None]:
        urls: list[str] = []

        def opener(url: str) -> None:
            urls.append(url)
            query = parse_qs(urlparse(url).query)
            redirect_uri = query["redirect_uri"][0]
            sent = dict(params) if params else {"code": "abc"}
            sent["state"] = state if state is not None else query["state"][0]
            if sent["state"] == "":
                del sent["state"]
            httpx.get(f"{redirect_uri}?{urlencode(sent)}", timeout=5.0, trust_env=False)

        opener.urls = urls  # type: ignore[attr-defined]
        return opener

    return make


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
