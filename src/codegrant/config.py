"""Configuration management with XDG paths, atomic writes, and credential lookup.

This module handles all persistent configuration for codegrant:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.codegrant/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~codegrant.models.GlobalConfig`
  JSON file storing the provider endpoint override and default timeout.
* **Client credentials** -- :func:`read_client_credentials` is the default
  Credential Source used by :class:`~codegrant.flow.AuthorizationFlow`. It
  resolves the OAuth client id/secret from environment variables, from
  credential sources named in the global config, or from a client-secrets
  JSON file in the config directory.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) so that a crash never leaves a half-written file.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from codegrant.exceptions import ConfigError, CredentialsUnavailableError
from codegrant.models import ClientCredentials, Endpoint, GlobalConfig

_APP_NAME = "codegrant"
_CONFIG_FILENAME = "config.json"
_CREDENTIALS_FILENAME = "credentials.json"

ENV_CLIENT_ID = "CODEGRANT_CLIENT_ID"
ENV_CLIENT_SECRET = "CODEGRANT_CLIENT_SECRET"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/codegrant/`` (default ``~/.config/codegrant/``).
    On macOS/Windows: ``~/.codegrant/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/codegrant/`` (default ``~/.local/share/codegrant/``).
    On macOS/Windows: ``~/.codegrant/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_credentials_path() -> Path:
    """Return the path of the stored client-secrets file (may not exist)."""
    return get_config_dir() / _CREDENTIALS_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given, permissions are applied to the temp file before
    any content is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~codegrant.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def load_endpoint() -> Endpoint:
    """Return the configured provider endpoint, defaulting to Google's."""
    return load_global_config().endpoint or Endpoint.google()


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        file_path = source[5:]
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigError(f"Unknown credential source format: {source}")


# --- Client credentials ---


def parse_client_secrets(data: Any) -> ClientCredentials:
    """Extract client credentials from a client-secrets JSON document.

    Accepts the layout downloaded from Google Cloud Console
    (``{"installed": {...}}`` or ``{"web": {...}}``) as well as a flat
    ``{"client_id": ..., "client_secret": ...}`` object.

    Raises:
        ConfigError: If no ``client_id`` can be found.
    """
    if not isinstance(data, dict):
        raise ConfigError("Client secrets must be a JSON object")
    for key in ("installed", "web"):
        if isinstance(data.get(key), dict):
            data = data[key]
            break
    client_id = data.get("client_id")
    if not isinstance(client_id, str) or not client_id.strip():
        raise ConfigError("Client secrets are missing 'client_id'")
    secret = data.get("client_secret") or ""
    if not isinstance(secret, str):
        raise ConfigError("'client_secret' must be a string")
    return ClientCredentials(client_id=client_id.strip(), client_secret=secret.strip())


def load_client_secrets_file(path: Path) -> ClientCredentials:
    """Read and parse a client-secrets JSON file.

    Raises:
        ConfigError: If the file is missing, unreadable, or malformed.
    """
    if not path.is_file():
        raise ConfigError(f"Client secrets file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Invalid client secrets file {path}: {exc}") from exc
    return parse_client_secrets(data)


def read_client_credentials() -> ClientCredentials:
    """Resolve the OAuth client credentials (the default Credential Source).

    Precedence (high to low):
        1. ``CODEGRANT_CLIENT_ID`` / ``CODEGRANT_CLIENT_SECRET``
        2. ``client_id_source`` / ``client_secret_source`` in ``config.json``
        3. ``credentials.json`` in the config directory

    Raises:
        CredentialsUnavailableError: If no source yields a client id, or a
            configured source cannot be read.
    """
    env_id = os.environ.get(ENV_CLIENT_ID, "").strip()
    if env_id:
        return ClientCredentials(
            client_id=env_id,
            client_secret=os.environ.get(ENV_CLIENT_SECRET, "").strip(),
        )

    try:
        config = load_global_config()
        if config.client_id_source:
            secret = ""
            if config.client_secret_source:
                secret = resolve_credential(config.client_secret_source)
            return ClientCredentials(
                client_id=resolve_credential(config.client_id_source),
                client_secret=secret,
            )

        path = get_credentials_path()
        if not path.is_file():
            raise CredentialsUnavailableError(
                f"No OAuth client credentials found. Set {ENV_CLIENT_ID} or run "
                f"'codegrant credentials set <client_secret.json>' (expected {path})"
            )
        return load_client_secrets_file(path)
    except (ConfigError, ValueError) as exc:
        raise CredentialsUnavailableError(f"OAuth client credentials unavailable: {exc}") from exc


def save_client_credentials(source: Path) -> Path:
    """Validate a client-secrets file and store a copy in the config directory.

    The copy is written atomically with ``0o600`` permissions.

    Returns:
        The path of the stored copy.

    Raises:
        ConfigError: If *source* is not a valid client-secrets file.
    """
    load_client_secrets_file(source)
    text = source.read_text(encoding="utf-8")
    dest = get_credentials_path()
    _atomic_write(dest, text if text.endswith("\n") else text + "\n", mode=0o600)
    return dest


def clear_client_credentials() -> bool:
    """Delete the stored client-secrets file.

    Returns:
        ``True`` if a file was removed, ``False`` if none existed.
    """
    path = get_credentials_path()
    if path.is_file():
        path.unlink()
        return True
    return False
