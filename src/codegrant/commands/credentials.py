"""Credentials commands -- manage the stored OAuth client secrets.

Provides the ``codegrant credentials`` sub-command group::

    codegrant credentials set ~/Downloads/client_secret.json
    codegrant credentials show
    codegrant credentials clear

The stored file is only the lowest-precedence source; ``CODEGRANT_CLIENT_ID``
and the ``client_id_source`` config key both override it.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from codegrant.exceptions import CodegrantError
from codegrant.output import error, info, print_result, success, suggest, warning


credentials_app = typer.Typer(no_args_is_help=True)


@credentials_app.command("set")
def credentials_set(
    path: Path = typer.Argument(help="Client-secrets JSON file downloaded from the provider."),
) -> None:
    """Validate a client-secrets file and store it in the config directory.

    Raises:
        typer.Exit: With the error's exit code if the file is invalid.
    """
    from codegrant.config import save_client_credentials

    try:
        dest = save_client_credentials(path.expanduser())
    except CodegrantError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f"Client credentials stored at {dest}")
    suggest("Log in: codegrant login --scope <SCOPE>")


@credentials_app.command("show")
def credentials_show() -> None:
    """Show the resolved client id and where it comes from.

    The client secret is never printed.
    """
    from codegrant.config import (
        ENV_CLIENT_ID,
        get_credentials_path,
        load_global_config,
        read_client_credentials,
    )

    try:
        creds = read_client_credentials()
        if os.environ.get(ENV_CLIENT_ID, "").strip():
            source = f"env:{ENV_CLIENT_ID}"
        elif load_global_config().client_id_source:
            source = "config.json"
        else:
            source = str(get_credentials_path())
    except CodegrantError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    print_result(
        {
            "client_id": creds.client_id,
            "client_secret_set": bool(creds.client_secret),
            "source": source,
        },
        primary="client_id",
    )
    info(f"Source: {source}")
    if not creds.client_secret:
        warning("No client secret configured; the provider must accept public clients.")


@credentials_app.command("clear")
def credentials_clear() -> None:
    """Remove the stored client-secrets file."""
    from codegrant.config import clear_client_credentials

    if clear_client_credentials():
        success("Stored client credentials removed.")
    else:
        info("No stored client credentials to remove.")
