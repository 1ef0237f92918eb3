"""Login command -- run the authorization-code flow and print the refresh token.

The refresh token is the only thing written to stdout, so it can be captured
directly::

    export REFRESH_TOKEN="$(codegrant login -s https://www.googleapis.com/auth/drive.readonly)"

All prompts and progress go to stderr.
"""

from __future__ import annotations

from typing import Optional

import typer

from codegrant.exceptions import BrowserOpenError, CodegrantError
from codegrant.output import debug, error, print_result, success, suggest


def login_command(
    scopes: list[str] = typer.Option(
        ...,
        "--scope",
        "-s",
        help="OAuth scope to request. Repeat for several; spaces also separate scopes.",
    ),
    manual: bool = typer.Option(
        False,
        "--manual",
        help="Paste the redirected URL instead of using a local listener.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        min=0.001,
        help="Seconds to wait for authorization. Defaults to the configured value.",
    ),
    no_force_consent: bool = typer.Option(
        False,
        "--no-force-consent",
        help="Let the provider skip the consent screen.",
    ),
) -> None:
    """Authorize access and print the refresh token.

    Args:
        scopes: Scopes to request. Each value may hold several
            space-separated scopes.
        manual: Use the manual paste strategy.
        timeout: Overall time budget in seconds.
        no_force_consent: Drop ``prompt=consent`` from the request.

    Raises:
        typer.Exit: With the failing error's exit code.

    Example::

        codegrant login -s openid -s email --manual
    """
    from codegrant.config import load_global_config
    from codegrant.flow import AuthorizationFlow
    from codegrant.models import AuthorizeOptions

    requested = [part for value in scopes for part in value.split()]

    try:
        config = load_global_config()
        options = AuthorizeOptions(
            scopes=requested,
            manual=manual,
            timeout=timeout if timeout is not None else config.default_timeout,
            force_consent=not no_force_consent,
        )
        flow = AuthorizationFlow(endpoint=config.endpoint)
        debug(f"Requesting scopes: {' '.join(options.scopes)}")
        refresh_token = flow.authorize(options)
    except CodegrantError as exc:
        error(str(exc))
        if isinstance(exc, BrowserOpenError):
            suggest("Retry with --manual to paste the redirect URL instead.")
        raise typer.Exit(code=exc.exit_code) from None

    success("Authorization complete.")
    print_result({"refresh_token": refresh_token}, primary="refresh_token")
