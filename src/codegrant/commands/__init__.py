"""Built-in CLI sub-commands for codegrant.

* :mod:`~codegrant.commands.login` -- run the authorization flow and print
  the refresh token.
* :mod:`~codegrant.commands.credentials` -- store, inspect, and remove the
  OAuth client secrets.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``credentials``) or a plain callback function
registered directly on the root app (for single commands like ``login``).
"""
