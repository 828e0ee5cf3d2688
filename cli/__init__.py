"""Command line client for the tankwatch service.

The Typer application is ``cli.app:app``. It is not imported here, so
``cli.app`` stays the module that tests patch.
"""

__all__: list[str] = []
