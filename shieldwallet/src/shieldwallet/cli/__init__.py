"""
Shield Wallet CLI package.

Commands are organized into submodules and registered via ``@app.command()``
decorators that reference the ``app`` Typer instance defined here.
"""

from __future__ import annotations

import typer

app = typer.Typer(
    name="shield-wallet",
    help="Custodial shielded wallet synchronization",
    add_completion=False,
)


def main() -> None:
    """Entry point for the ``shield-wallet`` console script."""
    app()


# ---------------------------------------------------------------------------
# Import submodules to register their ``@app.command()`` decorated functions.
# These imports MUST come after ``app`` is defined above.
# ---------------------------------------------------------------------------
from shieldwallet.cli import (  # noqa: E402, F401
    history_cmd,
    send,
    wallet,
)

if __name__ == "__main__":
    main()
