import logging

import typer

from ... import __version__
from .commands.bot import register_bot_commands
from .commands.utils import raise_exit as _raise_exit
from .commands.utils import require_bot_config as _require_bot_config

logger = logging.getLogger("slashbot.cli")

app = typer.Typer(add_completion=False)
commands_app = typer.Typer(add_completion=False)


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"slashbot {__version__}")
    raise typer.Exit(code=0)


@app.callback()
def _root(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    return


def main() -> None:
    """Entrypoint for CLI execution."""
    app()


app.add_typer(commands_app, name="commands")
register_bot_commands(
    app,
    commands_app,
    raise_exit=_raise_exit,
    require_bot_config=_require_bot_config,
)
