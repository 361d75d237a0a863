from __future__ import annotations

import os
from pathlib import Path

import typer

from sgv import __version__
from sgv.cli.commands.process_cmd import process_app
from sgv.cli.commands.release_cmd import release_app
from sgv.cli.commands.zip_cmd import zip_cmd
from sgv.cli.context import PROJECT_ENV_VAR
from sgv.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command("zip")(zip_cmd)

# Sub-apps
app.add_typer(release_app, name="release", help="One-shot release pipeline.")
app.add_typer(process_app, name="process", help="Step-by-step versioning process.")


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    project: Path | None = typer.Option(
        None,
        "--project",
        help="Project root (default: current directory)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if project is not None:
        try:
            root = project.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --project: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not root.is_dir():
            typer.echo(f"error: --project '{root}' is not a directory", err=True)
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

        os.environ[PROJECT_ENV_VAR] = str(root)


def main() -> None:
    app()
