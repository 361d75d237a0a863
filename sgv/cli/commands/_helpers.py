"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn, TypeVar

import typer

from sgv.core.errors import ErrorCode
from sgv.core.result import Err, Result
from sgv.output.console import Style
from sgv.services.release.errors import ReleaseError, release_error_code

if TYPE_CHECKING:
    from sgv.cli.context import CLIContext


T = TypeVar("T")


def exit_on_error(result: Result[T, ReleaseError], ctx: CLIContext) -> T:
    """Return the Ok value, or report the error and exit with its code.

    The exit code follows the error kind (see ``release_error_code``).
    """
    if isinstance(result, Err):
        exit_release_error(result.error, ctx)
    return result.value


def exit_release_error(error: ReleaseError, ctx: CLIContext) -> NoReturn:
    ctx.console.error(error.message)
    for line in error.details:
        ctx.console.print(f"  - {line}", Style.DIM)
    if error.hint:
        ctx.console.print(f"hint: {error.hint}", Style.DIM)
    raise typer.Exit(code=int(release_error_code(error.kind)))


def exit_with_code(code: int) -> NoReturn:
    """Exit with given code. Explicit helper for clarity."""
    raise typer.Exit(code=code)


def require_token(ctx: CLIContext) -> None:
    if not ctx.config.api.token:
        ctx.console.error("no API token configured")
        ctx.console.print("hint: set SGV_TOKEN or [api].token in sgv.toml", Style.DIM)
        exit_with_code(int(ErrorCode.ENV_ERROR))
