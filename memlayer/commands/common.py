from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import typer
from rich import print
from rich.markup import escape

from ..errors import MemlayerError

EXIT_ERROR = 1
EXIT_CONFLICTS = 2


@dataclass
class CliState:
    json_out: bool = False
    project: str | None = None
    db_path: str | None = None


def emit_json(payload: Any) -> None:
    # Plain echo: rich would read "[...]" in the payload as markup.
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def fail(message: str, *, json_out: bool, code: int = EXIT_ERROR) -> None:
    if json_out:
        emit_json({"error": message})
    else:
        print(f"[red]Error: {escape(message)}[/red]")
    raise typer.Exit(code=code)


@contextmanager
def cli_errors(json_out: bool) -> Iterator[None]:
    """Turn library errors into an error message and exit code 1."""

    try:
        yield
    except MemlayerError as exc:
        fail(str(exc), json_out=json_out)
