from __future__ import annotations

import logging
from pathlib import Path

import typer

from . import __version__
from .commands.common import CliState, emit_json
from .commands.maintenance_cmds import hybrid_eval_cmd, init_db_cmd, reindex_cmd
from .commands.memory_cmds import (
    add_cmd,
    delete_cmd,
    get_cmd,
    list_cmd,
    search_cmd,
    update_cmd,
)
from .config import load_config
from .git_info import detect_project
from .store import MemoryStore

app = typer.Typer(help="memlayer: project-scoped semantic and keyword memory")
db_app = typer.Typer(help="Database maintenance")
app.add_typer(db_app, name="db")


def _store(db_path: str | None) -> MemoryStore:
    cfg = load_config()
    return MemoryStore(db_path or cfg.database_path, config=cfg)


def _resolve_project(cwd: str, project: str | None) -> str:
    return detect_project(project, cwd=cwd)


def _state(ctx: typer.Context) -> CliState:
    if isinstance(ctx.obj, CliState):
        return ctx.obj
    return CliState()


@app.callback()
def main_options(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Emit JSON instead of text"),
    project: str = typer.Option(
        None, "--project", "-p", help="Project identifier (defaults to git remote or repo name)"
    ),
    db_path: str = typer.Option(None, "--db-path", help="Path to SQLite database"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CliState(json_out=json_out, project=project, db_path=db_path)


@app.command()
def add(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Memory content"),
    metadata: str = typer.Option(None, "--metadata", "-m", help="Opaque metadata string"),
    force: bool = typer.Option(False, "--force", help="Store even if similar memories exist"),
) -> None:
    """Add a memory (exit code 2 when similar memories already exist)."""
    add_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        state=_state(ctx),
        text=text,
        metadata=metadata,
        force=force,
    )


@app.command()
def search(
    ctx: typer.Context,
    query: str,
    limit: int = typer.Option(5, "--limit", "-l", help="Max results"),
    recency: float = typer.Option(
        None, "--recency", help="Recency weight between 0.0 and 1.0 (defaults to config)"
    ),
    hybrid: bool = typer.Option(False, "--hybrid", help="Fuse semantic and keyword rankings"),
) -> None:
    """Search memories by meaning, or by meaning and keywords with --hybrid."""
    search_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        state=_state(ctx),
        query=query,
        limit=limit,
        recency=recency,
        hybrid=hybrid,
    )


@app.command()
def get(ctx: typer.Context, memory_id: str) -> None:
    """Show a memory by id."""
    get_cmd(store_from_path=_store, state=_state(ctx), memory_id=memory_id)


@app.command("list")
def list_memories(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-l", help="Max results"),
) -> None:
    """List the newest memories in the project."""
    list_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        state=_state(ctx),
        limit=limit,
    )


@app.command()
def update(ctx: typer.Context, memory_id: str, text: str) -> None:
    """Replace a memory's content and re-embed it."""
    update_cmd(store_from_path=_store, state=_state(ctx), memory_id=memory_id, text=text)


@app.command()
def delete(ctx: typer.Context, memory_id: str) -> None:
    """Delete a memory by id."""
    delete_cmd(store_from_path=_store, state=_state(ctx), memory_id=memory_id)


@app.command()
def version(ctx: typer.Context) -> None:
    """Print the memlayer version."""
    if _state(ctx).json_out:
        emit_json({"version": __version__})
    else:
        typer.echo(f"memlayer {__version__}")


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_db_cmd(store_from_path=_store, state=_state(ctx))


@db_app.command("reindex")
def db_reindex(ctx: typer.Context) -> None:
    """Rebuild the keyword index from stored memories."""
    reindex_cmd(store_from_path=_store, state=_state(ctx))


@app.command("hybrid-eval")
def hybrid_eval(
    ctx: typer.Context,
    judged_queries_path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        file_okay=True,
        readable=True,
        resolve_path=True,
        help="Path to judged query JSONL file",
    ),
    limit: int = typer.Option(5, "--limit", "-l", help="Top-k results to evaluate"),
    json_out: Path | None = typer.Option(None, "--json-out", help="Optional JSON output file"),
) -> None:
    """Evaluate semantic vs hybrid retrieval precision/recall."""
    hybrid_eval_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        state=_state(ctx),
        judged_queries_path=judged_queries_path,
        limit=limit,
        json_out=json_out,
    )
