from __future__ import annotations

import os

import typer
from rich import print
from rich.markup import escape

from ..store.types import Added, Memory, SearchResult
from .common import EXIT_CONFLICTS, CliState, cli_errors, emit_json, fail


def _preview(text: str, limit: int = 120) -> str:
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return escape(flat)
    return escape(flat[: limit - 1]) + "…"


def add_cmd(
    *,
    store_from_path,
    resolve_project,
    state: CliState,
    text: str,
    metadata: str | None,
    force: bool,
) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            project = resolve_project(os.getcwd(), state.project)
            outcome = store.add(project, text, metadata=metadata, force=force)
        finally:
            store.close()

    if isinstance(outcome, Added):
        if state.json_out:
            emit_json({"status": "added", "id": outcome.id, "project": project})
        else:
            print(f"Added memory: {outcome.id}")
        return

    if state.json_out:
        emit_json(
            {
                "status": "conflicts",
                "proposed": outcome.proposed,
                "conflicts": [
                    {"id": item.id, "content": item.content, "similarity": item.similarity}
                    for item in outcome.conflicts
                ],
            }
        )
    else:
        print(f"[yellow]Similar memories already exist in {escape(project)}:[/yellow]")
        for item in outcome.conflicts:
            print(f"- {item.id} ({item.similarity:.2f}) {_preview(item.content)}")
        print("Use --force to add anyway.")
    raise typer.Exit(code=EXIT_CONFLICTS)


def search_cmd(
    *,
    store_from_path,
    resolve_project,
    state: CliState,
    query: str,
    limit: int,
    recency: float | None,
    hybrid: bool,
) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            project = resolve_project(os.getcwd(), state.project)
            weight = store.config.recency_weight if recency is None else recency
            if hybrid:
                results = store.search_hybrid(project, query, limit, recency_weight=weight)
            else:
                results = store.search(project, query, limit, recency_weight=weight)
        finally:
            store.close()

    if state.json_out:
        emit_json({"project": project, "results": [item.to_dict() for item in results]})
        return
    if not results:
        print("No matching memories.")
        return
    for item in results:
        print(f"{item.id} [{_format_score(item)}] {_preview(item.content)}")


def _format_score(item: SearchResult) -> str:
    return "-" if item.score is None else f"{item.score:.3f}"


def get_cmd(*, store_from_path, state: CliState, memory_id: str) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            memory = store.get(memory_id)
        finally:
            store.close()
    if memory is None:
        fail(f"Memory not found: {memory_id}", json_out=state.json_out)
        return
    if state.json_out:
        emit_json(memory.to_dict())
        return
    _print_memory(memory)


def _print_memory(memory: Memory) -> None:
    print(f"[bold]{memory.id}[/bold]")
    print(f"Project: {escape(memory.project_id)}")
    print(f"Created: {memory.created_at}")
    print(f"Updated: {memory.updated_at}")
    if memory.metadata:
        print(f"Metadata: {escape(memory.metadata)}")
    print("")
    print(escape(memory.content))


def list_cmd(*, store_from_path, resolve_project, state: CliState, limit: int) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            project = resolve_project(os.getcwd(), state.project)
            memories = store.list(project, limit)
        finally:
            store.close()

    if state.json_out:
        emit_json({"project": project, "memories": [item.to_dict() for item in memories]})
        return
    if not memories:
        print(f"No memories in {escape(project)}.")
        return
    for memory in memories:
        print(f"{memory.id} {memory.created_at} {_preview(memory.content)}")


def update_cmd(*, store_from_path, state: CliState, memory_id: str, text: str) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            store.update(memory_id, text)
        finally:
            store.close()
    if state.json_out:
        emit_json({"status": "updated", "id": memory_id})
    else:
        print(f"Updated memory: {memory_id}")


def delete_cmd(*, store_from_path, state: CliState, memory_id: str) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            deleted = store.delete(memory_id)
        finally:
            store.close()
    if not deleted:
        fail(f"Memory not found: {memory_id}", json_out=state.json_out)
        return
    if state.json_out:
        emit_json({"status": "deleted", "id": memory_id})
    else:
        print(f"Deleted memory: {memory_id}")
