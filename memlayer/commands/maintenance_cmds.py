from __future__ import annotations

import os
from pathlib import Path

from rich import print

from ..hybrid_eval import format_hybrid_eval_report, read_judged_queries, run_hybrid_eval, to_json
from .common import CliState, cli_errors, emit_json, fail


def init_db_cmd(*, store_from_path, state: CliState) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            total = store.count()
        finally:
            store.close()
    if state.json_out:
        emit_json({"status": "initialized", "path": str(store.db_path), "memories": total})
    else:
        print(f"Initialized database at {store.db_path}")


def reindex_cmd(*, store_from_path, state: CliState) -> None:
    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            store.reindex()
            total = store.count()
        finally:
            store.close()
    if state.json_out:
        emit_json({"status": "reindexed", "memories": total})
    else:
        print(f"Rebuilt lexical index ({total} memories)")


def hybrid_eval_cmd(
    *,
    store_from_path,
    resolve_project,
    state: CliState,
    judged_queries_path: Path,
    limit: int,
    json_out: Path | None,
) -> None:
    """Evaluate semantic vs hybrid retrieval precision/recall deltas."""

    try:
        judged_queries = read_judged_queries(judged_queries_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        fail(f"Invalid judged queries: {exc}", json_out=state.json_out)
        return

    with cli_errors(state.json_out):
        store = store_from_path(state.db_path)
        try:
            project = resolve_project(os.getcwd(), state.project)
            payload = run_hybrid_eval(
                store, judged_queries=judged_queries, limit=limit, project=project
            )
        finally:
            store.close()

    if json_out is not None:
        json_out.expanduser().write_text(to_json(payload) + "\n", encoding="utf-8")
    if state.json_out:
        emit_json(payload)
        return
    print(format_hybrid_eval_report(payload))
    if json_out is not None:
        print(f"Wrote {json_out}")
