from __future__ import annotations

import json
import statistics
from collections.abc import Sequence
from typing import Any, TypedDict

from .limits import validate_limit
from .store import MemoryStore


class JudgedQuery(TypedDict):
    query: str
    relevant_ids: list[str]
    project: str | None


def read_judged_queries(text: str) -> list[JudgedQuery]:
    rows: list[JudgedQuery] = []
    seen: set[tuple[str, tuple[str, ...], str]] = set()
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        payload = json.loads(stripped)
        if not isinstance(payload, dict):
            raise ValueError("each judged query row must be a JSON object")
        query = str(payload.get("query") or "").strip()
        if not query:
            raise ValueError("each judged query must include non-empty 'query'")
        relevant_ids_raw = payload.get("relevant_ids")
        if relevant_ids_raw is None:
            relevant_ids_raw = []
        if not isinstance(relevant_ids_raw, list):
            raise ValueError("'relevant_ids' must be an array when provided")
        relevant_ids = [str(item) for item in relevant_ids_raw]
        project = payload.get("project")
        if project is not None and (not isinstance(project, str) or not project.strip()):
            raise ValueError("'project' must be a non-empty string when provided")
        key = (query, tuple(sorted(set(relevant_ids))), project or "")
        if key in seen:
            raise ValueError("duplicate judged query row detected")
        seen.add(key)
        rows.append(
            {
                "query": query,
                "relevant_ids": relevant_ids,
                "project": project.strip() if project else None,
            }
        )
    if not rows:
        raise ValueError("no judged queries found; provide at least one JSONL row")
    return rows


def _precision_recall(
    result_ids: Sequence[str], relevant_ids: set[str], *, k: int
) -> tuple[float, float, int]:
    if k <= 0:
        return 0.0, 0.0, 0
    top_ids = list(result_ids)[:k]
    hits = len(set(top_ids) & relevant_ids)
    precision = float(hits) / float(k)
    recall = float(hits) / float(len(relevant_ids)) if relevant_ids else 0.0
    return precision, recall, hits


def run_hybrid_eval(
    store: MemoryStore,
    *,
    judged_queries: list[JudgedQuery],
    limit: int,
    project: str,
) -> dict[str, Any]:
    """Compare semantic-only search against hybrid search on judged queries.

    ``project`` applies to rows that do not name their own project.
    """

    validate_limit(limit)
    per_query: list[dict[str, Any]] = []
    baseline_precision: list[float] = []
    baseline_recall: list[float] = []
    hybrid_precision: list[float] = []
    hybrid_recall: list[float] = []

    for row in judged_queries:
        query = row["query"]
        row_project = row.get("project") or project
        relevant = set(row["relevant_ids"])

        baseline_ids = [item.id for item in store.search(row_project, query, limit)]
        b_precision, b_recall, b_hits = _precision_recall(baseline_ids, relevant, k=limit)

        hybrid_ids = [item.id for item in store.search_hybrid(row_project, query, limit)]
        h_precision, h_recall, h_hits = _precision_recall(hybrid_ids, relevant, k=limit)

        baseline_precision.append(b_precision)
        baseline_recall.append(b_recall)
        hybrid_precision.append(h_precision)
        hybrid_recall.append(h_recall)
        per_query.append(
            {
                "query": query,
                "project": row_project,
                "relevant_count": len(relevant),
                "baseline": {
                    "precision": b_precision,
                    "recall": b_recall,
                    "hits": b_hits,
                    "ids": baseline_ids,
                },
                "hybrid": {
                    "precision": h_precision,
                    "recall": h_recall,
                    "hits": h_hits,
                    "ids": hybrid_ids,
                },
                "delta": {
                    "precision": h_precision - b_precision,
                    "recall": h_recall - b_recall,
                },
            }
        )

    def _avg(values: list[float]) -> float:
        return float(statistics.mean(values)) if values else 0.0

    summary: dict[str, Any] = {
        "queries": len(per_query),
        "limit": int(limit),
        "baseline": {
            "precision": _avg(baseline_precision),
            "recall": _avg(baseline_recall),
        },
        "hybrid": {
            "precision": _avg(hybrid_precision),
            "recall": _avg(hybrid_recall),
        },
    }
    summary["delta"] = {
        "precision": summary["hybrid"]["precision"] - summary["baseline"]["precision"],
        "recall": summary["hybrid"]["recall"] - summary["baseline"]["recall"],
    }
    return {
        "summary": summary,
        "results": per_query,
    }


def format_hybrid_eval_report(payload: dict[str, Any]) -> str:
    summary = payload.get("summary") or {}
    baseline = summary.get("baseline") or {}
    hybrid = summary.get("hybrid") or {}
    delta = summary.get("delta") or {}
    lines = [
        f"queries: {summary.get('queries', 0)} limit={summary.get('limit', 0)}",
        f"semantic: precision@k={baseline.get('precision', 0.0):.3f} recall@k={baseline.get('recall', 0.0):.3f}",
        f"hybrid: precision@k={hybrid.get('precision', 0.0):.3f} recall@k={hybrid.get('recall', 0.0):.3f}",
        f"delta: precision={delta.get('precision', 0.0):+.3f} recall={delta.get('recall', 0.0):+.3f}",
    ]
    return "\n".join(lines)


def to_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)
