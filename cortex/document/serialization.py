"""Versioned JSON serialization for research documents.

Blobs are ``{"version": N, "document": {...}}``. Older versions are migrated
step by step on load, so the rest of the code only ever sees the current
model.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from pydantic import ValidationError

from ..exceptions import PersistenceError
from .models import ResearchDocument, generate_id

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


def serialize(doc: ResearchDocument) -> str:
    """Serialize a document to a versioned JSON string."""
    return json.dumps(
        {"version": SCHEMA_VERSION, "document": doc.model_dump(mode="json")},
        ensure_ascii=False,
    )


def deserialize(blob: str | bytes) -> ResearchDocument:
    """
    Load a document from a JSON blob, migrating older schema versions.

    Args:
        blob: JSON text as produced by ``serialize`` or an older version

    Returns:
        The document in the current schema

    Raises:
        PersistenceError: If the blob is not a readable document
    """
    try:
        data = json.loads(blob)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Document blob is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise PersistenceError("Document blob must be a JSON object")

    version = data.get("version", 1)
    if not isinstance(version, int) or version > SCHEMA_VERSION or version < 1:
        raise PersistenceError(f"Unsupported document version: {version!r}")

    while version < SCHEMA_VERSION:
        logger.info(f"Migrating document from schema v{version} to v{version + 1}")
        try:
            data = MIGRATIONS[version](data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PersistenceError(f"Document blob could not be migrated from v{version}: {e!r}") from e
        version = data["version"]

    try:
        return ResearchDocument.model_validate(data["document"])
    except (KeyError, ValidationError) as e:
        raise PersistenceError(f"Document blob failed validation: {e}") from e


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """
    Convert the flat version 1 layout into the current model.

    Version 1 kept ``searchResults`` and ``reflections`` as separate lists on
    each question, a plain-string ``summary``, and the decision log under
    ``cortexLog``. Search results become search/result memory entries followed
    by the reflections in cycle order.
    """
    questions = []
    for raw in data.get("questions", []):
        memory: list[dict] = []
        queries_run: list[str] = []
        for result in raw.get("searchResults", []):
            query = result.get("query", "")
            memory.append({"kind": "search", "cycle": 0, "query": query})
            memory.append({
                "kind": "result",
                "cycle": 0,
                "query": query,
                "answer": result.get("answer", ""),
                "sources": [
                    {"url": s["url"], "title": s.get("title") or ""}
                    for s in result.get("sources", [])
                ],
            })
            normalized = " ".join(query.lower().split())
            if normalized and normalized not in queries_run:
                queries_run.append(normalized)

        for reflection in sorted(raw.get("reflections", []), key=lambda r: r.get("cycle", 0)):
            thought = reflection.get("learned", "")
            if reflection.get("nextStep"):
                thought = f"{thought} Next: {reflection['nextStep']}".strip()
            memory.append({
                "kind": "reflect",
                "cycle": reflection.get("cycle", 0),
                "thought": thought,
                "delta": "progress",
            })

        status = raw.get("status", "pending")
        summary = None
        if status == "done":
            summary = {
                "answer": raw.get("summary") or "No summary recorded.",
                "confidence": raw.get("confidence") or "low",
                "recommendation": raw.get("recommendation") or "needs_more",
            }

        raw_max = raw.get("maxCycles")
        max_cycles = min(max(int(raw_max if raw_max is not None else 10), 1), 20)
        questions.append({
            "id": raw["id"],
            "name": raw.get("name", ""),
            "question": raw.get("question", ""),
            "goal": raw.get("goal", ""),
            "status": status,
            "cycles": min(int(raw.get("cycles") or 0), max_cycles),
            "max_cycles": max_cycles,
            "memory": memory,
            "queries_run": queries_run,
            "findings": [
                {
                    "id": f["id"],
                    "content": f.get("content", ""),
                    "sources": [
                        {"url": s["url"], "title": s.get("title") or ""}
                        for s in f.get("sources", [])
                    ],
                    "status": f.get("status", "active"),
                    "disqualify_reason": f.get("disqualifyReason"),
                }
                for f in raw.get("findings", [])
            ],
            "confidence": raw.get("confidence"),
            "recommendation": raw.get("recommendation"),
            "summary": summary,
        })

    decisions = [
        {
            "id": d["id"],
            "timestamp": d["timestamp"],
            "action": d["action"],
            "question_id": d.get("questionId"),
            "question_ids": [d["questionId"]] if d.get("questionId") else [],
            "reasoning": d.get("reasoning", ""),
        }
        for d in data.get("cortexLog", [])
    ]

    document = {
        "id": data.get("id") or generate_id("doc"),
        "objective": data.get("objective", ""),
        "success_criteria": data.get("successCriteria", []),
        "questions": questions,
        "decision_log": decisions,
        "status": data.get("status", "running"),
        "final_answer": data.get("finalAnswer"),
    }
    return {"version": 2, "document": document}


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1_to_v2,
}
