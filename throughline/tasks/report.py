"""
report.py - Human-readable and JSON exports of an analysis result.

Debug tree: the decision log as indented text (indent = expansion depth).
Results JSON: threads, decision log and run metadata for offline auditing.
"""
import json
import os
from typing import List, Sequence

from throughline.models.lineage import AnalysisResult, DecisionNode, Thread
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

DETAIL_FIELDS = (
    ("explanation", "{}"),
    ("found", "Found: {}"),
    ("decision", "Decision: {}"),
    ("reason", "Reason: {}"),
)


def format_debug_tree(nodes: Sequence[DecisionNode]) -> str:
    """Render the decision log as indented text."""
    lines = ["=== THROUGHLINE ANALYSIS DEBUG TREE ===", ""]

    for i, node in enumerate(nodes, 1):
        depth = node.data.get("stackDepth") or 1
        indent = "  " * (depth - 1)
        lines.append("")
        lines.append(f"{indent}[{i}] {node.type.upper()}: {node.message}")

        for key, template in DETAIL_FIELDS:
            value = node.data.get(key)
            if value:
                lines.append(f"{indent}    {template.format(value)}")

    return "\n".join(lines) + "\n"


def _format_thread(thread: Thread, number: str, indent: str) -> List[str]:
    lines = [
        f"\n{indent}{number}. {thread.theme}",
        f'{indent}   Spawned from: "{thread.spawnPaper.title}" ({thread.spawnYear})',
        f"{indent}   Papers in thread: {len(thread.papers)}",
    ]
    for j, paper in enumerate(thread.papers):
        marker = "     -> " if j == 0 else "       "
        title = paper.title if len(paper.title) <= 60 else paper.title[:60] + "..."
        lines.append(f"{indent}{marker}[{paper.year}] {title}")
        if paper.selectionReason and j > 0:
            lines.append(f"{indent}         - {paper.selectionReason}")

    for k, sub in enumerate(thread.subThreads, 1):
        lines.extend(_format_thread(sub, f"{number}.{k}", indent + "   "))
    return lines


def format_results(result: AnalysisResult) -> str:
    """Summary of the thread forest for the console."""
    rule = "=" * 70
    if result.status == "failed":
        header = f"Analysis failed: {result.error}"
    elif result.status == "cancelled":
        header = f"Analysis cancelled: {result.error} (partial results)"
    else:
        header = "RESEARCH LINEAGES FOUND"

    lines = [rule, header, rule]
    for i, thread in enumerate(result.threads, 1):
        lines.extend(_format_thread(thread, str(i), ""))

    lines.append("")
    lines.append(rule)
    lines.append(f"Total: {len(result.threads)} threads from {result.seed_count} seed papers")
    lines.append(f"Duration: {result.duration_seconds:.1f}s")
    lines.append(rule)
    return "\n".join(lines)


def save_results(result: AnalysisResult, path: str) -> str:
    """
    Write the result as JSON.

    Args:
        result: Analysis result (any status)
        path: Output file

    Returns:
        The path written
    """
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    payload = result.model_dump(mode="json")
    payload["success"] = result.success

    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)

    logger.info(f"Results saved to {path}")
    return path


def save_debug_tree(result: AnalysisResult, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_debug_tree(result.decision_log))

    logger.info(f"Debug tree saved to {path}")
    return path
