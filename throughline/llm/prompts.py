"""
prompts.py - Prompt templates and input construction for every oracle decision.

Templates are module constants (easy to edit/version); the build_* functions
assemble a complete prompt from structured inputs.
"""
from typing import List, Optional, Sequence

from throughline.models.paper import Paper

SEPARATOR = "=" * 60

DEFAULT_CLUSTERING_CRITERIA = (
    "DEFAULT CLUSTERING CRITERIA:\n"
    "Group by lab/author lineage and shared architectural philosophy. "
    "Prefer direct technical descendants over topical neighbors."
)


THEMES_PROMPT = """Analyze this paper and identify 2-4 distinct research themes.

A theme is a coherent research direction this paper contributes to, narrow enough
that its successors can be traced year by year."""

THEMES_OUTPUT = """Return ONLY a JSON array:
[{"description": "theme description", "keywords": ["term1", "term2"]}]"""


RANK_PROMPT = """Rank these papers by relevance to the research thread described below.

PRIORITIZE (in order):
1. Papers by the same authors/lab (especially if authors overlap with the frontier paper)
2. Direct follow-up work that cites the lineage
3. Papers with high citation counts (>50) that build on this thread
4. Topically relevant recent work"""

RANK_OUTPUT = "Return ONLY a JSON array of indices: [1, 5, 3, ...]"

RANK_CRITERIA = "Same authors/lab -> Direct citations -> High-impact builds -> Recent relevant"


REPAIR_PROMPT = """The following array is malformed JSON. Please return ONLY a valid JSON array of integers, with no extra text or commentary:"""

REPAIR_OUTPUT = "Return ONLY the fixed JSON array: [1, 2, 3, ...]"


SELECT_PROMPT = """You are selecting papers to add to a research lineage thread."""

SELECT_INSTRUCTIONS = """Select which papers should be added to continue this research lineage.

STRONG signals to ADD a paper:
- Same authors or research lab as seed papers (the STRONGEST signal: same lab = direct lineage)
- Direct follow-up work that cites the seeds as a foundation
- Advances the same research GOAL even if the method/architecture evolves
- Applies the seed's core ideas to new domains or extends them

It's EXPECTED that successors may:
- Change methods or techniques while pursuing the same research goals
- Add new capabilities or combine with other approaches
- Apply the ideas to new contexts

SKIP papers that are:
- Unrelated work that happens to cite the seeds
- Surveys or meta-analyses (not original research advancing the ideas)
- Work on completely different problems

For each paper, decide: ADD (with a one-sentence reason) or SKIP (with a one-sentence reason)."""

SELECT_OUTPUT = """Return JSON array:
[
  {"index": 1, "decision": "ADD", "reason": "Same authors, direct follow-up extending the core method"},
  {"index": 2, "decision": "SKIP", "reason": "Survey paper, not original research"}
]"""


DIVERGENCE_PROMPT = """You are helping trace research lineages. Be HIGHLY SELECTIVE."""

DIVERGENCE_INSTRUCTIONS = """Should we create a new research thread for the candidate?

Answer "yes" ONLY if ALL of these are true:
1. The candidate DIRECTLY BUILDS ON specific ideas, methods, or architectures from the seed papers, not just the broad problem domain
2. The candidate would not exist without the seed papers' specific technical contributions
3. The candidate is meaningfully different from the current thread (not redundant)

Answer "no" if:
- The candidate addresses a general research challenge that applies to many systems beyond the seeds
- The candidate shares the seed's application domain but uses unrelated techniques
- The candidate is a generic method that COULD be applied to the seed's domain but wasn't specifically developed for it
- The connection is "both work on X" rather than "this extends that specific idea"

The test: Would the candidate paper's authors cite the seed papers as direct technical ancestors, or merely as related work in the same field?

When in doubt, answer "no". We want direct intellectual lineage, not topical neighbors."""

DIVERGENCE_OUTPUT = """Answer in this format:
DECISION: yes/no
REASON: <one sentence explanation>"""


CLUSTER_PROMPT = """Analyze these leftover papers and identify if there are coherent research threads distinct from existing threads."""

CLUSTER_OUTPUT = """Return JSON with 0-{max_threads} thread suggestions. paper_indices lists the
numbers of the candidate papers that belong to the thread:
[{{"theme": "brief name", "description": "what unifies these papers", "reasoning": "why this is distinct from existing threads", "paper_indices": [1, 4, 7]}}]"""


QUERIES_PROMPT = """Propose search queries for a scholarly search engine that would find successors of the paper below."""

QUERIES_INSTRUCTIONS = """Cover diverse directions:
- Successor methodologies that replace or refine the core method
- Scaled-up versions (bigger models, more data, larger benchmarks)
- Alternate paradigms pursuing the same research goal

Keep each query to 3-8 keywords. Propose {count} queries."""

QUERIES_OUTPUT = """Return ONLY a JSON array of strings: ["query one", "query two"]"""


TOOL_SEARCH_PROMPT = """Propose search queries and use the search_papers tool to find successors of the paper below.

Call search_papers once per query. Look for successor methodologies, scaled-up
versions and alternate paradigms pursuing the same research goal. When you have
searched enough, reply with a short summary instead of another tool call."""


# ========================================
# Input Construction
# ========================================

def clustering_criteria_block(criteria: Optional[str]) -> str:
    """User-specified lineage rubric, or the default one."""
    if criteria and criteria.strip():
        return (
            f"USER-SPECIFIED CLUSTERING CRITERIA:\n{criteria.strip()}\n\n"
            "Use the user's criteria as the PRIMARY way to define and separate research tracks."
        )
    return DEFAULT_CLUSTERING_CRITERIA


def format_paper(paper: Paper, index: Optional[int] = None, max_authors: int = 5) -> str:
    """Format a paper for a prompt, optionally numbered."""
    prefix = f"{index}. " if index is not None else ""
    lines = [
        f'{prefix}"{paper.title}" ({paper.year or "Unknown"})',
        f"   Authors: {paper.author_names(max_authors) or 'Unknown'}",
        f"   Citations: {paper.citationCount}",
    ]
    if paper.abstract:
        lines.append(f"   Abstract: {paper.abstract}")
    return "\n".join(lines)


def _section(title: str) -> List[str]:
    return [f"\n{SEPARATOR}", title, SEPARATOR]


def build_themes_input(paper: Paper, criteria: Optional[str] = None) -> str:
    parts = [THEMES_PROMPT, "", clustering_criteria_block(criteria)]
    parts.extend(_section("PAPER TO ANALYZE"))
    parts.append(f"Paper: {paper.title}")
    parts.append(f"Year: {paper.year or 'Unknown'}")
    parts.append(f"Abstract: {paper.abstract or 'No abstract available'}")
    parts.append("")
    parts.append(THEMES_OUTPUT)
    return "\n".join(parts)


def build_rank_input(
    candidates: Sequence[Paper], theme: str, frontier: Paper, criteria: Optional[str] = None
) -> str:
    parts = [RANK_PROMPT, "", clustering_criteria_block(criteria)]
    parts.append(f'\nTHREAD: "{theme}"')
    parts.append(f"Frontier paper: {frontier.title} ({frontier.year or 'Unknown'})")
    parts.append(f"Frontier paper authors: {frontier.author_names() or 'Unknown'}")
    parts.extend(_section("PAPERS"))
    parts.append("\n\n".join(format_paper(p, i) for i, p in enumerate(candidates, 1)))
    parts.append("")
    parts.append(RANK_OUTPUT)
    return "\n".join(parts)


def build_repair_input(raw_response: str) -> str:
    return "\n".join([REPAIR_PROMPT, "", raw_response, "", REPAIR_OUTPUT])


def _seed_context(seed_papers: Sequence[Paper], with_abstract: bool = False) -> str:
    lines = []
    for s in seed_papers:
        line = f'- "{s.title}" by {s.author_names(5) or "Unknown"}'
        if with_abstract and s.abstract:
            line += f"\n  Abstract: {s.abstract}"
        lines.append(line)
    return "\n".join(lines) or "- (none)"


def build_select_input(
    candidates: Sequence[Paper],
    theme: str,
    thread_papers: Sequence[Paper],
    seed_papers: Sequence[Paper],
    criteria: Optional[str] = None,
) -> str:
    parts = [SELECT_PROMPT, "", clustering_criteria_block(criteria)]
    parts.extend(_section("ORIGINAL SEED PAPERS"))
    parts.append(_seed_context(seed_papers))
    parts.append(f"\nTHREAD THEME: {theme}")
    parts.extend(_section("PAPERS ALREADY IN THREAD"))
    parts.append("\n".join(f'- "{p.title}" ({p.year or "Unknown"})' for p in thread_papers))
    parts.extend(_section("CANDIDATE PAPERS"))
    parts.append("\n\n".join(format_paper(p, i) for i, p in enumerate(candidates, 1)))
    parts.append("")
    parts.append(SELECT_INSTRUCTIONS)
    parts.append("")
    parts.append(SELECT_OUTPUT)
    return "\n".join(parts)


def build_divergence_input(
    candidate_theme: str,
    parent_theme: str,
    seed_papers: Sequence[Paper],
    criteria: Optional[str] = None,
) -> str:
    parts = [DIVERGENCE_PROMPT, "", clustering_criteria_block(criteria)]
    parts.extend(_section("THE USER'S ORIGINAL SEED PAPERS (this is what they care about)"))
    parts.append(_seed_context(seed_papers, with_abstract=True))
    parts.append(f"\nCURRENT THREAD: {parent_theme}")
    parts.append(f"\nCANDIDATE NEW DIRECTION: {candidate_theme}")
    parts.append("")
    parts.append(DIVERGENCE_INSTRUCTIONS)
    parts.append("")
    parts.append(DIVERGENCE_OUTPUT)
    return "\n".join(parts)


def build_cluster_input(
    papers: Sequence[Paper],
    existing_themes: Sequence[str],
    max_threads: int,
    criteria: Optional[str] = None,
) -> str:
    parts = [CLUSTER_PROMPT, "", clustering_criteria_block(criteria)]
    parts.extend(_section("EXISTING THREADS"))
    parts.append("\n".join(f"- {t}" for t in existing_themes) or "- (none)")
    parts.extend(_section("CANDIDATE PAPERS (sample)"))
    parts.append(
        "\n".join(
            f'{i}. "{p.title}" ({p.year or "Unknown"}) - {p.author_names(3) or "Unknown"}'
            for i, p in enumerate(papers, 1)
        )
    )
    parts.append("")
    parts.append(CLUSTER_OUTPUT.format(max_threads=max_threads))
    return "\n".join(parts)


def build_queries_input(frontier: Paper, theme: str, count: int = 4) -> str:
    parts = [QUERIES_PROMPT]
    parts.append(f"\nTHREAD THEME: {theme}")
    parts.extend(_section("PAPER"))
    parts.append(format_paper(frontier))
    parts.append("")
    parts.append(QUERIES_INSTRUCTIONS.format(count=count))
    parts.append("")
    parts.append(QUERIES_OUTPUT)
    return "\n".join(parts)


def build_tool_search_input(frontier: Paper, theme: str) -> str:
    parts = [TOOL_SEARCH_PROMPT]
    parts.append(f"\nTHREAD THEME: {theme}")
    parts.extend(_section("PAPER"))
    parts.append(format_paper(frontier))
    return "\n".join(parts)
