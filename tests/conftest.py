"""
Pytest configuration and shared test doubles.

- Adds project root to sys.path so imports like 'from throughline.models.paper import Paper' work.
- Provides paper factories, a scripted PaperSource and a prompt-routing oracle
  so the expansion engine can be driven without network access.
"""
import json
import os
import re
import sys

import pytest

# Project root (directory containing throughline/, tests/)
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from throughline.api.base import PaperSource  # noqa: E402
from throughline.llm import prompts  # noqa: E402
from throughline.llm.base import LanguageModelOracle, OracleReply  # noqa: E402
from throughline.models.paper import Paper  # noqa: E402
from throughline.utils.cancellation import check_cancelled  # noqa: E402

PRESENT_YEAR = 2024

_NUMBERED_PAPER_RE = re.compile(r'^(\d+)\. "', re.MULTILINE)


def make_paper(
    paper_id="paper000001",
    title="Test Paper",
    year=2020,
    citation_count=10,
    abstract="Test abstract.",
    authors=None,
):
    return Paper(
        paperId=paper_id,
        title=title,
        year=year,
        citationCount=citation_count,
        abstract=abstract,
        authors=authors if authors is not None else [{"authorId": "1", "name": "Alice Smith"}],
    )


def make_raw_paper(paper_id="paper000001", title="Test Paper", year=2020, citation_count=10):
    """Paper record as returned by the Semantic Scholar API."""
    return {
        "paperId": paper_id,
        "title": title,
        "abstract": None,
        "year": year,
        "authors": [{"authorId": "1", "name": "Alice Smith"}],
        "citationCount": citation_count,
    }


class FakeSource(PaperSource):
    """Scripted paper source keyed by paper id (or title for id-less papers).

    A value may be a list of papers or an exception instance to raise.
    """

    def __init__(self, citations=None, recommendations=None, search_results=None, author_papers=None):
        self.citations = citations or {}
        self.recommendations = recommendations or {}
        self.search_results = search_results or {}
        self.author_papers = author_papers or {}
        self.calls = []

    async def _lookup(self, method, table, key):
        await check_cancelled(self.cancellation)
        self.calls.append((method, key))
        value = table.get(key, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def search(self, query, min_year=None, limit=25):
        return await self._lookup("search", self.search_results, query)

    async def get_citations(self, paper_id):
        return await self._lookup("citations", self.citations, paper_id)

    async def get_references(self, paper_id):
        return await self._lookup("references", {}, paper_id)

    async def get_recommendations(self, paper_id):
        return await self._lookup("recommendations", self.recommendations, paper_id)

    async def get_author_papers(self, author):
        return await self._lookup("author_papers", self.author_papers, author)

    async def resolve_paper_id(self, paper):
        return paper.paperId or paper.title

    def calls_to(self, method):
        return [key for name, key in self.calls if name == method]


def numbered_indices(prompt):
    """Candidate numbers listed in a rank/select prompt."""
    return [int(i) for i in _NUMBERED_PAPER_RE.findall(prompt)]


def rank_in_given_order(prompt):
    return json.dumps(numbered_indices(prompt))


def add_everything(prompt):
    return json.dumps(
        [{"index": i, "decision": "ADD", "reason": "Direct follow-up"} for i in numbered_indices(prompt)]
    )


class FakeOracle(LanguageModelOracle):
    """Oracle that routes each prompt by its opening instruction.

    Responders are strings, callables taking the prompt, or exceptions to
    raise. `themes` is either a responder or a dict of theme lists keyed by
    paper title; unknown papers have no themes.
    """

    KINDS = {
        "themes": prompts.THEMES_PROMPT,
        "rank": prompts.RANK_PROMPT,
        "repair": prompts.REPAIR_PROMPT,
        "select": prompts.SELECT_PROMPT,
        "divergence": prompts.DIVERGENCE_PROMPT,
        "cluster": prompts.CLUSTER_PROMPT,
        "queries": prompts.QUERIES_PROMPT,
    }

    def __init__(self, themes=None, tool_replies=None, **responders):
        self.themes = themes if isinstance(themes, dict) else {}
        self.tool_replies = list(tool_replies or [])
        self.responders = {
            "rank": rank_in_given_order,
            "repair": "[]",
            "select": add_everything,
            "divergence": "DECISION: no\nREASON: Topical neighbor, not a direct descendant.",
            "cluster": "[]",
            "queries": "[]",
        }
        if themes is not None and not isinstance(themes, dict):
            self.responders["themes"] = themes
        self.responders.update(responders)
        self.calls = []
        self.tool_calls = []

    def kind_of(self, prompt):
        for kind, opener in self.KINDS.items():
            if prompt.startswith(opener):
                return kind
        raise AssertionError(f"Unrecognised prompt: {prompt[:80]}")

    def _themes_for(self, prompt):
        for title, themes in self.themes.items():
            if f"\nPaper: {title}\n" in prompt:
                return json.dumps(themes)
        return "[]"

    async def complete(self, prompt):
        await check_cancelled(self.cancellation)
        kind = self.kind_of(prompt)
        self.calls.append((kind, prompt))

        if kind == "themes" and "themes" not in self.responders:
            return self._themes_for(prompt)
        responder = self.responders[kind]
        if isinstance(responder, Exception):
            raise responder
        return responder(prompt) if callable(responder) else responder

    async def complete_with_tools(self, conversation, tools):
        self.tool_calls.append(list(conversation))
        if self.tool_replies:
            return self.tool_replies.pop(0)
        return OracleReply(text="Done searching.")

    def calls_of(self, kind):
        return [prompt for k, prompt in self.calls if k == kind]


@pytest.fixture
def seed_paper():
    """Standard 2017 seed paper."""
    return make_paper("seed000000001", "Seed Paper", 2017, citation_count=1000)
