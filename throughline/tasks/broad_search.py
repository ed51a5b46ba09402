"""Broad domain search - optional enrichment of candidate retrieval on a thread's first expansion."""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from throughline.api.base import PaperSource
from throughline.llm import prompts
from throughline.llm.base import ChatMessage, LanguageModelOracle, ToolSchema
from throughline.models.paper import Paper
from throughline.tasks.relevance import RelevanceEngine
from throughline.utils.cancellation import check_cancelled
from throughline.utils.config import settings
from throughline.utils.errors import APIError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

SEARCH_TOOL = ToolSchema(
    name="search_papers",
    description="Keyword search over Semantic Scholar. Returns titles, years and citation counts.",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "3-8 search keywords"},
        },
        "required": ["query"],
    },
)


class BroadSearch(ABC):
    """Finds papers in the same research area that citations alone would miss."""

    def __init__(self, source: PaperSource, results_per_query: Optional[int] = None):
        self.source = source
        self.results_per_query = results_per_query or settings.broad_search_results_per_query

    async def _run_query(self, query: str, min_year: Optional[int]) -> List[Paper]:
        """One search; a failed query is logged and yields nothing."""
        await check_cancelled(self.source.cancellation)
        logger.info(f'Searching for: "{query}"')
        try:
            papers = await self.source.search(query, min_year=min_year, limit=self.results_per_query)
        except APIError as e:
            logger.warning(f'Search failed for "{query}": {e}')
            return []
        logger.info(f'Found {len(papers)} papers for "{query}"')
        return papers

    async def _run_queries(self, queries: Sequence[str], min_year: Optional[int]) -> List[Paper]:
        papers: List[Paper] = []
        for query in queries:
            papers.extend(await self._run_query(query, min_year))
        return papers

    @abstractmethod
    async def find(self, frontier: Paper, theme: str, min_year: Optional[int]) -> List[Paper]:
        pass


class FixedQuerySearch(BroadSearch):
    """A configured list of queries, the same for every thread."""

    def __init__(self, source: PaperSource, queries: Sequence[str], **kwargs):
        super().__init__(source, **kwargs)
        self.queries = [q for q in queries if q and q.strip()]

    async def find(self, frontier: Paper, theme: str, min_year: Optional[int]) -> List[Paper]:
        return await self._run_queries(self.queries, min_year)


class LLMQuerySearch(BroadSearch):
    """The oracle proposes queries tailored to the frontier paper."""

    def __init__(self, source: PaperSource, relevance: RelevanceEngine, query_count: int = 4, **kwargs):
        super().__init__(source, **kwargs)
        self.relevance = relevance
        self.query_count = query_count

    async def find(self, frontier: Paper, theme: str, min_year: Optional[int]) -> List[Paper]:
        queries = await self.relevance.propose_search_queries(frontier, theme, self.query_count)
        logger.info(f"LLM proposed {len(queries)} search queries")
        return await self._run_queries(queries, min_year)


class ToolCallingSearch(BroadSearch):
    """The oracle drives the search itself through a search_papers tool."""

    def __init__(self, source: PaperSource, oracle: LanguageModelOracle, max_rounds: int = 3, **kwargs):
        super().__init__(source, **kwargs)
        self.oracle = oracle
        self.max_rounds = max_rounds

    async def _invoke(self, name: str, arguments: dict, min_year: Optional[int], found: List[Paper]) -> str:
        if name != SEARCH_TOOL.name:
            return f"Unknown tool: {name}"
        query = str(arguments.get("query") or "").strip()
        if not query:
            return "Missing required argument: query"

        papers = await self._run_query(query, min_year)
        found.extend(papers)
        if not papers:
            return "No papers found."
        return "\n".join(
            f'- "{p.title}" ({p.year or "Unknown"}), {p.citationCount} citations' for p in papers
        )

    async def find(self, frontier: Paper, theme: str, min_year: Optional[int]) -> List[Paper]:
        found: List[Paper] = []
        conversation = [
            ChatMessage(role="user", content=prompts.build_tool_search_input(frontier, theme))
        ]

        for round_number in range(1, self.max_rounds + 1):
            reply = await self.oracle.complete_with_tools(conversation, [SEARCH_TOOL])
            if not reply.tool_invocations:
                logger.debug(f"Tool search finished after {round_number - 1} rounds")
                break

            conversation.append(
                ChatMessage(
                    role="assistant",
                    content=reply.text or "",
                    tool_invocations=reply.tool_invocations,
                )
            )
            for call in reply.tool_invocations:
                result = await self._invoke(call.name, call.arguments, min_year, found)
                conversation.append(ChatMessage(role="tool", name=call.name, content=result))

        return found


def build_broad_search(
    mode: Optional[str],
    source: PaperSource,
    oracle: LanguageModelOracle,
    relevance: RelevanceEngine,
    queries: Optional[Sequence[str]] = None,
) -> Optional[BroadSearch]:
    """
    Build the broad search strategy for a mode.

    Args:
        mode: "off", "fixed", "llm" or "tools" (default from settings)

    Returns:
        Strategy, or None when broad search is off
    """
    mode = (mode or settings.broad_search_mode).lower()

    if mode in ("off", "none"):
        return None
    if mode == "fixed":
        return FixedQuerySearch(
            source, queries if queries is not None else settings.broad_search_queries
        )
    if mode == "llm":
        return LLMQuerySearch(source, relevance)
    if mode == "tools":
        return ToolCallingSearch(source, oracle)

    raise ValueError(f"Unknown broad search mode: {mode}")
