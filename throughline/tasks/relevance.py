"""Relevance engine - oracle-mediated theme, ranking, selection and divergence decisions."""
import re
from typing import List, Optional, Sequence

from throughline.llm import prompts
from throughline.llm.base import LanguageModelOracle
from throughline.llm.json_repair import parse_index_array, parse_json_array
from throughline.models.lineage import (
    ClusterSuggestion,
    DivergenceDecision,
    SelectionDecision,
    Theme,
    Thread,
)
from throughline.models.paper import Paper
from throughline.models.session import SessionContext
from throughline.utils.config import settings
from throughline.utils.errors import MalformedResponseError, OracleError, RankingParseError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

MAX_THEMES = 4
FALLBACK_REASON = "Fallback: highly ranked by relevance"
DEFAULT_SELECTION_REASON = "Selected by LLM"

_DECISION_RE = re.compile(r"DECISION:\s*\**\s*(yes|no)\b", re.IGNORECASE)
_REASON_RE = re.compile(r"REASON:\s*\**\s*(.+)", re.IGNORECASE)


def _paper_brief(paper: Paper) -> dict:
    return {
        "title": paper.title,
        "year": paper.year,
        "authors": paper.author_names(5),
        "citations": paper.citationCount,
    }


class RelevanceEngine:
    """Every decision the oracle makes, each with its own recovery path.

    - extract_themes: parse failure means "no themes"
    - rank_by_relevance: one repair round-trip, then RankingParseError
    - select_successors: parse failure falls back to the top-ranked papers
    - detect_divergence: anything but an explicit yes is a no
    """

    def __init__(
        self,
        oracle: LanguageModelOracle,
        context: SessionContext,
        selection_window: Optional[int] = None,
        max_per_iteration: Optional[int] = None,
        fallback_count: Optional[int] = None,
    ):
        self.oracle = oracle
        self.context = context
        self.selection_window = selection_window or settings.selection_window
        self.max_per_iteration = max_per_iteration or settings.max_papers_per_iteration
        self.fallback_count = fallback_count or settings.selection_fallback_count

    @property
    def criteria(self) -> Optional[str]:
        return self.context.clustering_criteria

    async def extract_themes(self, paper: Paper) -> List[Theme]:
        """
        Identify 2-4 research themes in a paper.

        Returns:
            Themes (empty when the response cannot be parsed)

        Raises:
            OracleError: If the oracle itself fails
        """
        response = await self.oracle.complete(prompts.build_themes_input(paper, self.criteria))

        try:
            items = parse_json_array(response)
        except MalformedResponseError as e:
            logger.warning(f"Failed to parse themes for '{paper.title[:50]}': {e}")
            return []

        themes = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                themes.append(Theme.model_validate(item))
            except ValueError as e:
                logger.debug(f"Skipping invalid theme {item!r}: {e}")

        return themes[:MAX_THEMES]

    def _indices_to_papers(self, indices: Sequence[int], candidates: Sequence[Paper]) -> List[Paper]:
        """1-based indices to papers; out-of-range and repeated indices are dropped."""
        ranked = []
        seen = set()
        for i in indices:
            if i < 1 or i > len(candidates) or i in seen:
                continue
            seen.add(i)
            ranked.append(candidates[i - 1])
        return ranked

    async def rank_by_relevance(
        self, candidates: Sequence[Paper], theme: str, frontier: Paper
    ) -> List[Paper]:
        """
        Order candidates by lineage strength.

        Raises:
            RankingParseError: If neither the response nor one repair attempt parses
        """
        if not candidates:
            return []

        logger.info(f"Ranking {len(candidates)} papers for theme: {theme[:50]}")
        response = await self.oracle.complete(
            prompts.build_rank_input(candidates, theme, frontier, self.criteria)
        )

        repaired = False
        try:
            indices = parse_index_array(response)
        except MalformedResponseError as parse_error:
            logger.error(f"Ranking response parse failed: {parse_error}")
            logger.error(f"Raw LLM response (first 500 chars): {response[:500]}")
            logger.info("Asking LLM to clean up malformed response...")
            indices = await self._repair_ranking(response, theme, parse_error)
            repaired = True

        ranked = self._indices_to_papers(indices, candidates)
        logger.info(f"Ranked {len(ranked)} of {len(candidates)} papers")

        self.context.log_decision(
            "rank",
            f"RANK: LLM ranked {len(candidates)} papers by relevance to thread theme"
            + (" (after LLM fix)" if repaired else ""),
            theme=theme[:100],
            criteria=prompts.RANK_CRITERIA,
            inputCount=len(candidates),
            outputCount=len(ranked),
            repaired=repaired,
            top10=[_paper_brief(p) for p in ranked[:10]],
        )
        return ranked

    async def _repair_ranking(
        self, response: str, theme: str, parse_error: MalformedResponseError
    ) -> List[int]:
        repair_response = None
        try:
            repair_response = await self.oracle.complete(prompts.build_repair_input(response))
            return parse_index_array(repair_response)
        except (MalformedResponseError, OracleError) as fix_error:
            self.context.log_decision(
                "rank",
                f"Ranking FAILED for theme: {theme[:100]}",
                parseError=str(parse_error),
                fixError=str(fix_error),
                originalResponse=response,
                fixedAttempt=repair_response if repair_response is not None else "LLM fix call failed",
            )
            raise RankingParseError(
                f"Failed to parse LLM ranking response even after retry: {parse_error}",
                raw_response=response,
                repair_response=repair_response,
            ) from fix_error

    async def select_successors(self, ranked: Sequence[Paper], thread: Thread) -> List[Paper]:
        """
        Ask for an ADD/SKIP verdict on the top-ranked candidates.

        Returns:
            Papers decided ADD (at most max_per_iteration), each carrying its reason.
            Falls back to the top-ranked papers when the response cannot be parsed.
        """
        if not ranked:
            return []

        window = list(ranked[: self.selection_window])
        response = await self.oracle.complete(
            prompts.build_select_input(
                window, thread.theme, thread.papers, self.context.seed_papers, self.criteria
            )
        )

        try:
            items = parse_json_array(response)
        except MalformedResponseError as e:
            logger.error(f"Failed to parse selection response: {e}")
            logger.error(f"Response was: {response[:500]}")
            fallback = [p.with_reason(FALLBACK_REASON) for p in ranked[: self.fallback_count]]
            self.context.log_decision(
                "select_decisions",
                f"Selection parse failed, falling back to top {len(fallback)}",
                error=str(e),
                fallback=True,
            )
            return fallback

        selected: List[Paper] = []
        chosen = set()
        selection_log = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                decision = SelectionDecision.model_validate(item)
            except ValueError:
                logger.debug(f"Skipping invalid selection decision {item!r}")
                continue

            position = decision.index - 1
            if position < 0 or position >= len(window) or position in chosen:
                continue
            chosen.add(position)

            paper = window[position]
            selection_log.append(
                {"title": paper.title, "decision": decision.decision, "reason": decision.reason}
            )
            if decision.decision == "ADD" and len(selected) < self.max_per_iteration:
                selected.append(paper.with_reason(decision.reason or DEFAULT_SELECTION_REASON))

        self.context.log_decision(
            "select_decisions",
            f"LLM selected {len(selected)} of {len(window)} candidates",
            decisions=selection_log,
        )
        return selected

    async def detect_divergence(
        self,
        candidate_theme: str,
        parent_theme: str,
        seed_papers: Optional[Sequence[Paper]] = None,
    ) -> DivergenceDecision:
        """Conservative yes/no gate for spawning a sub-thread; ambiguity means no."""
        seeds = self.context.seed_papers if seed_papers is None else seed_papers
        response = await self.oracle.complete(
            prompts.build_divergence_input(candidate_theme, parent_theme, seeds, self.criteria)
        )

        decision_match = _DECISION_RE.search(response or "")
        is_divergence = bool(decision_match) and decision_match.group(1).lower() == "yes"
        reason_match = _REASON_RE.search(response or "")
        reason = reason_match.group(1).strip() if reason_match else "No reason provided"

        self.context.log_decision(
            "subthread_check",
            f'Check sub-thread: "{candidate_theme[:80]}"',
            parentTheme=parent_theme,
            candidateTheme=candidate_theme,
            seedPapers=[s.title for s in seeds],
            decision="CREATE" if is_divergence else "SKIP",
            reason=reason,
        )
        logger.info(
            f"Sub-thread check: {'CREATE' if is_divergence else 'SKIP'} - "
            f"{candidate_theme[:50]} - {reason}"
        )

        return DivergenceDecision(
            isDivergence=is_divergence,
            reason=reason,
            newTheme=candidate_theme if is_divergence else None,
        )

    async def propose_search_queries(self, frontier: Paper, theme: str, count: int = 4) -> List[str]:
        """Diverse keyword queries for broad search; empty when unparseable."""
        response = await self.oracle.complete(prompts.build_queries_input(frontier, theme, count))
        try:
            items = parse_json_array(response)
        except MalformedResponseError as e:
            logger.warning(f"Failed to parse search queries: {e}")
            return []

        queries = []
        for item in items:
            if isinstance(item, str) and item.strip() and item.strip() not in queries:
                queries.append(item.strip())
        return queries[:count]

    async def cluster_leftovers(
        self, papers: Sequence[Paper], threads: Sequence[Thread], max_threads: int = 2
    ) -> List[ClusterSuggestion]:
        """Propose additional threads from unclaimed papers; empty when unparseable."""
        if not papers or max_threads <= 0:
            return []

        existing = [f"{t.theme} ({len(t.papers)} papers)" for t in threads]
        response = await self.oracle.complete(
            prompts.build_cluster_input(papers, existing, max_threads, self.criteria)
        )
        try:
            items = parse_json_array(response)
        except MalformedResponseError as e:
            logger.warning(f"Failed to cluster candidate pool: {e}")
            return []

        suggestions = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                suggestions.append(ClusterSuggestion.model_validate(item))
            except ValueError as e:
                logger.debug(f"Skipping invalid cluster suggestion {item!r}: {e}")

        for s in suggestions:
            logger.info(f"Identified potential thread from pool: {s.theme}")
        return suggestions[:max_threads]
