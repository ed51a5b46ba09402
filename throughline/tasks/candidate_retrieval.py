"""Candidate retrieval task - merge, filter and order successor candidates for a frontier paper."""
from collections import Counter
from typing import Dict, List, Optional

from throughline.api.base import PaperSource
from throughline.models.paper import Paper
from throughline.models.session import PaperIdentitySet, SessionContext
from throughline.tasks.broad_search import BroadSearch
from throughline.utils.config import settings
from throughline.utils.errors import APIError, ThroughlineError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

RECENCY_BONUS_PER_YEAR = 100
RECENCY_BONUS_YEARS = 3


def year_distribution(papers: List[Paper]) -> Dict[str, int]:
    counts = Counter(str(p.year) if p.year else "unknown" for p in papers)
    return dict(sorted(counts.items()))


class CandidateRetriever:
    """Citations + recommendations (+ broad search, + author follow-up) for one frontier paper."""

    def __init__(
        self,
        source: PaperSource,
        context: SessionContext,
        broad_search: Optional[BroadSearch] = None,
        include_author_papers: Optional[bool] = None,
        grace_years: Optional[int] = None,
        min_citations: Optional[int] = None,
        year_lookback: Optional[int] = None,
        ordering: Optional[str] = None,
        scored_cap: Optional[int] = None,
    ):
        """
        Initialize retriever.

        Args:
            source: Paper metadata source
            context: Session state (candidate pool, decision log, present year)
            broad_search: Strategy run on a thread's first expansion, or None
            include_author_papers: Also fetch papers by the frontier's first/last author
            grace_years: Papers at most this old skip the citation threshold
            min_citations: Citation threshold for older papers
            year_lookback: Slack subtracted from the requested minimum year
            ordering: "chronological" (oldest first) or "scored"
            scored_cap: Maximum candidates kept by the scored ordering
        """
        self.source = source
        self.context = context
        self.broad_search = broad_search
        self.include_author_papers = (
            include_author_papers
            if include_author_papers is not None
            else settings.include_author_papers
        )
        self.grace_years = grace_years if grace_years is not None else settings.quality_grace_years
        self.min_citations = (
            min_citations if min_citations is not None else settings.quality_min_citations
        )
        self.year_lookback = year_lookback if year_lookback is not None else settings.year_lookback
        self.ordering = ordering or settings.candidate_ordering
        self.scored_cap = scored_cap or settings.scored_candidate_cap

        if self.ordering not in ("chronological", "scored"):
            raise ValueError(f"Unknown candidate ordering: {self.ordering}")

    def effective_min_year(self, min_year: int, frontier: Paper) -> int:
        frontier_year = frontier.year or self.context.present_year
        return max(min_year - self.year_lookback, frontier_year - 1)

    def passes_quality(self, paper: Paper) -> bool:
        """Recent papers are kept regardless of citations; older ones need enough of them."""
        present = self.context.present_year
        age = present - (paper.year or present)
        if age <= self.grace_years:
            return True
        return paper.citationCount >= self.min_citations

    def score(self, paper: Paper) -> int:
        age = self.context.present_year - (paper.year or self.context.present_year)
        return paper.citationCount + RECENCY_BONUS_PER_YEAR * max(0, RECENCY_BONUS_YEARS - age)

    async def _fetch_author_papers(self, frontier: Paper) -> List[Paper]:
        if not frontier.authors:
            return []

        authors = [frontier.authors[0]]
        if len(frontier.authors) > 1:
            authors.append(frontier.authors[-1])

        papers: List[Paper] = []
        for author in authors:
            await self.context.check_cancelled()
            try:
                papers.extend(await self.source.get_author_papers(author.authorId or author.name))
            except APIError as e:
                logger.warning(f"Failed to fetch papers by {author.name}: {e}")
        logger.info(f"Author follow-up found {len(papers)} papers")
        return papers

    async def retrieve(
        self,
        frontier: Paper,
        min_year: int,
        first_expansion: bool = False,
        theme: str = "",
    ) -> List[Paper]:
        """
        Candidates that may continue the lineage from the frontier paper.

        Args:
            frontier: Most recently added paper in the thread
            min_year: Current year of the expansion
            first_expansion: Also run broad search
            theme: Thread theme (steers broad search)

        Returns:
            Deduplicated, quality- and year-filtered candidates. Papers already
            claimed by a thread are NOT removed here.

        Raises:
            APIError: If the frontier cannot be resolved or citations cannot be fetched
        """
        self.context.report_progress(
            "Searching Semantic Scholar...",
            f"Finding papers from {min_year}+ using citations + embeddings",
            None,
        )
        await self.context.check_cancelled()

        present = self.context.present_year
        effective_min_year = self.effective_min_year(min_year, frontier)

        paper_id = await self.source.resolve_paper_id(frontier)

        citations = await self.source.get_citations(paper_id)
        logger.info(f"Citing papers year distribution: {year_distribution(citations)}")
        await self.context.check_cancelled()

        try:
            recommendations = await self.source.get_recommendations(paper_id)
        except APIError as e:
            if not citations:
                raise
            logger.warning(f"Failed to fetch recommendations, continuing with citations only: {e}")
            recommendations = []
        await self.context.check_cancelled()

        broader: List[Paper] = []
        if first_expansion and self.broad_search is not None:
            logger.info("Performing broader domain search for diverse approaches...")
            try:
                broader = await self.broad_search.find(frontier, theme, effective_min_year)
            except ThroughlineError as e:
                logger.warning(f"Broader search encountered error: {e}")
            logger.info(f"Broader search found {len(broader)} additional papers")

        by_author = await self._fetch_author_papers(frontier) if self.include_author_papers else []

        sources = [
            ("citations", citations),
            ("recommendations", recommendations),
            ("broader_search", broader),
            ("author_papers", by_author),
        ]
        seen = PaperIdentitySet()
        merged: List[Paper] = []
        for source_name, papers in sources:
            for paper in papers:
                self.context.candidate_pool.add(paper, source_name)
                if paper in seen:
                    continue
                seen.add(paper)
                merged.append(paper)
        logger.info(f"After merging: {len(merged)} unique papers")

        quality_filtered = [p for p in merged if self.passes_quality(p)]
        logger.info(
            f"Quality filter: {len(merged)} -> {len(quality_filtered)} papers "
            f"(removed {len(merged) - len(quality_filtered)} old low-citation papers)"
        )

        candidates = [
            p for p in quality_filtered
            if p.year is not None and effective_min_year <= p.year <= present
        ]
        if self.ordering == "scored":
            candidates = sorted(candidates, key=self.score, reverse=True)[: self.scored_cap]
        else:
            candidates = sorted(candidates, key=lambda p: p.year)
        logger.info(f"After year filtering (>= {effective_min_year}): {len(candidates)} papers")

        self.context.log_decision(
            "search",
            f'SEARCH from "{frontier.title[:50]}..."',
            searchPaper=frontier.title,
            found=(
                f"{len(candidates)} papers ({len(citations)} citing + "
                f"{len(recommendations)} recommended + {len(broader)} broader + "
                f"{len(by_author)} by authors)"
            ),
            seedYear=frontier.year,
            minYear=effective_min_year,
            afterMerge=len(merged),
            afterQualityFilter=len(quality_filtered),
            afterYearFilter=len(candidates),
            yearDistribution=year_distribution(quality_filtered),
            ordering=self.ordering,
        )
        return candidates
