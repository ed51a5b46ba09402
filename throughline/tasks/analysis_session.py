"""Analysis session - top-level orchestration from seed papers to a thread forest."""
import time
from typing import List, Optional, Sequence

from throughline.api.base import PaperSource
from throughline.llm.base import LanguageModelOracle
from throughline.models.lineage import AnalysisResult, SpawnInfo, Thread
from throughline.models.paper import Paper
from throughline.models.session import PaperIdentitySet, ProgressCallback, SessionContext
from throughline.tasks.broad_search import BroadSearch, build_broad_search
from throughline.tasks.candidate_retrieval import CandidateRetriever
from throughline.tasks.lineage_expansion import LineageExpander
from throughline.tasks.relevance import RelevanceEngine
from throughline.utils.cancellation import CancellationToken, ExternalCheck
from throughline.utils.config import settings
from throughline.utils.errors import AnalysisCancelled, ThroughlineError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

SEED_REASON = "Seed paper - starting point for this research thread"
POOL_SAMPLE_SIZE = 20


class AnalysisSession:
    """Trace research lineages from seed papers.

    One session object can run several analyses; every run starts from a
    clean SessionContext. The result is always structured: success,
    cancelled (with partial threads) or failed (with the error message).
    """

    def __init__(
        self,
        source: PaperSource,
        oracle: LanguageModelOracle,
        max_threads: Optional[int] = None,
        max_papers_per_thread: Optional[int] = None,
        max_papers_per_year: Optional[int] = None,
        clustering_criteria: Optional[str] = None,
        broad_search: Optional[BroadSearch] = None,
        broad_search_mode: Optional[str] = None,
        enable_pool_clustering: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
        is_cancelled: Optional[ExternalCheck] = None,
        present_year: Optional[int] = None,
        retriever_options: Optional[dict] = None,
    ):
        """
        Initialize session.

        Args:
            source: Paper metadata source
            oracle: Language model oracle
            max_threads: Session-wide cap on kept threads (root + sub + pool)
            max_papers_per_thread: Cap on papers in one thread
            max_papers_per_year: Per-thread cap on papers from one year (0 disables)
            clustering_criteria: Free text replacing the default lineage rubric
            broad_search: Explicit broad search strategy (overrides broad_search_mode)
            broad_search_mode: "off", "fixed", "llm" or "tools"
            enable_pool_clustering: Propose extra threads from unclaimed candidates
            progress_callback: Called as (message, detail, percent, snapshot)
            is_cancelled: Slower external stop predicate (sync or async)
            present_year: Upper bound on expansion (defaults to today's year)
            retriever_options: Keyword overrides for CandidateRetriever
        """
        self.source = source
        self.oracle = oracle
        self.cancellation = CancellationToken(external_check=is_cancelled)
        self.context = SessionContext(
            max_threads=max_threads or settings.max_threads,
            max_papers_per_thread=max_papers_per_thread or settings.max_papers_per_thread,
            clustering_criteria=(
                clustering_criteria
                if clustering_criteria is not None
                else settings.clustering_criteria
            ),
            present_year=present_year,
            cancellation=self.cancellation,
            progress_callback=progress_callback,
        )
        self.enable_pool_clustering = (
            enable_pool_clustering
            if enable_pool_clustering is not None
            else settings.enable_pool_clustering
        )

        source.bind_cancellation(self.cancellation)
        oracle.bind_cancellation(self.cancellation)

        self.relevance = RelevanceEngine(oracle, self.context)
        if broad_search is None:
            broad_search = build_broad_search(broad_search_mode, source, oracle, self.relevance)
        self.retriever = CandidateRetriever(
            source, self.context, broad_search=broad_search, **(retriever_options or {})
        )
        self.expander = LineageExpander(
            self.context, self.retriever, self.relevance, max_papers_per_year=max_papers_per_year
        )
        self._active_root: Optional[Thread] = None

    def stop(self) -> None:
        """Request cancellation; the running analysis unwinds at its next checkpoint."""
        self.cancellation.cancel()

    async def run(self, seed_papers: Sequence[Paper]) -> AnalysisResult:
        """
        Run a complete analysis.

        Args:
            seed_papers: User-supplied starting papers

        Returns:
            AnalysisResult carrying threads and the decision log on every path
        """
        start = time.monotonic()
        seeds = list(seed_papers)
        self.context.reset(seeds)
        self._active_root = None
        for seed in seeds:
            self.context.claimed.add(seed)

        logger.info(f"Starting analysis of {len(seeds)} seed papers")
        errors: List[str] = []

        try:
            await self._run_seeds(seeds, errors)
            await self._cluster_pool()
        except AnalysisCancelled as e:
            threads = list(self.context.threads)
            if self._active_root is not None:
                threads.append(self._active_root)
            self.context.log_decision("cancelled", str(e), threadCount=len(threads))
            logger.info(f"Analysis cancelled with {len(threads)} partial threads")
            return self._result("cancelled", threads, start, error=str(e))
        except Exception as e:
            logger.error(f"Analysis failed: {e}", exc_info=True)
            self.context.log_decision("error", f"Analysis failed: {e}")
            threads = list(self.context.threads)
            if self._active_root is not None:
                threads.append(self._active_root)
            return self._result("failed", threads, start, error=str(e))

        threads = sorted(self.context.threads, key=lambda t: t.spawnYear)
        if not threads and errors:
            return self._result("failed", threads, start, error=errors[-1])

        self.context.report_progress(
            "Complete!", f"Discovered {len(threads)} research threads", 100
        )
        logger.info(f"Analysis complete: {len(threads)} threads")
        return self._result("success", threads, start)

    def _result(
        self, status: str, threads: List[Thread], start: float, error: Optional[str] = None
    ) -> AnalysisResult:
        return AnalysisResult(
            status=status,
            threads=sorted(threads, key=lambda t: t.spawnYear),
            decision_log=list(self.context.decision_log.nodes),
            error=error,
            duration_seconds=round(time.monotonic() - start, 3),
            seed_count=len(self.context.seed_papers),
        )

    def _record_error(self, seed: Paper, theme: Optional[str], error: ThroughlineError, errors: List[str]):
        logger.error(f"Thread failed for '{seed.title[:50]}': {error}")
        errors.append(str(error))
        self.context.log_decision(
            "thread_error",
            f"Thread failed: {error}",
            seedPaper=seed.title,
            theme=theme,
            errorType=type(error).__name__,
        )

    async def _run_seeds(self, seeds: List[Paper], errors: List[str]) -> None:
        total = len(seeds)
        self.context.report_progress(
            "Starting analysis...", "Extracting research themes from seed papers", 0
        )

        for i, seed in enumerate(seeds, 1):
            await self.context.check_cancelled()
            if self.context.thread_cap_reached:
                logger.info(f"Thread cap ({self.context.max_threads}) reached, stopping")
                break

            await self._run_seed(seed, errors)
            self.context.report_progress(
                f"Processing seed {i}/{total}",
                f"Found {len(self.context.threads)} threads so far",
                round(i / total * 90, 1),
            )

    async def _run_seed(self, seed: Paper, errors: List[str]) -> None:
        self.context.report_progress(
            f"Analyzing: {seed.title[:60]}...", "Extracting research themes with LLM", None
        )
        self.context.log_decision(
            "themes_extract", f'Extracting themes from seed "{seed.title[:50]}"', paper=seed.title
        )

        try:
            themes = await self.relevance.extract_themes(seed)
        except ThroughlineError as e:
            self._record_error(seed, None, e, errors)
            return
        await self.context.check_cancelled()

        self.context.log_decision(
            "themes_found",
            f"Found {len(themes)} themes in seed paper",
            themes=[t.description for t in themes],
        )

        for theme in themes:
            if self.context.thread_cap_reached:
                break

            thread = Thread.spawn(theme.description, seed, SEED_REASON, self.context.present_year)
            self.context.threads_spawned += 1
            self._active_root = thread

            try:
                await self.expander.expand(thread, thread.spawnYear)
            except ThroughlineError as e:
                self._record_error(seed, theme.description, e, errors)
            self._active_root = None

            logger.info(
                f"Thread after expansion: {thread.theme[:60]} - papers: {len(thread.papers)}, "
                f"subthreads: {len(thread.subThreads)}"
            )
            if thread.has_grown:
                self.context.threads.append(thread)
            else:
                self.context.threads_spawned -= 1
                self.context.log_decision(
                    "thread_discarded",
                    f"Skipping thread (only 1 paper, no subthreads): {thread.theme[:60]}",
                )

    async def _cluster_pool(self) -> None:
        """Propose extra threads from high-signal papers no thread claimed."""
        if not self.enable_pool_clustering or self.context.thread_cap_reached:
            return

        unclaimed = self.context.candidate_pool.unclaimed(self.context.claimed)
        if len(unclaimed) < settings.pool_min_size:
            logger.debug(f"Only {len(unclaimed)} unclaimed candidates, skipping pool clustering")
            return

        self.context.report_progress(
            "Post-processing...",
            f"Clustering {len(unclaimed)} papers into additional threads",
            None,
        )
        sample = sorted(unclaimed, key=lambda p: p.citationCount, reverse=True)[:POOL_SAMPLE_SIZE]
        room = self.context.max_threads - self.context.threads_spawned

        try:
            suggestions = await self.relevance.cluster_leftovers(
                sample, self.context.threads, min(settings.pool_max_threads, room)
            )
        except ThroughlineError as e:
            logger.warning(f"Failed to cluster candidate pool: {e}")
            self.context.log_decision("pool_error", f"Pool clustering failed: {e}")
            return

        for suggestion in suggestions:
            if self.context.thread_cap_reached:
                break

            members = PaperIdentitySet()
            papers = []
            for index in suggestion.paper_indices:
                if index < 1 or index > len(sample):
                    continue
                paper = sample[index - 1]
                if paper in self.context.claimed or paper in members:
                    continue
                members.add(paper)
                papers.append(paper)

            if len(papers) < 2:
                self.context.log_decision(
                    "pool_thread_skipped",
                    f"Suggested pool thread has too few unclaimed papers: {suggestion.theme}",
                    paperCount=len(papers),
                )
                continue

            papers.sort(key=lambda p: p.year or self.context.present_year)
            papers = papers[: self.context.max_papers_per_thread]
            reason = f"Clustered from candidate pool: {suggestion.description or suggestion.theme}"
            thread = Thread(
                theme=suggestion.theme,
                spawnYear=papers[0].year or self.context.present_year,
                spawnPaper=SpawnInfo.from_paper(papers[0]),
                papers=[p.with_reason(reason) for p in papers],
            )
            for paper in papers:
                self.context.claimed.add(paper)
            self.context.threads_spawned += 1
            self.context.threads.append(thread)
            self.context.log_decision(
                "pool_thread",
                f"Added thread from candidate pool: {suggestion.theme}",
                description=suggestion.description,
                reasoning=suggestion.reasoning,
                papers=[p.title for p in papers],
            )
