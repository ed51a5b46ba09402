"""Lineage expansion task - grow a thread year by year and spawn sub-threads."""
from collections import Counter
from typing import List, Optional

from throughline.models.lineage import Thread
from throughline.models.paper import Paper
from throughline.models.session import SessionContext
from throughline.tasks.candidate_retrieval import CandidateRetriever
from throughline.tasks.relevance import RelevanceEngine
from throughline.utils.config import settings
from throughline.utils.errors import AnalysisCancelled
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

SUBTHREAD_REASON = "Divergent research direction - spawned new sub-thread"


class LineageExpander:
    """Depth-first, bounded expansion of one thread and its sub-threads.

    Each iteration searches from the thread's frontier paper, ranks and
    selects candidates, and appends the survivors. The current year never
    decreases and advances by one whenever an iteration adds nothing, so
    the loop ends by the present year or the per-thread paper cap.
    """

    def __init__(
        self,
        context: SessionContext,
        retriever: CandidateRetriever,
        relevance: RelevanceEngine,
        max_papers_per_year: Optional[int] = None,
    ):
        self.context = context
        self.retriever = retriever
        self.relevance = relevance
        self.max_papers_per_year = (
            max_papers_per_year if max_papers_per_year is not None else settings.max_papers_per_year
        )

    def _year_is_full(self, thread: Thread, year: Optional[int]) -> bool:
        if not self.max_papers_per_year or year is None:
            return False
        return Counter(p.year for p in thread.papers)[year] >= self.max_papers_per_year

    async def expand(self, thread: Thread, start_year: int) -> Thread:
        """
        Expand a thread from start_year up to the present year.

        Papers appended before a failure or cancellation stay on the thread.

        Raises:
            AnalysisCancelled: If the session is stopped
            ThroughlineError: On a fatal retrieval or ranking failure
        """
        await self.context.check_cancelled()

        with self.context.expansion_stack.entered(thread) as depth:
            self.context.report_progress(
                f"Expanding: {thread.theme[:50]}...",
                f"Searching papers from {start_year} -> present",
                None,
            )
            present_year = self.context.present_year
            logger.info(
                f"Expanding thread (depth {depth}) from {start_year} to {present_year}: "
                f"{thread.theme[:60]}"
            )
            self.context.log_decision(
                "expand_begin",
                f"BEGIN EXPAND THREAD (depth {depth}): {thread.theme[:80]}",
                spawnYear=thread.spawnYear,
                spawnPaper=thread.spawnPaper.title,
                startingPapers=[p.title for p in thread.papers],
            )

            current_year = start_year
            exhausted_frontier: Optional[Paper] = None
            iteration = 0

            while (
                current_year < present_year
                and len(thread.papers) < self.context.max_papers_per_thread
            ):
                iteration += 1
                await self.context.check_cancelled()

                frontier = thread.frontier
                if exhausted_frontier is not None and frontier.same_as(exhausted_frontier):
                    self.context.log_decision(
                        "loop_end",
                        f'THREAD EXHAUSTED: Already searched from "{frontier.title[:40]}..." '
                        f"with no results",
                        reason="No new papers were added, and we would be searching "
                        "from the same paper again",
                    )
                    break

                self.context.log_decision(
                    "loop_begin",
                    f"ITERATION {iteration}: Expand thread from year {current_year}",
                    currentYear=current_year,
                    threadPaperCount=len(thread.papers),
                    lastPaperInThread=frontier.title,
                )

                candidates = await self.retriever.retrieve(
                    frontier,
                    current_year,
                    first_expansion=iteration == 1,
                    theme=thread.theme,
                )
                await self.context.check_cancelled()

                if not candidates:
                    current_year += 1
                    self.context.log_decision(
                        "loop_end",
                        f"END ITERATION {iteration} (no papers found, trying next year)",
                        nextYear=current_year,
                    )
                    continue

                self.context.report_progress(
                    f"Ranking {len(candidates)} papers...",
                    "Using LLM to rank relevance to thread",
                    None,
                )
                ranked = await self.relevance.rank_by_relevance(candidates, thread.theme, frontier)
                await self.context.check_cancelled()

                self.context.report_progress(
                    "Selecting papers...",
                    f"Choosing successors from {len(ranked)} ranked candidates",
                    None,
                )
                selected = await self.relevance.select_successors(ranked, thread)
                await self.context.check_cancelled()

                self.context.log_decision(
                    "select_begin",
                    f"Will add up to {len(selected)} papers (LLM-selected from {len(ranked)} candidates)"
                    if selected
                    else f"LLM selected 0 papers from {len(ranked)} candidates - none deemed relevant",
                    selectedPapers=[p.title for p in selected],
                )

                added = 0
                for paper in sorted(selected, key=lambda p: p.year or current_year):
                    if len(thread.papers) >= self.context.max_papers_per_thread:
                        break
                    if not self._admit(thread, paper):
                        continue

                    thread.papers.append(paper)
                    self.context.claimed.add(paper)
                    current_year = max(current_year, paper.year or current_year)
                    added += 1
                    logger.info(f"Adding paper to thread: {paper.title} ({paper.year})")
                    self.context.log_decision(
                        "select",
                        f'ADD: "{paper.title}"',
                        year=paper.year,
                        authors=paper.author_names(5),
                        citations=paper.citationCount,
                        whySelected=paper.selectionReason,
                        threadTheme=thread.theme[:80],
                        threadNowHas=[p.title for p in thread.papers],
                    )

                    if not self.context.thread_cap_reached:
                        await self.detect_divergences(thread, paper)

                self.context.log_decision(
                    "loop_end",
                    f"END ITERATION {iteration}",
                    papersAdded=added,
                    threadNowHas=len(thread.papers),
                    nextSearchWillUse=thread.frontier.title,
                )

                if added == 0:
                    exhausted_frontier = frontier
                    current_year += 1

            logger.info(f"Expansion complete - thread now has {len(thread.papers)} papers")
            self.context.log_decision(
                "expand_end",
                f"END EXPAND THREAD (depth {depth}): {len(thread.papers)} papers total",
                finalPapers=[p.title for p in thread.papers],
                theme=thread.theme[:80],
                iterations=iteration,
            )
        return thread

    def _admit(self, thread: Thread, paper: Paper) -> bool:
        """Insertion-time guards, each logged as an explicit SKIP."""
        if paper in self.context.claimed:
            logger.info(f"Skipping already processed paper: {paper.title}")
            self.context.log_decision(
                "skip",
                f'SKIP: "{paper.title}" (already in another thread)',
                year=paper.year,
                reason="duplicate",
            )
            return False

        if self._year_is_full(thread, paper.year):
            self.context.log_decision(
                "skip",
                f'SKIP: "{paper.title}" (thread already has {self.max_papers_per_year} '
                f"papers from {paper.year})",
                year=paper.year,
                reason="year_cap",
            )
            return False

        return True

    async def detect_divergences(self, parent: Thread, paper: Paper) -> List[Thread]:
        """
        Spawn and fully expand a sub-thread for every theme of the paper that
        the divergence gate accepts, while the session-wide cap allows.

        Returns:
            Sub-threads appended to the parent
        """
        await self.context.check_cancelled()

        self.context.log_decision(
            "themes_extract",
            f'Extracting themes from "{paper.title[:50]}..." to check for sub-threads',
            paper=paper.title,
            parentTheme=parent.theme[:80],
        )
        self.context.report_progress(
            "Checking for new themes...", f"Analyzing: {paper.title[:50]}...", None
        )

        themes = await self.relevance.extract_themes(paper)
        await self.context.check_cancelled()

        self.context.log_decision(
            "themes_found",
            f"Found {len(themes)} themes in paper, checking each for relevance to seeds",
            themes=[t.description[:60] for t in themes],
        )

        spawned = []
        for theme in themes:
            if self.context.thread_cap_reached:
                break

            decision = await self.relevance.detect_divergence(
                theme.description, parent.theme, self.context.seed_papers
            )
            await self.context.check_cancelled()

            if not decision.isDivergence or self.context.thread_cap_reached:
                continue

            logger.info(f"Creating sub-thread: {theme.description[:60]}")
            sub_thread = Thread.spawn(
                theme.description, paper, SUBTHREAD_REASON, self.context.present_year
            )
            self.context.threads_spawned += 1

            try:
                await self.expand(sub_thread, sub_thread.spawnYear)
            except AnalysisCancelled:
                # keep whatever the sub-thread gathered before the stop
                parent.subThreads.append(sub_thread)
                raise

            if sub_thread.has_grown:
                parent.subThreads.append(sub_thread)
                spawned.append(sub_thread)
            else:
                self.context.threads_spawned -= 1
                self.context.log_decision(
                    "subthread_discarded",
                    f'Discarded sub-thread with no successors: "{theme.description[:60]}"',
                    spawnPaper=paper.title,
                )

        return spawned
