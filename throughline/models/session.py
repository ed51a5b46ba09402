"""Session-scoped mutable state shared by every analysis component."""
import datetime
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from throughline.models.lineage import DecisionNode, Thread, ThreadSummary
from throughline.models.paper import Paper
from throughline.utils.cancellation import CancellationToken
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[str, Optional[str], Optional[float], List[ThreadSummary]], Any]


class PaperIdentitySet:
    """Set of papers under the id-or-title identity rule."""

    def __init__(self):
        self._ids = set()
        self._titles = set()
        self._idless_titles = set()

    def add(self, paper: Paper) -> None:
        if paper.paperId:
            self._ids.add(paper.paperId)
        else:
            self._idless_titles.add(paper.title)
        self._titles.add(paper.title)

    def __contains__(self, paper: Paper) -> bool:
        if paper.paperId and paper.paperId in self._ids:
            return True
        if paper.title in self._idless_titles:
            return True
        # an id-less paper matches any member with the same title
        return not paper.paperId and paper.title in self._titles

    def __len__(self) -> int:
        return len(self._ids) + len(self._idless_titles)


class CandidatePool:
    """Every paper seen by any retrieval call, keyed by identity."""

    def __init__(self):
        self._entries: Dict[str, Dict[str, Any]] = {}

    def add(self, paper: Paper, source: str) -> None:
        if paper.key not in self._entries:
            self._entries[paper.key] = {
                "paper": paper,
                "source": source,
                "discovered_at": datetime.datetime.now().isoformat(),
            }

    def unclaimed(self, claimed: PaperIdentitySet) -> List[Paper]:
        return [e["paper"] for e in self._entries.values() if e["paper"] not in claimed]

    def source_of(self, paper: Paper) -> Optional[str]:
        entry = self._entries.get(paper.key)
        return entry["source"] if entry else None

    def __len__(self) -> int:
        return len(self._entries)


class ExpansionStack:
    """LIFO chain of threads currently being expanded."""

    def __init__(self):
        self._threads: List[Thread] = []

    @contextmanager
    def entered(self, thread: Thread) -> Iterator[int]:
        """Push for the duration of the block; pop on every exit path."""
        self._threads.append(thread)
        try:
            yield len(self._threads)
        finally:
            self._threads.pop()

    @property
    def depth(self) -> int:
        return len(self._threads)

    @property
    def current(self) -> Optional[Thread]:
        return self._threads[-1] if self._threads else None

    @property
    def root(self) -> Optional[Thread]:
        return self._threads[0] if self._threads else None

    def __iter__(self):
        return iter(list(self._threads))


class DecisionLog:
    """Ordered, typed audit trail of retrieval/ranking/selection decisions."""

    def __init__(self):
        self.nodes: List[DecisionNode] = []

    def add(self, type: str, message: str, **data) -> DecisionNode:
        node = DecisionNode(type=type, message=message, data=data)
        self.nodes.append(node)
        return node

    def of_type(self, type: str) -> List[DecisionNode]:
        return [n for n in self.nodes if n.type == type]

    def __len__(self) -> int:
        return len(self.nodes)


class SessionContext:
    """All session-scoped state, passed by reference into every component."""

    def __init__(
        self,
        max_threads: int = 10,
        max_papers_per_thread: int = 20,
        clustering_criteria: Optional[str] = None,
        present_year: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.max_threads = max_threads
        self.max_papers_per_thread = max_papers_per_thread
        self.clustering_criteria = clustering_criteria
        self._present_year = present_year
        self.cancellation = cancellation or CancellationToken()
        self.progress_callback = progress_callback
        self.reset()

    def reset(self, seed_papers: Sequence[Paper] = ()) -> None:
        """Start a fresh session: every collection is emptied."""
        self.threads: List[Thread] = []
        self.claimed = PaperIdentitySet()
        self.candidate_pool = CandidatePool()
        self.decision_log = DecisionLog()
        self.expansion_stack = ExpansionStack()
        self.seed_papers: List[Paper] = list(seed_papers)
        # kept plus in-progress threads; a discarded thread gives its slot back
        self.threads_spawned = 0
        self.cancellation.reset()

    @property
    def present_year(self) -> int:
        return self._present_year or datetime.date.today().year

    @property
    def thread_cap_reached(self) -> bool:
        return self.threads_spawned >= self.max_threads

    async def check_cancelled(self) -> None:
        await self.cancellation.raise_if_cancelled()

    def log_decision(self, type: str, message: str, **data) -> DecisionNode:
        data.setdefault("stackDepth", self.expansion_stack.depth)
        return self.decision_log.add(type, message, **data)

    def snapshot(self) -> List[ThreadSummary]:
        active = [t.summary() for t in self.expansion_stack]
        completed = [t.summary(completed=True) for t in self.threads]
        return active + completed

    def report_progress(
        self, message: str, detail: Optional[str] = None, percent: Optional[float] = None
    ) -> None:
        """Emit a progress event; percent=None means indeterminate."""
        logger.debug(f"Progress: {message} | {detail} | {percent}")
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(message, detail, percent, self.snapshot())
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
