"""Pydantic models for threads, decisions and analysis results."""
import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from throughline.models.paper import Paper


def generate_thread_id() -> str:
    return f"thread_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class Theme(BaseModel):
    """A research direction extracted from one paper."""

    description: str
    keywords: List[str] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        if not v or not v.strip():
            raise ValueError("Theme description must be non-empty")
        return v.strip()

    @field_validator("keywords", mode="before")
    @classmethod
    def default_keywords(cls, v):
        return [str(k) for k in (v or [])]


class SpawnInfo(BaseModel):
    """The paper that started a thread."""

    title: str
    year: Optional[int] = None
    authors: List[str] = Field(default_factory=list)

    @classmethod
    def from_paper(cls, paper: Paper) -> "SpawnInfo":
        return cls(
            title=paper.title,
            year=paper.year,
            authors=[a.name for a in paper.authors],
        )


class Thread(BaseModel):
    """One lineage: chronological papers continuing a theme, plus sub-threads."""

    id: str = Field(default_factory=generate_thread_id)
    theme: str
    spawnYear: int
    spawnPaper: SpawnInfo
    papers: List[Paper]
    subThreads: List["Thread"] = Field(default_factory=list)

    @classmethod
    def spawn(cls, theme: str, paper: Paper, reason: str, default_year: int) -> "Thread":
        year = paper.year or default_year
        return cls(
            theme=theme,
            spawnYear=year,
            spawnPaper=SpawnInfo.from_paper(paper),
            papers=[paper.with_reason(reason)],
        )

    @property
    def frontier(self) -> Paper:
        return self.papers[-1]

    @property
    def has_grown(self) -> bool:
        """Whether the thread is worth keeping (discard rule)."""
        return len(self.papers) > 1 or len(self.subThreads) > 0

    def iter_threads(self):
        """This thread and every descendant, depth-first."""
        yield self
        for sub in self.subThreads:
            yield from sub.iter_threads()

    def summary(self, completed: bool = False) -> "ThreadSummary":
        return ThreadSummary(
            theme=self.theme,
            spawnYear=self.spawnYear,
            spawnPaper=self.spawnPaper,
            papers=[
                PaperSummary(
                    title=p.title, year=p.year, selectionReason=p.selectionReason
                )
                for p in self.papers
            ],
            subThreadCount=len(self.subThreads),
            completed=completed,
        )


class PaperSummary(BaseModel):
    title: str
    year: Optional[int] = None
    selectionReason: Optional[str] = None


class ThreadSummary(BaseModel):
    """Read-only projection of a thread for live progress display."""

    theme: str
    spawnYear: int
    spawnPaper: SpawnInfo
    papers: List[PaperSummary]
    subThreadCount: int = 0
    completed: bool = False


class DecisionNode(BaseModel):
    """One entry in the decision log (debug tree)."""

    type: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class SelectionDecision(BaseModel):
    """ADD/SKIP verdict for one candidate."""

    index: int
    decision: str
    reason: str = ""

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v):
        return str(v or "").strip().upper()

    @field_validator("reason", mode="before")
    @classmethod
    def default_reason(cls, v):
        return str(v or "")


class DivergenceDecision(BaseModel):
    """Verdict on whether a candidate theme justifies a new sub-thread."""

    isDivergence: bool
    reason: str
    newTheme: Optional[str] = None


class ClusterSuggestion(BaseModel):
    """Additional thread proposed from unclaimed candidate-pool papers."""

    theme: str
    description: str = ""
    reasoning: str = ""
    paper_indices: List[int] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Terminal output of a session: always structured, even on failure."""

    status: Literal["success", "cancelled", "failed"]
    threads: List[Thread] = Field(default_factory=list)
    decision_log: List[DecisionNode] = Field(default_factory=list)
    error: Optional[str] = None
    duration_seconds: float = 0.0
    seed_count: int = 0

    @property
    def success(self) -> bool:
        return self.status == "success"


Thread.model_rebuild()
