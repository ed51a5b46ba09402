"""Pydantic models for papers as returned by Semantic Scholar or given as seeds."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_PLAUSIBLE_ID_LENGTH = 10


class Author(BaseModel):
    """Author information."""

    model_config = ConfigDict(populate_by_name=True)

    authorId: Optional[str] = None
    name: str = "Unknown"

    @field_validator("name", mode="before")
    @classmethod
    def default_name(cls, v):
        return v or "Unknown"


class Paper(BaseModel):
    """One bibliographic work.

    Field names follow the Semantic Scholar wire format so API records
    validate directly. Two papers are the same entity when their ids match,
    or, when either id is absent, when their titles match exactly.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    paperId: Optional[str] = None
    title: str
    abstract: str = ""
    year: Optional[int] = None
    authors: List[Author] = Field(default_factory=list)
    citationCount: int = 0
    selectionReason: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Paper title must be non-empty")
        return v

    @field_validator("abstract", mode="before")
    @classmethod
    def default_abstract(cls, v):
        return v or ""

    @field_validator("citationCount", mode="before")
    @classmethod
    def default_citations(cls, v):
        return max(int(v or 0), 0)

    @field_validator("authors", mode="before")
    @classmethod
    def default_authors(cls, v):
        return v or []

    @property
    def key(self) -> str:
        """Single-string identity used for maps (id, else title)."""
        return self.paperId or self.title

    @property
    def has_plausible_id(self) -> bool:
        return bool(self.paperId) and len(self.paperId) >= MIN_PLAUSIBLE_ID_LENGTH

    def same_as(self, other: "Paper") -> bool:
        if self.paperId and other.paperId:
            return self.paperId == other.paperId
        return self.title == other.title

    def author_names(self, limit: Optional[int] = None) -> str:
        authors = self.authors if limit is None else self.authors[:limit]
        return ", ".join(a.name for a in authors)

    def with_reason(self, reason: str) -> "Paper":
        """Copy carrying the reason an automated step chose this paper."""
        return self.model_copy(update={"selectionReason": reason})


def parse_paper(raw: Optional[Dict[str, Any]]) -> Optional[Paper]:
    """Validate a raw API record, returning None for unusable records."""
    if not raw or not raw.get("title"):
        return None
    try:
        return Paper.model_validate(raw)
    except ValueError:
        return None
