"""Models for corpus matching and conflict classification."""

from typing import Any, Optional

from pydantic import Field, field_validator

from .enums import ConflictType, MatchStrategy, SuggestionAction
from .sop import CamelModel, Step, StructuredSOP


class SOPComparison(CamelModel):
    """Language model judgment for one (new SOP, existing SOP) pair."""

    similarity: float = Field(..., ge=0.0, le=1.0)
    conflict_type: ConflictType
    details: str = ""

    @field_validator("conflict_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_").replace(" ", "_")
        return value

    @field_validator("details", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class RelatedSOP(CamelModel):
    """An existing SOP judged related to the new one (similarity above threshold)."""

    id: int
    title: str
    department: str = ""
    category: str = ""
    similarity: float = Field(..., ge=0.0, le=1.0)
    conflict_type: ConflictType
    details: str = ""


class MergeSuggestion(CamelModel):
    """A recommended next action for the caller."""

    action: SuggestionAction
    target_sop_id: Optional[int] = None
    reason: str
    details: str = ""


class ConflictAnalysis(CamelModel):
    """Aggregate verdict over all related candidates."""

    has_conflicts: bool = False
    has_duplicates: bool = False
    related_sops: list[RelatedSOP] = Field(default_factory=list)
    suggestions: list[MergeSuggestion] = Field(default_factory=list)


class CorpusQuery(CamelModel):
    """What the corpus matcher searches for."""

    text: str
    language: str
    department: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_sop(cls, sop: StructuredSOP, language: str) -> "CorpusQuery":
        """Query text is the title first, then description and step titles."""
        parts = [sop.title]
        if sop.description:
            parts.append(sop.description)
        parts.extend(step.title for step in sop.steps)
        return cls(
            text="\n".join(parts),
            language=language,
            department=sop.department or None,
            category=sop.category or None,
        )


class CorpusCandidate(CamelModel):
    """An existing SOP returned by one of the retrieval strategies."""

    sop_id: int
    title: str
    department: str = ""
    category: str = ""
    steps: list[Step] = Field(default_factory=list)
    score: float = 0.0
    strategy: MatchStrategy
    snippet: Optional[str] = None
