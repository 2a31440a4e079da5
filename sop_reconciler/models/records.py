"""Persistence records and pipeline results returned to callers."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .conflict import ConflictAnalysis
from .enums import DocumentStatus, SOPStatus
from .sop import StructuredSOP


class DocumentRecord(BaseModel):
    """An uploaded source document. The core only transitions its status."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    file_url: str
    file_type: str
    status: DocumentStatus
    raw_content: Optional[str] = None
    parsed_content: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    uploaded_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def analyzed_sop(self) -> Optional[StructuredSOP]:
        """The SOP stored by analysis or generation, if any."""
        payload = (self.parsed_content or {}).get("sop")
        if not payload:
            return None
        return StructuredSOP.model_validate(payload)


class SOPRecord(BaseModel):
    """One language version of a persisted SOP."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    document_id: Optional[int] = None
    title: str
    description: str = ""
    department: str = ""
    category: str = ""
    version: str
    language: str
    content: dict[str, Any] = Field(default_factory=dict)
    status: SOPStatus = SOPStatus.APPROVED
    created_by: Optional[int] = None
    translation_pair_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def structured(self) -> StructuredSOP:
        """Rebuild the structured SOP from the stored columns and content."""
        content = dict(self.content or {})
        content.setdefault("title", self.title)
        content.setdefault("department", self.department)
        content.setdefault("category", self.category)
        content.setdefault("description", self.description)
        content.setdefault("steps", [])
        return StructuredSOP.model_validate(content).renumbered()


class ContentBlockDraft(BaseModel):
    """A searchable fragment computed in memory before an atomic replace."""

    block_type: str = "step"
    content: str
    block_order: int = Field(..., ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GenerateResult(BaseModel):
    """Outcome of generating a bilingual SOP pair from a document."""

    sop_primary: SOPRecord
    sop_secondary: SOPRecord
    step_count: int
    translation_step_mismatch: bool = False


class AnalyzeResult(BaseModel):
    """Outcome of conflict analysis; the caller decides merge vs. create-new."""

    structured_sop: StructuredSOP
    conflict_analysis: ConflictAnalysis


class MergeResult(BaseModel):
    """Outcome of merging a document's SOP into an existing SOP."""

    merged_sop: StructuredSOP
    sop: SOPRecord
    sop_secondary: Optional[SOPRecord] = None
    image_count: int
    merge_notes: Optional[str] = None


class ReviseResult(BaseModel):
    """Outcome of editing an SOP and re-translating its partner."""

    sop: SOPRecord
    sop_partner: Optional[SOPRecord] = None


class QAAnswer(BaseModel):
    """Answer to a free-text question over the SOP corpus."""

    answer: str
    related_sops: list[dict[str, Any]] = Field(default_factory=list)
    found_results: bool


class ContentBlockRecord(ContentBlockDraft):
    """A persisted content block, with the language of its owning SOP."""

    id: int
    sop_id: int
    language: str
