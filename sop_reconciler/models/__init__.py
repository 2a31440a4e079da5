"""Pydantic data models for the pipeline."""

from .conflict import (
    ConflictAnalysis,
    CorpusCandidate,
    CorpusQuery,
    MergeSuggestion,
    RelatedSOP,
    SOPComparison,
)
from .enums import (
    ConflictType,
    DocumentStatus,
    FileKind,
    MatchStrategy,
    MergeStrategy,
    SOPStatus,
    SuggestionAction,
)
from .extraction import DocumentChunk, ImageExtractionResult
from .records import (
    AnalyzeResult,
    ContentBlockDraft,
    ContentBlockRecord,
    DocumentRecord,
    GenerateResult,
    MergeResult,
    QAAnswer,
    ReviseResult,
    SOPRecord,
)
from .sop import ExtractedImage, Step, StructuredSOP, renumber_steps

__all__ = [
    # Enums
    "DocumentStatus",
    "FileKind",
    "ConflictType",
    "SuggestionAction",
    "MergeStrategy",
    "MatchStrategy",
    "SOPStatus",
    # SOP
    "Step",
    "StructuredSOP",
    "ExtractedImage",
    "renumber_steps",
    # Extraction
    "DocumentChunk",
    "ImageExtractionResult",
    # Conflicts
    "SOPComparison",
    "RelatedSOP",
    "MergeSuggestion",
    "ConflictAnalysis",
    "CorpusQuery",
    "CorpusCandidate",
    # Records and results
    "DocumentRecord",
    "SOPRecord",
    "ContentBlockDraft",
    "ContentBlockRecord",
    "GenerateResult",
    "AnalyzeResult",
    "MergeResult",
    "ReviseResult",
    "QAAnswer",
]
