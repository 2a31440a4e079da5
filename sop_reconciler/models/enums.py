"""Enumeration types for the pipeline models."""

from enum import Enum


class DocumentStatus(str, Enum):
    """Processing lifecycle of an uploaded document."""

    UPLOADED = "uploaded"
    PARSING = "parsing"
    PARSED = "parsed"
    FAILED = "failed"


class FileKind(str, Enum):
    """Document formats the extractor understands."""

    PDF = "pdf"
    DOCX = "docx"


class ConflictType(str, Enum):
    """Relationship between a new SOP and an existing one."""

    DUPLICATE = "duplicate"
    PARTIAL_OVERLAP = "partial_overlap"
    CONFLICTING = "conflicting"
    COMPLEMENTARY = "complementary"


class SuggestionAction(str, Enum):
    """What the caller could do with a newly analyzed SOP."""

    MERGE = "merge"
    REPLACE = "replace"
    KEEP_BOTH = "keep_both"
    UPDATE_EXISTING = "update_existing"


class MergeStrategy(str, Enum):
    """Advisory instruction passed to the merge prompt."""

    MERGE_ALL = "merge_all"
    PREFER_NEW = "prefer_new"
    PREFER_EXISTING = "prefer_existing"
    SMART_COMBINE = "smart_combine"


class MatchStrategy(str, Enum):
    """Retrieval strategy that produced a corpus candidate."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    STRUCTURAL = "structural"


class SOPStatus(str, Enum):
    """Publication status of a stored SOP record."""

    DRAFT = "draft"
    APPROVED = "approved"
