"""Document-to-SOP reconciliation pipeline."""

from .conflicts import ConflictClassifier, generate_suggestions
from .indexing import ContentBlockIndexer, build_content_blocks
from .matcher import STOP_WORDS, CorpusMatcher, extract_keywords
from .merger import SOPMerger
from .orchestrator import PipelineServices, SOPPipeline, build_services, bump_version
from .qa import QuestionAnswerer
from .structure import StructureExtractor, reduce_chunk_results
from .translator import Translator

__all__ = [
    # Stages
    "StructureExtractor",
    "reduce_chunk_results",
    "Translator",
    "CorpusMatcher",
    "extract_keywords",
    "STOP_WORDS",
    "ConflictClassifier",
    "generate_suggestions",
    "SOPMerger",
    "build_content_blocks",
    "ContentBlockIndexer",
    "QuestionAnswerer",
    # Orchestration
    "SOPPipeline",
    "PipelineServices",
    "build_services",
    "bump_version",
]
