"""Document text extraction and chunking."""

from .chunker import ChunkingConfig, chunk_text, count_tokens, split_into_chunks
from .document_extractor import DocumentExtractor, clean_text, resolve_file_kind

__all__ = [
    "ChunkingConfig",
    "chunk_text",
    "count_tokens",
    "split_into_chunks",
    "DocumentExtractor",
    "clean_text",
    "resolve_file_kind",
]
