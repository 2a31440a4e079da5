"""Paragraph-aware text chunking for bounded-context LLM extraction."""

from dataclasses import dataclass

import structlog
import tiktoken

from sop_reconciler.models import DocumentChunk

logger = structlog.get_logger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"

# Keeps a chunk plus the extraction prompt inside a typical context window.
DEFAULT_MAX_CHUNK_CHARS = 12000


@dataclass
class ChunkingConfig:
    """Configuration for document chunking."""

    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    encoding_name: str = "cl100k_base"


def split_into_chunks(text: str, max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> list[str]:
    """Split text into chunks on paragraph boundaries.

    A chunk accumulates paragraphs until appending the next one would exceed
    ``max_chunk_chars``. A paragraph that alone exceeds the limit is hard-cut
    into limit-sized slices, each its own chunk; the tail slice is never
    merged with the following paragraph. Nothing is trimmed, so joining the
    chunks with ``"\\n\\n"`` gives back the input whenever no paragraph was cut.

    Args:
        text: Cleaned document text.
        max_chunk_chars: Upper bound on chunk length.

    Returns:
        Chunks in document order. Empty for blank text.
    """
    if max_chunk_chars < 1:
        raise ValueError("max_chunk_chars must be positive")

    if not text.strip():
        return []

    if len(text) <= max_chunk_chars:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0

    def flush() -> None:
        nonlocal current, current_len
        if current:
            chunks.append(PARAGRAPH_SEPARATOR.join(current))
        current = []
        current_len = 0

    for para in text.split(PARAGRAPH_SEPARATOR):
        separator_len = len(PARAGRAPH_SEPARATOR) if current else 0

        if current_len + separator_len + len(para) <= max_chunk_chars:
            current.append(para)
            current_len += separator_len + len(para)
            continue

        flush()

        if len(para) <= max_chunk_chars:
            current.append(para)
            current_len = len(para)
            continue

        # Single paragraph over the limit: hard cut
        logger.debug("paragraph_hard_cut", paragraph_chars=len(para), limit=max_chunk_chars)
        for start in range(0, len(para), max_chunk_chars):
            chunks.append(para[start:start + max_chunk_chars])

    flush()

    return chunks


def chunk_text(text: str, config: ChunkingConfig | None = None) -> list[DocumentChunk]:
    """Split text and annotate each chunk with its index and token estimate.

    Args:
        text: Cleaned document text.
        config: Chunking configuration.

    Returns:
        List of document chunks.
    """
    config = config or ChunkingConfig()

    logger.info(
        "chunking_document",
        total_chars=len(text),
        max_chunk_chars=config.max_chunk_chars,
    )

    chunks = [
        DocumentChunk(
            chunk_index=index,
            text=chunk,
            char_count=len(chunk),
            token_count=count_tokens(chunk, config.encoding_name),
        )
        for index, chunk in enumerate(split_into_chunks(text, config.max_chunk_chars))
    ]

    logger.info("chunking_complete", num_chunks=len(chunks))

    return chunks


def count_tokens(text: str, encoding_name: str = "cl100k_base") -> int:
    """Count tokens in text.

    Args:
        text: Text to count.
        encoding_name: Tiktoken encoding name.

    Returns:
        Token count.
    """
    try:
        encoding = tiktoken.get_encoding(encoding_name)
        return len(encoding.encode(text))
    except Exception:
        # Fallback estimate
        return len(text) // 4
