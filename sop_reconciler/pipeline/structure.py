"""
Structure extraction: document text to StructuredSOP.

Long documents are split into paragraph-aligned chunks, each chunk is
extracted independently, and the partial SOPs are reduced into one. A failed
chunk is skipped; extraction only fails when every chunk fails.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import structlog

from sop_reconciler.config import Settings
from sop_reconciler.config.prompts import (
    CHUNK_NOTE,
    EXTRACTION_SYSTEM_PROMPT,
    EXTRACTION_USER_PROMPT,
    language_name,
)
from sop_reconciler.errors import ExtractionError, ModelError
from sop_reconciler.extraction.chunker import ChunkingConfig, chunk_text
from sop_reconciler.llm import LanguageModel, validate_payload
from sop_reconciler.models import DocumentChunk, StructuredSOP, renumber_steps

logger = structlog.get_logger(__name__)

UNTITLED_SOP = "Untitled SOP"


def reduce_chunk_results(sops: list[StructuredSOP]) -> StructuredSOP:
    """Combine per-chunk SOPs (in chunk order) into one.

    The first SOP supplies title, department and category. Non-empty
    descriptions are joined with a blank line. Steps are concatenated and
    renumbered 1..N; steps that straddle a chunk boundary are not coalesced.
    """
    if not sops:
        raise ExtractionError("No chunk results to reduce")

    first = sops[0]
    descriptions = [sop.description for sop in sops if sop.description and sop.description.strip()]
    steps = [step for sop in sops for step in sop.steps]
    images = [image for sop in sops for image in sop.images]

    return StructuredSOP(
        title=first.title,
        department=first.department,
        category=first.category,
        description="\n\n".join(descriptions) or None,
        steps=renumber_steps(steps),
        images=images,
    )


class StructureExtractor:
    """Extracts a StructuredSOP from cleaned document text with one model call per chunk."""

    def __init__(self, llm: LanguageModel, settings: Settings):
        self.llm = llm
        self.language = settings.primary_language
        self.workers = max(1, settings.chunk_extraction_workers)
        self.chunking = ChunkingConfig(max_chunk_chars=settings.chunk_max_chars)

    def extract(
        self,
        text: str,
        chunk_number: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> StructuredSOP:
        """Extract a whole SOP from ``text`` in a single call.

        Raises:
            ExtractionError: If the model call fails or returns invalid JSON.
        """
        chunk_note = (
            CHUNK_NOTE.format(chunk_number=chunk_number, total_chunks=total_chunks)
            if chunk_number is not None
            else ""
        )
        system_prompt = EXTRACTION_SYSTEM_PROMPT.format(language=language_name(self.language))
        user_prompt = EXTRACTION_USER_PROMPT.format(chunk_note=chunk_note, text=text)

        try:
            payload = self.llm.complete_json(system_prompt, user_prompt, context_name="sop_extraction")
            if isinstance(payload, dict):
                # Images come from the document, never from the model
                payload.pop("images", None)
                if not payload.get("title"):
                    logger.warning("extraction_missing_title", chunk=chunk_number)
                    payload["title"] = UNTITLED_SOP
            sop = validate_payload(payload, StructuredSOP, "sop_extraction")
        except ModelError as e:
            raise ExtractionError(f"SOP extraction failed: {e}") from e

        sop = sop.renumbered()
        logger.info(
            "sop_extracted",
            chunk=chunk_number,
            title=sop.title,
            steps=len(sop.steps),
        )
        return sop

    def extract_with_chunking(self, text: str) -> StructuredSOP:
        """Extract an SOP of any length, chunking when it exceeds the limit."""
        if not text or not text.strip():
            raise ExtractionError("Document contains no extractable text")

        chunks = chunk_text(text, self.chunking)
        if len(chunks) <= 1:
            return self.extract(text)

        logger.info("chunked_extraction_started", chunks=len(chunks), workers=self.workers)

        if self.workers > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                # map() yields in submission order, so chunk order is kept
                results = list(pool.map(lambda c: self._extract_chunk(c, len(chunks)), chunks))
        else:
            results = [self._extract_chunk(chunk, len(chunks)) for chunk in chunks]

        successful = [sop for sop in results if sop is not None]
        if not successful:
            raise ExtractionError(f"All {len(chunks)} chunks failed extraction")

        reduced = reduce_chunk_results(successful)
        logger.info(
            "chunked_extraction_complete",
            chunks=len(chunks),
            failed_chunks=len(chunks) - len(successful),
            steps=len(reduced.steps),
        )
        return reduced

    def _extract_chunk(self, chunk: DocumentChunk, total_chunks: int) -> Optional[StructuredSOP]:
        try:
            return self.extract(
                chunk.text,
                chunk_number=chunk.chunk_index + 1,
                total_chunks=total_chunks,
            )
        except ExtractionError as e:
            logger.warning(
                "chunk_extraction_failed",
                chunk=chunk.chunk_index + 1,
                total_chunks=total_chunks,
                error=str(e),
            )
            return None
