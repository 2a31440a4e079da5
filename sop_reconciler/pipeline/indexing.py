"""Content blocks: the searchable per-step fragments of a stored SOP."""

from typing import Iterable

import structlog

from sop_reconciler.llm import LanguageModel
from sop_reconciler.models import ContentBlockDraft, StructuredSOP
from sop_reconciler.storage.repository import SOPRepository
from sop_reconciler.storage.vector_index import ContentBlockIndex

logger = structlog.get_logger(__name__)


def build_content_blocks(sop: StructuredSOP) -> list[ContentBlockDraft]:
    """One ``step`` block per step, computed in memory before an atomic replace."""
    return [
        ContentBlockDraft(
            block_type="step",
            content=step.block_text,
            block_order=step.order,
            metadata={
                "responsible": step.responsible,
                "conditions": step.conditions,
                "notes": step.notes,
            },
        )
        for step in sop.renumbered().steps
    ]


class ContentBlockIndexer:
    """Keeps the vector index in step with the stored content blocks.

    Indexing runs after the relational transaction has committed and is best
    effort: failures are logged and never fail the calling operation.
    """

    def __init__(
        self,
        llm: LanguageModel,
        vector_index: ContentBlockIndex,
        repository: SOPRepository,
    ):
        self.llm = llm
        self.vector_index = vector_index
        self.repository = repository

    def index_sop(self, sop_id: int) -> int:
        """Replace the embeddings of one SOP's blocks. Raises on failure."""
        blocks = self.repository.list_content_blocks(sop_id=sop_id)
        self.vector_index.delete_sop(sop_id)
        if not blocks:
            return 0

        embeddings = [self.llm.embed(block.content) for block in blocks]
        return self.vector_index.upsert(
            ids=[f"block_{block.id}" for block in blocks],
            embeddings=embeddings,
            documents=[block.content for block in blocks],
            metadatas=[
                {
                    "sop_id": block.sop_id,
                    "block_id": block.id,
                    "language": block.language,
                    "block_order": block.block_order,
                }
                for block in blocks
            ],
        )

    def refresh(self, sop_ids: Iterable[int]) -> int:
        """Re-embed the given SOPs, logging and skipping failures."""
        if not self.llm.supports_embeddings:
            logger.debug("vector_indexing_skipped", reason="embeddings unsupported")
            return 0

        total = 0
        for sop_id in sop_ids:
            try:
                total += self.index_sop(sop_id)
            except Exception as e:
                logger.warning("vector_index_refresh_failed", sop_id=sop_id, error=str(e))

        logger.info("vector_index_refreshed", blocks=total)
        return total

    def remove(self, sop_id: int) -> None:
        try:
            self.vector_index.delete_sop(sop_id)
        except Exception as e:
            logger.warning("vector_index_remove_failed", sop_id=sop_id, error=str(e))

    def backfill(self) -> int:
        """Embed every stored content block."""
        sop_ids = sorted({block.sop_id for block in self.repository.list_content_blocks()})
        logger.info("vector_backfill_started", sops=len(sop_ids))
        return self.refresh(sop_ids)
