"""Models for document extraction and text chunking."""

from typing import Optional

from pydantic import BaseModel, Field

from .sop import ExtractedImage


class ImageExtractionResult(BaseModel):
    """Images found in a document, with optional placeholder-annotated text."""

    images: list[ExtractedImage] = Field(default_factory=list)
    text_with_placeholders: Optional[str] = Field(
        None, description="Document text with [IMAGE n] markers where images occur"
    )


class DocumentChunk(BaseModel):
    """A chunk of document text for LLM processing."""

    chunk_index: int = Field(..., ge=0, description="Order index of chunk")
    text: str = Field(..., description="Chunk text content")
    char_count: int = Field(..., ge=0, description="Length in characters")
    token_count: int = Field(..., ge=0, description="Estimated token count")
