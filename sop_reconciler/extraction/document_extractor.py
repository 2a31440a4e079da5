"""Text and image extraction from PDF (pdfplumber) and Word (python-docx) files."""

import io
import re
from typing import Any, Iterator

import docx
import pdfplumber
import structlog
from docx.oxml.ns import qn
from docx.table import Table

from sop_reconciler.errors import ExtractionError, UnsupportedFormatError
from sop_reconciler.models import ExtractedImage, FileKind, ImageExtractionResult
from sop_reconciler.storage.blob_store import BlobStore, generate_unique_filename

logger = structlog.get_logger(__name__)

_BLIP_TAG = qn("a:blip")
_EMBED_ATTR = qn("r:embed")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")
_EXTRA_SPACES = re.compile(r" {2,}")

PDF_IMAGE_RESOLUTION = 150


def clean_text(text: str) -> str:
    """Collapse runs of blank lines and spaces; keep paragraph breaks."""
    text = _EXTRA_BLANK_LINES.sub("\n\n", text)
    text = _EXTRA_SPACES.sub(" ", text)
    return text.strip()


def resolve_file_kind(file_kind: str | FileKind) -> FileKind:
    """Map a file type string such as ``"PDF"`` or ``".docx"`` to a FileKind."""
    try:
        return FileKind(str(getattr(file_kind, "value", file_kind)).lower().lstrip("."))
    except ValueError as e:
        raise UnsupportedFormatError(f"Unsupported file type: {file_kind}") from e


class DocumentExtractor:
    """Reads source documents from the blob store and extracts text and images."""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    def parse(self, blob_ref: str, file_kind: str | FileKind) -> str:
        """Extract plain text from a stored document.

        Raises:
            UnsupportedFormatError: For anything but pdf/docx.
            ExtractionError: If the file cannot be read or parsed.
        """
        kind = resolve_file_kind(file_kind)
        data = self._load(blob_ref)

        logger.info("parsing_document", file_kind=kind.value, bytes=len(data))

        try:
            if kind is FileKind.PDF:
                text = _parse_pdf(data)
            else:
                text = _parse_docx(data)
        except Exception as e:
            logger.error("document_parse_failed", file_kind=kind.value, error=str(e))
            raise ExtractionError(f"Failed to parse {kind.value}: {e}") from e

        logger.info("document_parsed", file_kind=kind.value, chars=len(text))
        return text

    def extract_images(self, blob_ref: str, file_kind: str | FileKind) -> ImageExtractionResult:
        """Extract embedded images and upload them to the blob store.

        Best effort: unsupported formats and extraction failures yield an
        empty result instead of an error.
        """
        try:
            kind = resolve_file_kind(file_kind)
        except UnsupportedFormatError:
            logger.info("image_extraction_unsupported", file_kind=str(file_kind))
            return ImageExtractionResult()

        try:
            data = self._load(blob_ref)
            if kind is FileKind.DOCX:
                result = self._extract_docx_images(data)
            else:
                result = self._extract_pdf_images(data)
        except Exception as e:
            logger.warning("image_extraction_failed", file_kind=kind.value, error=str(e))
            return ImageExtractionResult()

        logger.info("images_extracted", file_kind=kind.value, count=len(result.images))
        return result

    def _load(self, blob_ref: str) -> bytes:
        try:
            return self.blob_store.get(blob_ref)
        except Exception as e:
            raise ExtractionError(f"Could not read document {blob_ref}: {e}") from e

    def _store_image(self, index: int, data: bytes, content_type: str) -> ExtractedImage:
        extension = content_type.split("/")[-1] or "png"
        filename = generate_unique_filename(f"image-{index}.{extension}")
        url = self.blob_store.put(data, filename, content_type)
        return ExtractedImage(index=index, filename=filename, url=url, content_type=content_type)

    def _extract_docx_images(self, data: bytes) -> ImageExtractionResult:
        document = docx.Document(io.BytesIO(data))
        images: list[ExtractedImage] = []
        stored_by_rel: dict[str, int] = {}
        blocks: list[str] = []

        for element, lines in _docx_blocks(document):
            parts = ["\n\n".join(lines)] if lines else []

            for blip in element.iter(_BLIP_TAG):
                rel_id = blip.get(_EMBED_ATTR)
                part = document.part.related_parts.get(rel_id) if rel_id else None
                if part is None:
                    continue

                if rel_id not in stored_by_rel:
                    try:
                        image = self._store_image(len(images), part.blob, part.content_type)
                    except Exception as e:
                        logger.warning("docx_image_store_failed", rel_id=rel_id, error=str(e))
                        continue
                    stored_by_rel[rel_id] = image.index
                    images.append(image)

                parts.append(f"[IMAGE {stored_by_rel[rel_id]}]")

            if parts:
                blocks.append(" ".join(parts))

        return ImageExtractionResult(
            images=images,
            text_with_placeholders="\n\n".join(blocks) if images else None,
        )

    def _extract_pdf_images(self, data: bytes) -> ImageExtractionResult:
        images: list[ExtractedImage] = []

        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page_num, page in enumerate(pdf.pages, start=1):
                for raw in page.images:
                    bbox = (
                        max(raw["x0"], 0),
                        max(raw["top"], 0),
                        min(raw["x1"], page.width),
                        min(raw["bottom"], page.height),
                    )
                    if bbox[2] <= bbox[0] or bbox[3] <= bbox[1]:
                        continue

                    try:
                        rendered = page.crop(bbox).to_image(resolution=PDF_IMAGE_RESOLUTION)
                        buffer = io.BytesIO()
                        rendered.save(buffer, format="PNG")
                        images.append(self._store_image(len(images), buffer.getvalue(), "image/png"))
                    except Exception as e:
                        logger.warning("pdf_image_render_failed", page=page_num, error=str(e))

        return ImageExtractionResult(images=images)


def _parse_pdf(data: bytes) -> str:
    pages: list[str] = []

    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page_num, page in enumerate(pdf.pages, start=1):
            text = _clean_page_text(page.extract_text() or "")
            logger.debug("page_extracted", page=page_num, chars=len(text))
            if text:
                pages.append(text)

    return "\n\n".join(pages)


def _docx_blocks(document) -> Iterator[tuple[Any, list[str]]]:
    """Body paragraphs and tables in document order, with their non-blank text lines.

    A table contributes one tab-separated line per row.
    """
    for block in document.iter_inner_content():
        if isinstance(block, Table):
            lines = ["\t".join(cell.text or "" for cell in row.cells) for row in block.rows]
        else:
            lines = [block.text]
        yield block._element, [line for line in lines if line.strip()]


def _parse_docx(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    parts = [line for _, lines in _docx_blocks(document) for line in lines]
    return "\n\n".join(parts)


def _clean_page_text(text: str) -> str:
    """Strip trailing whitespace per line and collapse blank-line runs."""
    if not text:
        return ""

    lines = [line.rstrip() for line in text.split("\n")]
    return clean_text("\n".join(lines))
