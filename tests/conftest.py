"""Pytest configuration and fixtures."""

import base64
import copy
import io
from typing import Any, Callable, Optional

import docx
import pytest
from sqlalchemy.pool import StaticPool

from sop_reconciler.config import Settings
from sop_reconciler.models import ExtractedImage, FileKind, ImageExtractionResult, StructuredSOP
from sop_reconciler.storage import (
    LocalBlobStore,
    SOPRepository,
    create_engine_from_url,
    create_session_factory,
    init_db,
)

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def docx_bytes(with_image: bool = False) -> bytes:
    """Two paragraphs, an optional picture, a blank paragraph, then a one-row table."""
    document = docx.Document()
    document.add_paragraph("Return handling")
    document.add_paragraph("Receive the parcel and log it.")
    if with_image:
        document.add_picture(io.BytesIO(PNG_BYTES))
    document.add_paragraph("   ")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Owner"
    table.rows[0].cells[1].text = "Warehouse clerk"

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


class StubLanguageModel:
    """Scripted LanguageModel.

    ``responses`` maps a call's ``context_name`` to either a dict (returned on
    every call), a list (consumed in order), or a callable taking
    ``(system_prompt, user_prompt)``. An Exception instance in place of a
    response is raised.
    """

    def __init__(
        self,
        responses: Optional[dict[str, Any]] = None,
        embedder: Optional[Callable[[str], list[float]]] = None,
    ):
        self.responses = dict(responses or {})
        self.embedder = embedder
        self.calls: list[tuple[str, str, str]] = []

    @property
    def supports_embeddings(self) -> bool:
        return self.embedder is not None

    def complete_json(self, system_prompt: str, user_prompt: str, context_name: str = "llm") -> dict:
        self.calls.append((context_name, system_prompt, user_prompt))

        response = self.responses[context_name]
        if isinstance(response, list):
            response = response.pop(0)
        if callable(response):
            response = response(system_prompt, user_prompt)
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    def embed(self, text: str) -> list[float]:
        if self.embedder is None:
            raise NotImplementedError("embeddings not configured")
        return self.embedder(text)

    def calls_for(self, context_name: str) -> list[tuple[str, str, str]]:
        return [call for call in self.calls if call[0] == context_name]


class StubDocumentExtractor:
    """DocumentExtractor returning fixed text and images."""

    def __init__(self, text: str = "", images: Optional[list[ExtractedImage]] = None, error: Exception = None):
        self.text = text
        self.images = images or []
        self.error = error
        self.parsed: list[tuple[str, FileKind]] = []

    def parse(self, blob_ref: str, file_kind: FileKind) -> str:
        self.parsed.append((blob_ref, file_kind))
        if self.error is not None:
            raise self.error
        return self.text

    def extract_images(self, blob_ref: str, file_kind: FileKind) -> ImageExtractionResult:
        return ImageExtractionResult(images=list(self.images))


def sop_payload(
    title: str,
    step_titles: list[str],
    department: str = "Warehouse",
    category: str = "Returns",
    description: Optional[str] = None,
    orders: Optional[list[int]] = None,
) -> dict:
    """Model-style camelCase SOP JSON."""
    orders = orders or list(range(1, len(step_titles) + 1))
    return {
        "title": title,
        "department": department,
        "category": category,
        "description": description,
        "steps": [
            {
                "order": order,
                "title": step_title,
                "description": f"{step_title} details",
                "responsible": "Clerk",
                "conditions": [],
                "notes": [],
            }
            for order, step_title in zip(orders, step_titles)
        ],
    }


def make_sop(title: str, step_titles: list[str], **kwargs) -> StructuredSOP:
    return StructuredSOP.model_validate(sop_payload(title, step_titles, **kwargs))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        upload_dir=str(tmp_path / "uploads"),
        vector_store_dir=str(tmp_path / "vectors"),
        vector_search_enabled=False,
    )


@pytest.fixture
def repository() -> SOPRepository:
    """Repository over a fresh in-memory SQLite database."""
    engine = create_engine_from_url("sqlite://", poolclass=StaticPool)
    init_db(engine)
    return SOPRepository(create_session_factory(engine))


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs", base_url="/uploads")


@pytest.fixture
def stub_llm() -> StubLanguageModel:
    return StubLanguageModel()


def seed_pair(
    repository: SOPRepository,
    primary: StructuredSOP,
    secondary: StructuredSOP,
    document_id: Optional[int] = None,
    version: str = "1.0",
):
    """Store a zh/en pair together with its content blocks."""
    from sop_reconciler.pipeline.indexing import build_content_blocks

    return repository.create_bilingual_pair(
        document_id=document_id,
        primary=primary,
        secondary=secondary,
        primary_language="zh",
        secondary_language="en",
        version=version,
        created_by=None,
        primary_blocks=build_content_blocks(primary),
        secondary_blocks=build_content_blocks(secondary),
    )
