"""
Relational persistence for documents, bilingual SOP pairs and content blocks.

Every multi-row write (pair creation, merge/revision update with block
replacement, delete) runs inside a single ``transaction()``.
"""

from contextlib import contextmanager
from typing import Any, Iterator, NamedTuple, Optional, Sequence

import structlog
from sqlalchemy import Text, case, cast, func, or_
from sqlalchemy.orm import Session, sessionmaker

from sop_reconciler.errors import NotFoundError
from sop_reconciler.models import (
    ContentBlockDraft,
    ContentBlockRecord,
    DocumentRecord,
    DocumentStatus,
    SOPRecord,
    SOPStatus,
    StructuredSOP,
)

from .orm import SOP, ContentBlock, QAHistory, SourceDocument

logger = structlog.get_logger(__name__)

# Relevance weights for keyword search
BLOCK_TITLE_WEIGHT = 2
BLOCK_CONTENT_WEIGHT = 1
SOP_TITLE_WEIGHT = 3
SOP_DESCRIPTION_WEIGHT = 2
SOP_CONTENT_WEIGHT = 1

SNIPPET_CHARS = 200


class KeywordHit(NamedTuple):
    """An SOP matched by keyword search, with a relevance score in [0, 1]."""

    sop: SOPRecord
    score: float
    snippet: Optional[str]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _any_contains(column, keywords: Sequence[str]):
    return or_(*[column.ilike(f"%{_escape_like(k)}%", escape="\\") for k in keywords])


def _to_sop_record(row: SOP) -> SOPRecord:
    return SOPRecord.model_validate(row)


class SOPRepository:
    """Repository over the ``sop_*`` tables."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Documents
    # =========================================================================

    def create_document(
        self,
        filename: str,
        file_url: str,
        file_type: str,
        uploaded_by: Optional[int] = None,
        file_size: Optional[int] = None,
    ) -> DocumentRecord:
        with self.transaction() as session:
            row = SourceDocument(
                filename=filename,
                file_url=file_url,
                file_type=file_type,
                file_size=file_size,
                status=DocumentStatus.UPLOADED.value,
                uploaded_by=uploaded_by,
            )
            session.add(row)
            session.flush()
            logger.info("document_created", document_id=row.id, filename=filename)
            return DocumentRecord.model_validate(row)

    def get_document(self, document_id: int) -> DocumentRecord:
        with self.transaction() as session:
            row = session.get(SourceDocument, document_id)
            if row is None:
                raise NotFoundError(f"Document {document_id} not found")
            return DocumentRecord.model_validate(row)

    def list_documents(self) -> list[DocumentRecord]:
        with self.transaction() as session:
            rows = session.query(SourceDocument).order_by(SourceDocument.created_at.desc()).all()
            return [DocumentRecord.model_validate(row) for row in rows]

    def update_document_status(
        self,
        document_id: int,
        status: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> None:
        with self.transaction() as session:
            row = session.get(SourceDocument, document_id)
            if row is None:
                raise NotFoundError(f"Document {document_id} not found")
            row.status = status.value
            row.error_message = error_message

        logger.info("document_status_changed", document_id=document_id, status=status.value)

    def save_document_content(
        self,
        document_id: int,
        raw_content: Optional[str] = None,
        parsed_content: Optional[dict[str, Any]] = None,
    ) -> None:
        """Store extracted text and/or the parsed payload; ``None`` leaves a field as is."""
        with self.transaction() as session:
            row = session.get(SourceDocument, document_id)
            if row is None:
                raise NotFoundError(f"Document {document_id} not found")
            if raw_content is not None:
                row.raw_content = raw_content
            if parsed_content is not None:
                row.parsed_content = parsed_content

    # =========================================================================
    # SOPs
    # =========================================================================

    def get_sop(self, sop_id: int) -> SOPRecord:
        with self.transaction() as session:
            row = session.get(SOP, sop_id)
            if row is None:
                raise NotFoundError(f"SOP {sop_id} not found")
            return _to_sop_record(row)

    def list_sops(self, language: Optional[str] = None) -> list[SOPRecord]:
        with self.transaction() as session:
            query = session.query(SOP)
            if language:
                query = query.filter(SOP.language == language)
            return [_to_sop_record(row) for row in query.order_by(SOP.updated_at.desc()).all()]

    def count_sops(self, language: Optional[str] = None) -> int:
        with self.transaction() as session:
            query = session.query(func.count(SOP.id))
            if language:
                query = query.filter(SOP.language == language)
            return query.scalar() or 0

    def create_bilingual_pair(
        self,
        document_id: Optional[int],
        primary: StructuredSOP,
        secondary: StructuredSOP,
        primary_language: str,
        secondary_language: str,
        version: str,
        created_by: Optional[int],
        primary_blocks: Sequence[ContentBlockDraft],
        secondary_blocks: Sequence[ContentBlockDraft],
    ) -> tuple[SOPRecord, SOPRecord]:
        """Insert both language records, link them and write their blocks atomically."""
        with self.transaction() as session:
            first = SOP(document_id=document_id, version=version, created_by=created_by)
            _apply_sop(first, primary, primary_language)
            second = SOP(document_id=document_id, version=version, created_by=created_by)
            _apply_sop(second, secondary, secondary_language)
            session.add_all([first, second])
            session.flush()

            first.translation_pair_id = second.id
            second.translation_pair_id = first.id

            _replace_blocks(session, first.id, primary_blocks)
            _replace_blocks(session, second.id, secondary_blocks)
            session.flush()

            logger.info("bilingual_pair_created", primary_id=first.id, secondary_id=second.id)
            return _to_sop_record(first), _to_sop_record(second)

    def update_pair(
        self,
        sop_id: int,
        sop: StructuredSOP,
        partner: StructuredSOP,
        partner_language: str,
        version: str,
        blocks: Sequence[ContentBlockDraft],
        partner_blocks: Sequence[ContentBlockDraft],
        updated_by: Optional[int] = None,
    ) -> tuple[SOPRecord, SOPRecord]:
        """Overwrite an SOP and its partner in one transaction.

        A missing partner record is created and linked in both directions.
        """
        with self.transaction() as session:
            row = session.get(SOP, sop_id)
            if row is None:
                raise NotFoundError(f"SOP {sop_id} not found")

            _apply_sop(row, sop, row.language)
            row.version = version

            partner_row = session.get(SOP, row.translation_pair_id) if row.translation_pair_id else None
            if partner_row is None:
                partner_row = SOP(
                    document_id=row.document_id,
                    created_by=updated_by,
                    status=row.status,
                )
                session.add(partner_row)
                _apply_sop(partner_row, partner, partner_language)
                partner_row.version = version
                session.flush()
                row.translation_pair_id = partner_row.id
                partner_row.translation_pair_id = row.id
                logger.info("translation_pair_linked", sop_id=row.id, partner_id=partner_row.id)
            else:
                _apply_sop(partner_row, partner, partner_row.language)
                partner_row.version = version

            _replace_blocks(session, row.id, blocks)
            _replace_blocks(session, partner_row.id, partner_blocks)
            session.flush()

            logger.info("bilingual_pair_updated", sop_id=row.id, partner_id=partner_row.id, version=version)
            return _to_sop_record(row), _to_sop_record(partner_row)

    def delete_sop(self, sop_id: int) -> None:
        """Delete an SOP and its blocks, clearing the partner's back-reference."""
        with self.transaction() as session:
            row = session.get(SOP, sop_id)
            if row is None:
                raise NotFoundError(f"SOP {sop_id} not found")

            session.query(SOP).filter(SOP.translation_pair_id == sop_id).update(
                {SOP.translation_pair_id: None}, synchronize_session=False
            )
            session.query(ContentBlock).filter(ContentBlock.sop_id == sop_id).delete(
                synchronize_session=False
            )
            session.delete(row)

        logger.info("sop_deleted", sop_id=sop_id)

    # =========================================================================
    # Content blocks
    # =========================================================================

    def list_content_blocks(
        self,
        sop_id: Optional[int] = None,
        language: Optional[str] = None,
    ) -> list[ContentBlockRecord]:
        with self.transaction() as session:
            query = session.query(ContentBlock, SOP.language).join(SOP, SOP.id == ContentBlock.sop_id)
            if sop_id is not None:
                query = query.filter(ContentBlock.sop_id == sop_id)
            if language:
                query = query.filter(SOP.language == language)

            rows = query.order_by(ContentBlock.sop_id, ContentBlock.block_order).all()
            return [
                ContentBlockRecord(
                    id=block.id,
                    sop_id=block.sop_id,
                    language=block_language,
                    block_type=block.block_type,
                    content=block.content,
                    block_order=block.block_order,
                    metadata=block.block_metadata or {},
                )
                for block, block_language in rows
            ]

    # =========================================================================
    # Corpus search
    # =========================================================================

    def search_blocks_by_keywords(
        self,
        keywords: Sequence[str],
        language: str,
        limit: int = 10,
    ) -> list[KeywordHit]:
        """SOPs whose content blocks contain any keyword, best block per SOP."""
        if not keywords:
            return []

        title_match = _any_contains(SOP.title, keywords)
        block_match = _any_contains(ContentBlock.content, keywords)
        score = (
            case((title_match, BLOCK_TITLE_WEIGHT), else_=0)
            + case((block_match, BLOCK_CONTENT_WEIGHT), else_=0)
        ).label("score")
        max_score = BLOCK_TITLE_WEIGHT + BLOCK_CONTENT_WEIGHT

        with self.transaction() as session:
            rows = (
                session.query(SOP, ContentBlock.content, score)
                .join(ContentBlock, ContentBlock.sop_id == SOP.id)
                .filter(SOP.language == language, block_match)
                .order_by(score.desc(), SOP.updated_at.desc(), ContentBlock.block_order)
                .limit(limit * 10)
                .all()
            )
            return _dedupe_hits(rows, max_score, limit)

    def search_sops_by_keywords(
        self,
        keywords: Sequence[str],
        language: str,
        limit: int = 10,
    ) -> list[KeywordHit]:
        """SOPs whose title, description or content contain any keyword."""
        if not keywords:
            return []

        title_match = _any_contains(SOP.title, keywords)
        description_match = _any_contains(SOP.description, keywords)
        content_match = _any_contains(cast(SOP.content, Text), keywords)
        score = (
            case((title_match, SOP_TITLE_WEIGHT), else_=0)
            + case((description_match, SOP_DESCRIPTION_WEIGHT), else_=0)
            + case((content_match, SOP_CONTENT_WEIGHT), else_=0)
        ).label("score")
        max_score = SOP_TITLE_WEIGHT + SOP_DESCRIPTION_WEIGHT + SOP_CONTENT_WEIGHT

        with self.transaction() as session:
            rows = (
                session.query(SOP, SOP.description, score)
                .filter(SOP.language == language, or_(title_match, description_match, content_match))
                .order_by(score.desc(), SOP.updated_at.desc())
                .limit(limit)
                .all()
            )
            return _dedupe_hits(rows, max_score, limit)

    def find_by_department_or_category(
        self,
        department: Optional[str],
        category: Optional[str],
        language: str,
        limit: int = 10,
        status: SOPStatus = SOPStatus.APPROVED,
    ) -> list[SOPRecord]:
        """Most recent SOPs sharing the department or the category."""
        filters = []
        if department:
            filters.append(SOP.department == department)
        if category:
            filters.append(SOP.category == category)
        if not filters:
            return []

        with self.transaction() as session:
            rows = (
                session.query(SOP)
                .filter(or_(*filters), SOP.status == status.value, SOP.language == language)
                .order_by(SOP.created_at.desc(), SOP.id.desc())
                .limit(limit)
                .all()
            )
            return [_to_sop_record(row) for row in rows]

    # =========================================================================
    # QA history
    # =========================================================================

    def record_qa(
        self,
        user_id: Optional[int],
        question: str,
        answer: str,
        related_sop_ids: Sequence[int],
        language: str,
        found_results: bool = True,
    ) -> None:
        with self.transaction() as session:
            session.add(
                QAHistory(
                    user_id=user_id,
                    question=question,
                    answer=answer,
                    related_sops=list(related_sop_ids),
                    language=language,
                    found_results=found_results,
                )
            )


def _apply_sop(row: SOP, sop: StructuredSOP, language: str) -> None:
    row.title = sop.title
    row.description = sop.description or ""
    row.department = sop.department
    row.category = sop.category
    row.language = language
    row.content = sop.to_content()


def _replace_blocks(session: Session, sop_id: int, blocks: Sequence[ContentBlockDraft]) -> None:
    session.query(ContentBlock).filter(ContentBlock.sop_id == sop_id).delete(synchronize_session=False)
    session.add_all(
        ContentBlock(
            sop_id=sop_id,
            block_type=block.block_type,
            content=block.content,
            block_order=block.block_order,
            block_metadata=block.metadata,
        )
        for block in blocks
    )


def _dedupe_hits(rows, max_score: int, limit: int) -> list[KeywordHit]:
    hits: list[KeywordHit] = []
    seen: set[int] = set()

    for row, text, score in rows:
        if row.id in seen:
            continue
        seen.add(row.id)
        snippet = text[:SNIPPET_CHARS] if text else None
        hits.append(KeywordHit(_to_sop_record(row), round(score / max_score, 4), snippet))
        if len(hits) >= limit:
            break

    return hits
