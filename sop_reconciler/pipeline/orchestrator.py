"""SOP Pipeline Orchestrator - Coordinates extraction, conflict analysis and merge.

Three caller-facing operations run one document to completion:
- generate: document -> bilingual SOP pair
- analyze_conflicts: document -> structured SOP + conflict verdict (no writes to SOPs)
- merge: analyzed document + existing SOP -> updated bilingual pair

Any failure after the document has been loaded stores ``failed`` with the
error message on the document and re-raises the typed error. Vector index
updates run after the relational commit and never fail an operation.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

import structlog

from sop_reconciler.config import Settings
from sop_reconciler.config.prompts import IMAGE_NOTES
from sop_reconciler.errors import NotFoundError, NotYetAnalyzedError
from sop_reconciler.extraction.document_extractor import (
    DocumentExtractor,
    clean_text,
    resolve_file_kind,
)
from sop_reconciler.llm import LanguageModel, LLMSettings, OllamaLanguageModel
from sop_reconciler.models import (
    AnalyzeResult,
    CorpusQuery,
    DocumentRecord,
    DocumentStatus,
    GenerateResult,
    MergeResult,
    MergeStrategy,
    ReviseResult,
    SOPRecord,
    StructuredSOP,
)
from sop_reconciler.storage import (
    BlobStore,
    ContentBlockIndex,
    SOPRepository,
    create_blob_store,
    create_engine_from_url,
    create_session_factory,
    init_db,
)

from .conflicts import ConflictClassifier
from .indexing import ContentBlockIndexer, build_content_blocks
from .matcher import CorpusMatcher
from .merger import SOPMerger
from .qa import QuestionAnswerer
from .structure import StructureExtractor
from .translator import Translator

logger = structlog.get_logger(__name__)


def bump_version(version: str, increment: str = "0.1", initial: str = "1.0") -> str:
    """Decimal version bump: ``"1.0" -> "1.1"``, ``"1.9" -> "2.0"``."""
    try:
        current = Decimal(version)
    except (InvalidOperation, TypeError):
        logger.warning("invalid_sop_version", version=version, fallback=initial)
        current = Decimal(initial)

    return str(current + Decimal(increment))


class SOPPipeline:
    """Runs the document-to-SOP reconciliation operations."""

    def __init__(
        self,
        repository: SOPRepository,
        document_extractor: DocumentExtractor,
        structure_extractor: StructureExtractor,
        translator: Translator,
        corpus_matcher: CorpusMatcher,
        conflict_classifier: ConflictClassifier,
        merger: SOPMerger,
        settings: Settings,
        indexer: Optional[ContentBlockIndexer] = None,
    ):
        self.repository = repository
        self.document_extractor = document_extractor
        self.structure_extractor = structure_extractor
        self.translator = translator
        self.corpus_matcher = corpus_matcher
        self.conflict_classifier = conflict_classifier
        self.merger = merger
        self.settings = settings
        self.indexer = indexer

    @property
    def primary_language(self) -> str:
        return self.settings.primary_language

    @property
    def secondary_language(self) -> str:
        return self.settings.secondary_language

    # =========================================================================
    # Operations
    # =========================================================================

    def generate(self, document_id: int, user_id: Optional[int] = None) -> GenerateResult:
        """Extract an SOP from a document and store it as a linked bilingual pair.

        Raises:
            NotFoundError: Unknown document id.
            ExtractionError: The document could not be parsed or structured.
            ModelError: Translation failed.
        """
        document = self.repository.get_document(document_id)
        logger.info("sop_generation_start", document_id=document_id, filename=document.filename)

        self.repository.update_document_status(document_id, DocumentStatus.PARSING)

        try:
            sop, cleaned = self._extract_sop(document)
            self.repository.save_document_content(
                document_id,
                raw_content=cleaned,
                parsed_content={"sop": sop.to_content()},
            )

            translated = self.translator.translate(sop, self.secondary_language)

            primary, secondary = self.repository.create_bilingual_pair(
                document_id=document_id,
                primary=sop,
                secondary=translated,
                primary_language=self.primary_language,
                secondary_language=self.secondary_language,
                version=self.settings.initial_version,
                created_by=user_id,
                primary_blocks=build_content_blocks(sop),
                secondary_blocks=build_content_blocks(translated),
            )
            self.repository.update_document_status(document_id, DocumentStatus.PARSED)

        except Exception as e:
            self._mark_failed(document_id, "sop_generation_failed", e)
            raise

        self._refresh_index([primary.id, secondary.id])

        logger.info(
            "sop_generation_complete",
            document_id=document_id,
            sop_id=primary.id,
            partner_id=secondary.id,
            steps=len(sop.steps),
        )
        return GenerateResult(
            sop_primary=primary,
            sop_secondary=secondary,
            step_count=len(sop.steps),
            translation_step_mismatch=len(translated.steps) != len(sop.steps),
        )

    def analyze_conflicts(self, document_id: int, user_id: Optional[int] = None) -> AnalyzeResult:
        """Extract the document's SOP and classify it against the corpus.

        Stores ``{"sop", "conflicts"}`` as the document's parsed content. The
        document status is left as is on success.
        """
        document = self.repository.get_document(document_id)
        logger.info("conflict_analysis_start", document_id=document_id, user_id=user_id)

        try:
            sop, cleaned = self._extract_sop(document)

            candidates = self.corpus_matcher.find_candidates(
                CorpusQuery.from_sop(sop, self.primary_language),
                k=self.settings.corpus_candidate_limit,
            )
            analysis = self.conflict_classifier.analyze(sop, candidates)

            self.repository.save_document_content(
                document_id,
                raw_content=cleaned,
                parsed_content={
                    "sop": sop.to_content(),
                    "conflicts": analysis.model_dump(mode="json", by_alias=True),
                },
            )

        except Exception as e:
            self._mark_failed(document_id, "conflict_analysis_failed", e)
            raise

        logger.info(
            "conflict_analysis_complete",
            document_id=document_id,
            candidates=len(candidates),
            related=len(analysis.related_sops),
        )
        return AnalyzeResult(structured_sop=sop, conflict_analysis=analysis)

    def merge(
        self,
        document_id: int,
        target_sop_id: int,
        strategy: MergeStrategy = MergeStrategy.SMART_COMBINE,
        user_id: Optional[int] = None,
    ) -> MergeResult:
        """Merge an analyzed document's SOP into an existing primary-language SOP.

        Raises:
            NotFoundError: Unknown document, or target SOP missing / not primary language.
            NotYetAnalyzedError: The document has no stored parsed SOP.
            ModelError: Merge or translation failed.
        """
        document = self.repository.get_document(document_id)
        new_sop = document.analyzed_sop
        if new_sop is None:
            raise NotYetAnalyzedError(f"Document {document_id} has not been analyzed")

        target = self.repository.get_sop(target_sop_id)
        if target.language != self.primary_language:
            raise NotFoundError(
                f"SOP {target_sop_id} is not a {self.primary_language} SOP"
            )

        logger.info(
            "sop_merge_start",
            document_id=document_id,
            target_sop_id=target_sop_id,
            strategy=strategy.value,
        )
        self.repository.update_document_status(document_id, DocumentStatus.PARSING)

        try:
            merged = self.merger.merge(new_sop, target.structured(), strategy)
            translated = self.translator.translate(merged, self.secondary_language)

            sop, partner = self.repository.update_pair(
                sop_id=target.id,
                sop=merged,
                partner=translated,
                partner_language=self.secondary_language,
                version=bump_version(
                    target.version,
                    self.settings.version_increment,
                    self.settings.initial_version,
                ),
                blocks=build_content_blocks(merged),
                partner_blocks=build_content_blocks(translated),
                updated_by=user_id,
            )
            self.repository.update_document_status(document_id, DocumentStatus.PARSED)

        except Exception as e:
            self._mark_failed(document_id, "sop_merge_failed", e)
            raise

        self._refresh_index([sop.id, partner.id])

        logger.info(
            "sop_merge_complete",
            document_id=document_id,
            sop_id=sop.id,
            version=sop.version,
            steps=len(merged.steps),
            images=len(merged.images),
        )
        return MergeResult(
            merged_sop=merged,
            sop=sop,
            sop_secondary=partner,
            image_count=len(merged.images),
            merge_notes=merged.merge_notes,
        )

    def revise_sop(self, sop_id: int, sop: StructuredSOP, user_id: Optional[int] = None) -> ReviseResult:
        """Replace an SOP's content and re-translate its partner record."""
        record = self.repository.get_sop(sop_id)
        revised = sop.renumbered()
        partner_language = self._partner_language(record)

        logger.info("sop_revision_start", sop_id=sop_id, partner_language=partner_language)

        translated = self.translator.translate(revised, partner_language)
        updated, partner = self.repository.update_pair(
            sop_id=sop_id,
            sop=revised,
            partner=translated,
            partner_language=partner_language,
            version=bump_version(
                record.version,
                self.settings.version_increment,
                self.settings.initial_version,
            ),
            blocks=build_content_blocks(revised),
            partner_blocks=build_content_blocks(translated),
            updated_by=user_id,
        )

        self._refresh_index([updated.id, partner.id])
        logger.info("sop_revision_complete", sop_id=sop_id, version=updated.version)
        return ReviseResult(sop=updated, sop_partner=partner)

    def delete_sop(self, sop_id: int) -> None:
        """Delete one language record; its partner survives with no link."""
        self.repository.delete_sop(sop_id)
        if self.indexer is not None:
            self.indexer.remove(sop_id)

    # =========================================================================
    # Stages
    # =========================================================================

    def _extract_sop(self, document: DocumentRecord) -> tuple[StructuredSOP, str]:
        """Images, text, cleaning and structure extraction for one document."""
        kind = resolve_file_kind(document.file_type)

        images = self.document_extractor.extract_images(document.file_url, kind)
        text = self.document_extractor.parse(document.file_url, kind)

        # Placeholder text lets the model attach [IMAGE n] markers to steps
        cleaned = clean_text(images.text_with_placeholders or text)
        logger.info(
            "document_text_ready",
            document_id=document.id,
            chars=len(cleaned),
            images=len(images.images),
        )

        sop = self.structure_extractor.extract_with_chunking(cleaned)

        if images.images:
            note = IMAGE_NOTES.get(self.primary_language, IMAGE_NOTES["en"]).format(
                count=len(images.images)
            )
            description = f"{sop.description}\n\n{note}" if sop.description else note
            sop = sop.model_copy(update={"images": images.images, "description": description})

        return sop, cleaned

    def _partner_language(self, record: SOPRecord) -> str:
        if record.translation_pair_id:
            try:
                return self.repository.get_sop(record.translation_pair_id).language
            except NotFoundError:
                logger.warning("translation_partner_missing", sop_id=record.id)

        if record.language == self.primary_language:
            return self.secondary_language
        return self.primary_language

    def _mark_failed(self, document_id: int, event: str, error: Exception) -> None:
        logger.error(event, document_id=document_id, error=str(error), error_type=type(error).__name__)
        try:
            self.repository.update_document_status(document_id, DocumentStatus.FAILED, str(error))
        except Exception as status_error:
            logger.error("document_status_update_failed", document_id=document_id, error=str(status_error))

    def _refresh_index(self, sop_ids: Iterable[int]) -> None:
        if self.indexer is not None:
            self.indexer.refresh(sop_ids)


@dataclass
class PipelineServices:
    """Everything a caller needs, constructed once and passed by reference."""

    settings: Settings
    llm: LanguageModel
    repository: SOPRepository
    blob_store: BlobStore
    pipeline: SOPPipeline
    answerer: QuestionAnswerer
    indexer: Optional[ContentBlockIndexer] = None


def build_services(
    settings: Settings,
    llm: Optional[LanguageModel] = None,
    llm_settings: Optional[LLMSettings] = None,
) -> PipelineServices:
    """Wire the capabilities and pipeline components from explicit settings."""
    engine = create_engine_from_url(settings.database_url)
    init_db(engine)
    repository = SOPRepository(create_session_factory(engine))

    blob_store = create_blob_store(settings)
    llm = llm or OllamaLanguageModel(llm_settings)

    vector_index = None
    indexer = None
    if settings.vector_search_enabled:
        vector_index = ContentBlockIndex(settings.vector_store_dir, settings.vector_collection_name)
        indexer = ContentBlockIndexer(llm, vector_index, repository)

    matcher = CorpusMatcher(repository, settings, llm=llm, vector_index=vector_index)
    pipeline = SOPPipeline(
        repository=repository,
        document_extractor=DocumentExtractor(blob_store),
        structure_extractor=StructureExtractor(llm, settings),
        translator=Translator(llm),
        corpus_matcher=matcher,
        conflict_classifier=ConflictClassifier(llm, settings),
        merger=SOPMerger(llm, settings),
        settings=settings,
        indexer=indexer,
    )

    logger.info(
        "services_ready",
        database=engine.url.render_as_string(hide_password=True),
        storage_backend=settings.storage_backend.value,
        vector_search=settings.vector_search_enabled,
    )
    return PipelineServices(
        settings=settings,
        llm=llm,
        repository=repository,
        blob_store=blob_store,
        pipeline=pipeline,
        answerer=QuestionAnswerer(llm, matcher, repository, settings),
        indexer=indexer,
    )
