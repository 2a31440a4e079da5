"""Unit tests for the pipeline orchestrator."""

import pytest

from sop_reconciler.errors import ExtractionError, ModelError, NotFoundError, NotYetAnalyzedError
from sop_reconciler.extraction import DocumentExtractor
from sop_reconciler.models import DocumentStatus, ExtractedImage, MergeStrategy, SuggestionAction
from sop_reconciler.pipeline import (
    ConflictClassifier,
    CorpusMatcher,
    SOPMerger,
    SOPPipeline,
    StructureExtractor,
    Translator,
    bump_version,
)

from conftest import StubDocumentExtractor, StubLanguageModel, docx_bytes, make_sop, seed_pair, sop_payload

DOCUMENT_TEXT = "退货流程\n\n\n\n接收包裹。  检查商品。"


class RecordingIndexer:
    def __init__(self):
        self.refreshed = []
        self.removed = []

    def refresh(self, sop_ids):
        self.refreshed.append(list(sop_ids))
        return 0

    def remove(self, sop_id):
        self.removed.append(sop_id)


def _pipeline(llm, repository, settings, extractor=None, indexer=None) -> SOPPipeline:
    return SOPPipeline(
        repository=repository,
        document_extractor=extractor or StubDocumentExtractor(DOCUMENT_TEXT),
        structure_extractor=StructureExtractor(llm, settings),
        translator=Translator(llm),
        corpus_matcher=CorpusMatcher(repository, settings),
        conflict_classifier=ConflictClassifier(llm, settings),
        merger=SOPMerger(llm, settings),
        settings=settings,
        indexer=indexer,
    )


@pytest.fixture
def document(repository):
    return repository.create_document("returns.pdf", "/uploads/returns.pdf", "pdf")


@pytest.fixture
def llm():
    return StubLanguageModel({
        "sop_extraction": sop_payload("退货处理", ["接收退货", "检查商品"]),
        "sop_translation": sop_payload("Return handling", ["Receive return", "Inspect goods"]),
        "sop_comparison": {"similarity": 0.85, "conflictType": "duplicate", "details": "Same procedure"},
        "sop_merge": sop_payload("退货处理", ["接收退货", "检查商品", "办理退款"]),
    })


class TestBumpVersion:
    def test_bump(self):
        assert bump_version("1.0") == "1.1"
        assert bump_version("1.9") == "2.0"
        assert bump_version("2.5", increment="1.0") == "3.5"

    def test_invalid_version_restarts(self):
        assert bump_version("draft") == "1.1"


class TestGenerate:
    def test_generate_creates_linked_pair(self, llm, repository, settings, document):
        indexer = RecordingIndexer()
        pipeline = _pipeline(llm, repository, settings, indexer=indexer)

        result = pipeline.generate(document.id, user_id=3)

        assert result.step_count == 2
        assert result.translation_step_mismatch is False
        assert result.sop_primary.language == "zh"
        assert result.sop_secondary.language == "en"
        assert result.sop_primary.translation_pair_id == result.sop_secondary.id
        assert result.sop_primary.version == "1.0"
        assert result.sop_primary.created_by == 3
        assert indexer.refreshed == [[result.sop_primary.id, result.sop_secondary.id]]

        stored = repository.get_document(document.id)
        assert stored.status == DocumentStatus.PARSED
        assert stored.raw_content == "退货流程\n\n接收包裹。 检查商品。"
        assert stored.analyzed_sop.title == "退货处理"

    def test_generate_reports_step_mismatch(self, llm, repository, settings, document):
        llm.responses["sop_translation"] = sop_payload("Return handling", ["Receive return"])

        result = _pipeline(llm, repository, settings).generate(document.id)

        assert result.translation_step_mismatch is True
        assert len(repository.get_sop(result.sop_secondary.id).structured().steps) == 1

    def test_images_attached_with_note(self, llm, repository, settings, document):
        images = [ExtractedImage(index=0, filename="a.png", url="/uploads/a.png")]
        extractor = StubDocumentExtractor(DOCUMENT_TEXT, images=images)

        result = _pipeline(llm, repository, settings, extractor=extractor).generate(document.id)

        sop = repository.get_sop(result.sop_primary.id).structured()
        assert sop.images == images
        assert sop.description.endswith("本流程包含 1 张指导图片")

    def test_word_tables_reach_extraction_with_images(self, llm, repository, settings, blob_store):
        url = blob_store.put(docx_bytes(with_image=True), "returns.docx", "application/octet-stream")
        document = repository.create_document("returns.docx", url, "docx")
        pipeline = _pipeline(llm, repository, settings, extractor=DocumentExtractor(blob_store))

        result = pipeline.generate(document.id)

        _, _, user_prompt = llm.calls_for("sop_extraction")[0]
        assert "[IMAGE 0]" in user_prompt
        assert "Owner\tWarehouse clerk" in user_prompt
        assert "Warehouse clerk" in repository.get_document(document.id).raw_content
        assert len(repository.get_sop(result.sop_primary.id).structured().images) == 1

    def test_extraction_failure_marks_document_failed(self, llm, repository, settings, document):
        extractor = StubDocumentExtractor(error=ExtractionError("PDF is encrypted"))

        with pytest.raises(ExtractionError):
            _pipeline(llm, repository, settings, extractor=extractor).generate(document.id)

        stored = repository.get_document(document.id)
        assert stored.status == DocumentStatus.FAILED
        assert stored.error_message == "PDF is encrypted"
        assert repository.count_sops() == 0

    def test_translation_failure_stores_nothing(self, llm, repository, settings, document):
        llm.responses["sop_translation"] = ModelError("ollama unreachable")

        with pytest.raises(ModelError):
            _pipeline(llm, repository, settings).generate(document.id)

        assert repository.get_document(document.id).status == DocumentStatus.FAILED
        assert repository.count_sops() == 0

    def test_unknown_document(self, llm, repository, settings):
        with pytest.raises(NotFoundError):
            _pipeline(llm, repository, settings).generate(42)


class TestAnalyzeConflicts:
    def test_analysis_stored_on_document(self, llm, repository, settings, document):
        zh, _ = seed_pair(repository, make_sop("退货处理", ["接收退货"]), make_sop("Return handling", ["Receive"]))

        result = _pipeline(llm, repository, settings).analyze_conflicts(document.id)

        analysis = result.conflict_analysis
        assert analysis.has_duplicates is True
        assert [r.id for r in analysis.related_sops] == [zh.id]
        assert analysis.suggestions[0].action == SuggestionAction.REPLACE

        stored = repository.get_document(document.id)
        assert stored.status == DocumentStatus.UPLOADED
        assert stored.parsed_content["conflicts"]["hasDuplicates"] is True
        assert stored.analyzed_sop == result.structured_sop

    def test_empty_corpus(self, llm, repository, settings, document):
        result = _pipeline(llm, repository, settings).analyze_conflicts(document.id)

        assert result.conflict_analysis.related_sops == []
        assert result.conflict_analysis.suggestions[0].action == SuggestionAction.KEEP_BOTH
        assert llm.calls_for("sop_comparison") == []


class TestMerge:
    def test_merge_updates_pair_and_bumps_version(self, llm, repository, settings, document):
        zh, en = seed_pair(
            repository,
            make_sop("退货处理", ["接收退货", "办理退款"]),
            make_sop("Return handling", ["Receive", "Refund"]),
        )
        pipeline = _pipeline(llm, repository, settings)
        pipeline.analyze_conflicts(document.id)
        llm.responses["sop_translation"] = sop_payload("Return handling", ["Receive", "Inspect", "Refund"])

        result = pipeline.merge(document.id, zh.id, MergeStrategy.MERGE_ALL, user_id=9)

        assert result.sop.id == zh.id
        assert result.sop.version == "1.1"
        assert result.sop_secondary.id == en.id
        assert result.sop_secondary.version == "1.1"
        assert [s.order for s in result.merged_sop.steps] == [1, 2, 3]
        assert len(repository.list_content_blocks(sop_id=en.id)) == 3
        assert repository.get_document(document.id).status == DocumentStatus.PARSED
        assert "MERGE STRATEGY: merge_all" in llm.calls_for("sop_merge")[0][2]

    def test_merge_requires_analysis(self, llm, repository, settings, document):
        zh, _ = seed_pair(repository, make_sop("退货", ["接收"]), make_sop("Returns", ["Receive"]))

        with pytest.raises(NotYetAnalyzedError):
            _pipeline(llm, repository, settings).merge(document.id, zh.id)

        assert repository.get_document(document.id).status == DocumentStatus.UPLOADED

    def test_merge_target_must_be_primary_language(self, llm, repository, settings, document):
        _, en = seed_pair(repository, make_sop("退货", ["接收"]), make_sop("Returns", ["Receive"]))
        pipeline = _pipeline(llm, repository, settings)
        pipeline.analyze_conflicts(document.id)

        with pytest.raises(NotFoundError):
            pipeline.merge(document.id, en.id)

    def test_merge_failure_marks_document_failed(self, llm, repository, settings, document):
        zh, _ = seed_pair(repository, make_sop("退货", ["接收"]), make_sop("Returns", ["Receive"]))
        pipeline = _pipeline(llm, repository, settings)
        pipeline.analyze_conflicts(document.id)
        llm.responses["sop_merge"] = ModelError("timeout")

        with pytest.raises(ModelError):
            pipeline.merge(document.id, zh.id)

        assert repository.get_document(document.id).status == DocumentStatus.FAILED
        assert repository.get_sop(zh.id).version == "1.0"


class TestReviseAndDelete:
    def test_revise_translates_into_partner_language(self, llm, repository, settings):
        zh, en = seed_pair(repository, make_sop("退货", ["接收"]), make_sop("Returns", ["Receive"]))
        llm.responses["sop_translation"] = sop_payload("退货", ["接收", "退款"])

        result = _pipeline(llm, repository, settings).revise_sop(
            en.id, make_sop("Returns", ["Receive", "Refund"], orders=[5, 6])
        )

        assert result.sop.id == en.id
        assert result.sop_partner.id == zh.id
        assert [s.order for s in result.sop.structured().steps] == [1, 2]
        assert "Simplified Chinese" in llm.calls_for("sop_translation")[0][1]

    def test_delete_keeps_partner(self, llm, repository, settings):
        zh, en = seed_pair(repository, make_sop("退货", ["接收"]), make_sop("Returns", ["Receive"]))
        indexer = RecordingIndexer()

        _pipeline(llm, repository, settings, indexer=indexer).delete_sop(en.id)

        assert repository.get_sop(zh.id).translation_pair_id is None
        assert indexer.removed == [en.id]
