"""Unit tests for structure extraction and chunk reduction."""

import pytest

from sop_reconciler.errors import ExtractionError, ModelError, SchemaError
from sop_reconciler.pipeline.structure import (
    UNTITLED_SOP,
    StructureExtractor,
    reduce_chunk_results,
)

from conftest import StubLanguageModel, make_sop, sop_payload


def _two_chunk_text() -> str:
    return ("a" * 7000) + "\n\n" + ("b" * 7998)


def _by_chunk(first, second):
    """Respond according to the chunk number in the user prompt."""

    def respond(system_prompt, user_prompt):
        if "part 1 of 2" in user_prompt:
            return first
        return second

    return respond


class TestReduceChunkResults:
    def test_first_chunk_supplies_metadata(self):
        first = make_sop("Returns", ["Receive", "Inspect"], department="Warehouse", description="Intro")
        second = make_sop("Ignored", ["Refund"], department="Finance", description="More")

        reduced = reduce_chunk_results([first, second])

        assert reduced.title == "Returns"
        assert reduced.department == "Warehouse"
        assert reduced.description == "Intro\n\nMore"
        assert [s.title for s in reduced.steps] == ["Receive", "Inspect", "Refund"]
        assert [s.order for s in reduced.steps] == [1, 2, 3]

    def test_blank_descriptions_skipped(self):
        reduced = reduce_chunk_results([make_sop("A", ["x"]), make_sop("B", ["y"], description="  ")])
        assert reduced.description is None

    def test_empty_input(self):
        with pytest.raises(ExtractionError):
            reduce_chunk_results([])


class TestStructureExtractor:
    def test_single_call_for_short_text(self, settings):
        llm = StubLanguageModel({"sop_extraction": sop_payload("Returns", ["Receive", "Inspect"], orders=[4, 9])})
        extractor = StructureExtractor(llm, settings)

        sop = extractor.extract_with_chunking("Receive the parcel.\n\nInspect it.")

        assert len(llm.calls) == 1
        assert [s.order for s in sop.steps] == [1, 2]
        assert "part 1 of" not in llm.calls[0][2]

    def test_prompt_names_primary_language(self, settings):
        llm = StubLanguageModel({"sop_extraction": sop_payload("Returns", ["Receive"])})
        StructureExtractor(llm, settings).extract("text")

        assert "Simplified Chinese" in llm.calls[0][1]

    def test_two_chunks_reduced_in_order(self, settings):
        """A 15k character document becomes two chunks whose steps run 1..5."""
        llm = StubLanguageModel({
            "sop_extraction": _by_chunk(
                sop_payload("Returns", ["A1", "A2", "A3"]),
                sop_payload("Returns cont.", ["B1", "B2"]),
            )
        })
        extractor = StructureExtractor(llm, settings)

        sop = extractor.extract_with_chunking(_two_chunk_text())

        assert len(llm.calls) == 2
        assert sop.title == "Returns"
        assert [s.title for s in sop.steps] == ["A1", "A2", "A3", "B1", "B2"]
        assert [s.order for s in sop.steps] == [1, 2, 3, 4, 5]

    def test_parallel_workers_keep_chunk_order(self, settings):
        settings = settings.model_copy(update={"chunk_extraction_workers": 2})
        llm = StubLanguageModel({
            "sop_extraction": _by_chunk(
                sop_payload("Returns", ["A1"]),
                sop_payload("Returns", ["B1"]),
            )
        })

        sop = StructureExtractor(llm, settings).extract_with_chunking(_two_chunk_text())

        assert [s.title for s in sop.steps] == ["A1", "B1"]

    def test_failed_chunk_is_skipped(self, settings):
        llm = StubLanguageModel({
            "sop_extraction": _by_chunk(
                ModelError("timeout"),
                sop_payload("Returns", ["B1", "B2"]),
            )
        })

        sop = StructureExtractor(llm, settings).extract_with_chunking(_two_chunk_text())

        assert [s.title for s in sop.steps] == ["B1", "B2"]
        assert [s.order for s in sop.steps] == [1, 2]

    def test_all_chunks_failing(self, settings):
        llm = StubLanguageModel({"sop_extraction": SchemaError("not json")})

        with pytest.raises(ExtractionError):
            StructureExtractor(llm, settings).extract_with_chunking(_two_chunk_text())

    def test_model_error_becomes_extraction_error(self, settings):
        llm = StubLanguageModel({"sop_extraction": ModelError("connection refused")})

        with pytest.raises(ExtractionError):
            StructureExtractor(llm, settings).extract("text")

    def test_invalid_payload(self, settings):
        llm = StubLanguageModel({"sop_extraction": {"title": "Returns", "steps": "not a list"}})

        with pytest.raises(ExtractionError):
            StructureExtractor(llm, settings).extract("text")

    def test_blank_text(self, settings):
        with pytest.raises(ExtractionError):
            StructureExtractor(StubLanguageModel(), settings).extract_with_chunking("  \n ")

    def test_missing_title_defaults(self, settings):
        payload = sop_payload("", ["Receive"])
        llm = StubLanguageModel({"sop_extraction": payload})

        assert StructureExtractor(llm, settings).extract("text").title == UNTITLED_SOP

    def test_model_images_ignored(self, settings):
        payload = sop_payload("Returns", ["Receive"])
        payload["images"] = [{"index": 0, "filename": "made-up.png", "url": "/x"}]
        llm = StubLanguageModel({"sop_extraction": payload})

        assert StructureExtractor(llm, settings).extract("text").images == []
