"""Unit tests for the SOP merger."""

import json

import pytest

from sop_reconciler.errors import SchemaError
from sop_reconciler.models import ExtractedImage, MergeStrategy
from sop_reconciler.pipeline.merger import SOPMerger

from conftest import StubLanguageModel, make_sop, sop_payload


def _image(index: int, name: str) -> ExtractedImage:
    return ExtractedImage(index=index, filename=name, url=f"/uploads/{name}")


class TestSOPMerger:
    def test_deduplicated_merge(self, settings):
        """Shared steps collapse and the extra step is appended, ordered 1..3."""
        payload = sop_payload("Returns", ["Receive item", "Inspect", "Refund"], orders=[1, 1, 2])
        payload["mergeNotes"] = "Deduplicated receive and inspect"
        llm = StubLanguageModel({"sop_merge": payload})
        sop_a = make_sop("Returns", ["Receive item", "Inspect"])
        sop_b = make_sop("Returns", ["Receive item", "Inspect", "Refund"])

        merged = SOPMerger(llm, settings).merge(sop_a, sop_b)

        assert [s.title for s in merged.steps] == ["Receive item", "Inspect", "Refund"]
        assert [s.order for s in merged.steps] == [1, 2, 3]
        assert merged.merge_notes == "Deduplicated receive and inspect"

    def test_arbitrary_orders_renumbered(self, settings):
        payload = sop_payload("Returns", ["a", "b", "c", "d", "e"], orders=[3, 7, 7, 1, 10])
        llm = StubLanguageModel({"sop_merge": payload})

        merged = SOPMerger(llm, settings).merge(make_sop("A", ["x"]), make_sop("B", ["y"]))

        assert [s.order for s in merged.steps] == [1, 2, 3, 4, 5]
        assert [s.title for s in merged.steps] == ["a", "b", "c", "d", "e"]

    def test_images_concatenated_new_first(self, settings):
        llm = StubLanguageModel({"sop_merge": sop_payload("Returns", ["Receive"])})
        new = make_sop("A", ["x"]).model_copy(update={"images": [_image(0, "new.png")]})
        existing = make_sop("B", ["y"]).model_copy(update={"images": [_image(0, "old-1.png"), _image(1, "old-2.png")]})

        merged = SOPMerger(llm, settings).merge(new, existing)

        assert [i.filename for i in merged.images] == ["new.png", "old-1.png", "old-2.png"]

    def test_prompt_carries_strategy_and_both_inputs(self, settings):
        llm = StubLanguageModel({"sop_merge": sop_payload("Returns", ["Receive"])})

        SOPMerger(llm, settings).merge(
            make_sop("New returns", ["x"]), make_sop("Old returns", ["y"]), MergeStrategy.PREFER_EXISTING
        )

        _, system_prompt, user_prompt = llm.calls[0]
        assert "Simplified Chinese" in system_prompt
        assert "MERGE STRATEGY: prefer_existing" in user_prompt
        assert "prefer the description from SOP B" in user_prompt
        new_json = json.loads(user_prompt.split("SOP A (new document):\n", 1)[1].split("\n\nSOP B", 1)[0])
        assert new_json["title"] == "New returns"
        assert "images" not in new_json

    def test_invalid_merge_output(self, settings):
        llm = StubLanguageModel({"sop_merge": {"steps": [{"order": 1}]}})

        with pytest.raises(SchemaError):
            SOPMerger(llm, settings).merge(make_sop("A", ["x"]), make_sop("B", ["y"]))

    def test_merge_all_keeps_result_when_steps_dropped(self, settings):
        llm = StubLanguageModel({"sop_merge": sop_payload("Returns", ["Receive"])})

        merged = SOPMerger(llm, settings).merge(
            make_sop("A", ["x", "y"]), make_sop("B", ["z"]), MergeStrategy.MERGE_ALL
        )

        assert len(merged.steps) == 1


class TestMergeMultiple:
    def test_requires_two(self, settings):
        merger = SOPMerger(StubLanguageModel(), settings)

        with pytest.raises(ValueError):
            merger.merge_multiple([make_sop("A", ["x"])])

    def test_left_fold(self, settings):
        llm = StubLanguageModel({
            "sop_merge": [
                sop_payload("AB", ["x", "y"]),
                sop_payload("ABC", ["x", "y", "z"]),
            ]
        })
        sops = [make_sop("A", ["x"]), make_sop("B", ["y"]), make_sop("C", ["z"])]

        merged = SOPMerger(llm, settings).merge_multiple(sops)

        assert merged.title == "ABC"
        assert len(llm.calls) == 2
        assert '"title": "AB"' in llm.calls[1][2]
