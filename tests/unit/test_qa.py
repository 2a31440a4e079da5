"""Unit tests for question answering over the corpus."""

from sop_reconciler.pipeline.matcher import CorpusMatcher
from sop_reconciler.pipeline.qa import QuestionAnswerer
from sop_reconciler.storage.orm import QAHistory

from conftest import StubLanguageModel, make_sop, seed_pair


def _answerer(llm, repository, settings):
    return QuestionAnswerer(llm, CorpusMatcher(repository, settings), repository, settings)


def _history(repository):
    with repository.transaction() as session:
        return [(row.question, row.found_results, row.related_sops) for row in session.query(QAHistory).all()]


class TestQuestionAnswerer:
    def test_answer_from_matched_sops(self, repository, settings):
        _, en = seed_pair(
            repository,
            make_sop("退货处理", ["接收退货"]),
            make_sop("Return handling", ["Receive returned parcel", "Issue refund"]),
        )
        llm = StubLanguageModel({"qa_answer": {"answer": "1. Receive the parcel 2. Issue the refund"}})

        result = _answerer(llm, repository, settings).ask("how to process a return", language="en", user_id=5)

        assert result.found_results is True
        assert result.answer.startswith("1. Receive")
        assert [item["id"] for item in result.related_sops] == [en.id]
        user_prompt = llm.calls[0][2]
        assert "[Return handling - Warehouse]" in user_prompt
        assert "2. Issue refund" in user_prompt
        assert "English" in llm.calls[0][1]
        assert _history(repository) == [("how to process a return", True, [en.id])]

    def test_no_results(self, repository, settings):
        llm = StubLanguageModel()

        result = _answerer(llm, repository, settings).ask("how do I file taxes", language="en")

        assert result.found_results is False
        assert "how do I file taxes" in result.answer
        assert llm.calls == []
        assert _history(repository) == [("how do I file taxes", False, [])]

    def test_defaults_to_primary_language(self, repository, settings):
        llm = StubLanguageModel()

        result = _answerer(llm, repository, settings).ask("报销")

        assert result.answer.startswith("抱歉")

    def test_structural_strategy_not_used(self, repository, settings):
        seed_pair(repository, make_sop("退货", ["接收"]), make_sop("Returns", ["Receive"]))
        llm = StubLanguageModel()

        result = _answerer(llm, repository, settings).ask("payroll", language="en")

        assert result.found_results is False
