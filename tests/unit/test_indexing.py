"""Unit tests for content blocks and the vector index."""

import pytest

from sop_reconciler.models import CorpusQuery, MatchStrategy
from sop_reconciler.pipeline import ContentBlockIndexer, CorpusMatcher, build_content_blocks
from sop_reconciler.storage import ContentBlockIndex

from conftest import StubLanguageModel, make_sop, seed_pair


def letter_embedding(text: str) -> list[float]:
    """Letter-frequency vector; close enough for nearest-neighbour tests."""
    counts = [0.0] * 26
    for char in text.lower():
        if "a" <= char <= "z":
            counts[ord(char) - ord("a")] += 1.0
    return counts + [1.0]


@pytest.fixture
def vector_index(tmp_path):
    return ContentBlockIndex(tmp_path / "vectors", collection_name="test_blocks")


@pytest.fixture
def pair(repository):
    return seed_pair(
        repository,
        make_sop("退货处理", ["接收退货", "办理退款"]),
        make_sop("Return handling", ["Receive returned parcel", "Issue refund"]),
    )


class TestBuildContentBlocks:
    def test_one_block_per_step(self):
        sop = make_sop("Returns", ["Receive", "Refund"], orders=[4, 2])

        blocks = build_content_blocks(sop)

        assert [b.block_order for b in blocks] == [1, 2]
        assert blocks[0].content == "Receive\nReceive details"
        assert blocks[0].block_type == "step"
        assert blocks[0].metadata == {"responsible": "Clerk", "conditions": [], "notes": []}

    def test_no_steps(self):
        assert build_content_blocks(make_sop("Empty", [])) == []


class TestContentBlockIndexer:
    def test_refresh_indexes_both_languages(self, repository, vector_index, pair):
        zh, en = pair
        llm = StubLanguageModel(embedder=letter_embedding)
        indexer = ContentBlockIndexer(llm, vector_index, repository)

        assert indexer.refresh([zh.id, en.id]) == 4
        assert vector_index.count() == 4

        hits = vector_index.query(letter_embedding("issue refund"), "en", n_results=2)
        assert {hit.sop_id for hit in hits} == {en.id}
        assert hits[0].block_order == 2
        assert hits[0].similarity > hits[1].similarity

    def test_reindex_replaces_entries(self, repository, vector_index, pair):
        zh, en = pair
        indexer = ContentBlockIndexer(StubLanguageModel(embedder=letter_embedding), vector_index, repository)

        indexer.refresh([en.id])
        indexer.refresh([en.id])

        assert vector_index.count() == 2

    def test_remove(self, repository, vector_index, pair):
        zh, en = pair
        indexer = ContentBlockIndexer(StubLanguageModel(embedder=letter_embedding), vector_index, repository)
        indexer.backfill()

        indexer.remove(en.id)

        assert vector_index.count() == 2
        assert vector_index.query(letter_embedding("refund"), "en") == []

    def test_skipped_without_embeddings(self, repository, vector_index, pair):
        indexer = ContentBlockIndexer(StubLanguageModel(), vector_index, repository)

        assert indexer.refresh([pair[0].id]) == 0
        assert vector_index.count() == 0

    def test_embedding_failure_is_not_raised(self, repository, vector_index, pair):
        def broken(text):
            raise RuntimeError("embedding model not pulled")

        indexer = ContentBlockIndexer(StubLanguageModel(embedder=broken), vector_index, repository)

        assert indexer.refresh([pair[0].id, pair[1].id]) == 0

    def test_vector_strategy_end_to_end(self, repository, vector_index, pair, settings):
        _, en = pair
        llm = StubLanguageModel(embedder=letter_embedding)
        ContentBlockIndexer(llm, vector_index, repository).backfill()
        settings = settings.model_copy(update={"vector_search_enabled": True})
        matcher = CorpusMatcher(repository, settings, llm=llm, vector_index=vector_index)

        candidates = matcher.find_candidates(CorpusQuery(text="refund a parcel", language="en"))

        assert [c.sop_id for c in candidates] == [en.id]
        assert candidates[0].strategy == MatchStrategy.VECTOR
