"""
Corpus matching: find existing SOPs related to a new SOP or a question.

Strategies run in a fixed priority order and the first non-empty result
wins:
1. vector     - cosine similarity over content-block embeddings
2. keyword    - substring search over content blocks, then SOP columns
3. structural - same department or category, approved, most recent first

Every strategy is a pure read. A failing strategy is logged and the next
one is tried; the matcher itself never raises.
"""

import re
from typing import Iterator, Optional, Sequence

import structlog

from sop_reconciler.config import Settings
from sop_reconciler.errors import NotFoundError
from sop_reconciler.llm import LanguageModel
from sop_reconciler.models import CorpusCandidate, CorpusQuery, MatchStrategy, SOPRecord
from sop_reconciler.storage.repository import KeywordHit, SOPRepository
from sop_reconciler.storage.vector_index import ContentBlockIndex

logger = structlog.get_logger(__name__)

MAX_KEYWORDS = 5

DEFAULT_STRATEGIES = (MatchStrategy.VECTOR, MatchStrategy.KEYWORD, MatchStrategy.STRUCTURAL)

ENGLISH_STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "if", "then", "else", "of", "to", "in",
    "on", "at", "by", "for", "with", "from", "into", "onto", "about", "as", "is",
    "are", "was", "were", "be", "been", "being", "am", "do", "does", "did",
    "have", "has", "had", "i", "you", "he", "she", "it", "we", "they", "me",
    "my", "your", "our", "their", "its", "this", "that", "these", "those",
    "what", "which", "who", "whom", "whose", "when", "where", "why", "how",
    "can", "could", "should", "would", "will", "shall", "may", "might", "must",
    "not", "no", "so", "than", "too", "very", "just", "there", "here", "any",
    "some", "all", "each", "please", "tell", "explain",
})

CHINESE_STOP_WORDS = frozenset({
    "的", "了", "是", "在", "和", "与", "及", "或", "也", "就", "都", "而",
    "吗", "呢", "吧", "啊", "我", "你", "他", "她", "它", "我们", "你们", "他们",
    "这", "那", "这个", "那个", "什么", "怎么", "怎样", "如何", "哪些", "哪个",
    "为什么", "请问", "请", "一下", "需要", "应该", "可以", "能", "要",
})

STOP_WORDS = ENGLISH_STOP_WORDS | CHINESE_STOP_WORDS

_TOKEN_PATTERN = re.compile(r"\w+")
_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")
# Longest first so "我们" is removed before "我"
_CJK_STOP_SPLIT = re.compile(
    "|".join(re.escape(w) for w in sorted(CHINESE_STOP_WORDS, key=len, reverse=True))
)


def _tokenize(text: str) -> Iterator[str]:
    for token in _TOKEN_PATTERN.findall(text.lower()):
        if _CJK_PATTERN.search(token):
            # Chinese has no spaces; stop words act as separators inside a run
            yield from (part for part in _CJK_STOP_SPLIT.split(token) if part)
        else:
            yield token


def extract_keywords(text: str, max_keywords: int = MAX_KEYWORDS) -> list[str]:
    """Lowercased tokens minus stop words, deduplicated, first ``max_keywords`` kept."""
    keywords: list[str] = []
    for token in _tokenize(text):
        if token in STOP_WORDS or token in keywords:
            continue
        keywords.append(token)
        if len(keywords) >= max_keywords:
            break
    return keywords


def _candidate_from_record(
    record: SOPRecord,
    score: float,
    strategy: MatchStrategy,
    snippet: Optional[str] = None,
) -> CorpusCandidate:
    return CorpusCandidate(
        sop_id=record.id,
        title=record.title,
        department=record.department,
        category=record.category,
        steps=record.structured().steps,
        score=score,
        strategy=strategy,
        snippet=snippet,
    )


class CorpusMatcher:
    """Retrieves candidate related SOPs from the stored corpus."""

    def __init__(
        self,
        repository: SOPRepository,
        settings: Settings,
        llm: Optional[LanguageModel] = None,
        vector_index: Optional[ContentBlockIndex] = None,
    ):
        self.repository = repository
        self.settings = settings
        self.llm = llm
        self.vector_index = vector_index

    def is_vector_search_available(self) -> bool:
        """True when embeddings can be computed and the index holds something."""
        if not self.settings.vector_search_enabled or self.vector_index is None:
            return False
        if self.llm is None or not self.llm.supports_embeddings:
            return False

        try:
            return self.vector_index.count() > 0
        except Exception as e:
            logger.warning("vector_index_unavailable", error=str(e))
            return False

    def find_candidates(
        self,
        query: CorpusQuery,
        k: Optional[int] = None,
        strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
    ) -> list[CorpusCandidate]:
        """Run strategies in order; return the first non-empty result (top ``k``)."""
        limit = k or self.settings.corpus_candidate_limit

        for strategy in strategies:
            try:
                candidates = self._run_strategy(strategy, query, limit)
            except Exception as e:
                logger.warning("corpus_strategy_failed", strategy=strategy.value, error=str(e))
                continue

            if candidates:
                logger.info(
                    "corpus_candidates_found",
                    strategy=strategy.value,
                    count=len(candidates),
                    language=query.language,
                )
                return candidates

            logger.debug("corpus_strategy_empty", strategy=strategy.value)

        logger.info("no_related_sops", language=query.language)
        return []

    def _run_strategy(
        self,
        strategy: MatchStrategy,
        query: CorpusQuery,
        limit: int,
    ) -> list[CorpusCandidate]:
        if strategy is MatchStrategy.VECTOR:
            return self._vector_search(query, limit)
        if strategy is MatchStrategy.KEYWORD:
            return self._keyword_search(query, limit)
        return self._structural_search(query, limit)

    def _vector_search(self, query: CorpusQuery, limit: int) -> list[CorpusCandidate]:
        if not self.is_vector_search_available():
            return []

        embedding = self.llm.embed(query.text)
        hits = self.vector_index.query(embedding, query.language, n_results=limit * 5)

        best: dict[int, tuple[float, str]] = {}
        for hit in sorted(hits, key=lambda h: h.similarity, reverse=True):
            if hit.sop_id not in best:
                best[hit.sop_id] = (hit.similarity, hit.document)

        candidates: list[CorpusCandidate] = []
        for sop_id, (similarity, document) in best.items():
            try:
                record = self.repository.get_sop(sop_id)
            except NotFoundError:
                logger.debug("vector_hit_stale", sop_id=sop_id)
                continue
            if record.language != query.language:
                continue
            candidates.append(
                _candidate_from_record(record, round(similarity, 4), MatchStrategy.VECTOR, document[:200])
            )
            if len(candidates) >= limit:
                break

        return candidates

    def _keyword_search(self, query: CorpusQuery, limit: int) -> list[CorpusCandidate]:
        keywords = extract_keywords(query.text)
        if not keywords:
            return []

        logger.debug("keyword_search", keywords=keywords)

        hits: list[KeywordHit] = self.repository.search_blocks_by_keywords(
            keywords, query.language, limit
        )
        if not hits:
            hits = self.repository.search_sops_by_keywords(keywords, query.language, limit)

        return [
            _candidate_from_record(hit.sop, hit.score, MatchStrategy.KEYWORD, hit.snippet)
            for hit in hits
        ]

    def _structural_search(self, query: CorpusQuery, limit: int) -> list[CorpusCandidate]:
        records = self.repository.find_by_department_or_category(
            query.department, query.category, query.language, limit
        )
        return [_candidate_from_record(record, 0.0, MatchStrategy.STRUCTURAL) for record in records]
