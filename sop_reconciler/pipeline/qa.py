"""Question answering grounded in the stored SOP corpus."""

from typing import Any, Optional

import structlog
from pydantic import BaseModel

from sop_reconciler.config import Settings
from sop_reconciler.config.prompts import (
    NO_RESULTS_ANSWERS,
    QA_SYSTEM_PROMPT,
    QA_USER_PROMPT,
    language_name,
)
from sop_reconciler.llm import LanguageModel, run_structured_call
from sop_reconciler.models import CorpusCandidate, CorpusQuery, MatchStrategy, QAAnswer
from sop_reconciler.storage.repository import SOPRepository

from .matcher import CorpusMatcher

logger = structlog.get_logger(__name__)

QA_STRATEGIES = (MatchStrategy.VECTOR, MatchStrategy.KEYWORD)
DEFAULT_RESULT_LIMIT = 5


class _AnswerPayload(BaseModel):
    answer: str


def _format_context(candidate: CorpusCandidate) -> str:
    steps = "\n\n".join(
        f"{step.order}. {step.title}\n{step.description}".rstrip() for step in candidate.steps
    )
    header = f"[{candidate.title} - {candidate.department}]" if candidate.department else f"[{candidate.title}]"
    return f"{header}\n{steps}\n"


class QuestionAnswerer:
    """Answers free-text questions using only matched SOP content."""

    def __init__(
        self,
        llm: LanguageModel,
        matcher: CorpusMatcher,
        repository: SOPRepository,
        settings: Settings,
    ):
        self.llm = llm
        self.matcher = matcher
        self.repository = repository
        self.default_language = settings.primary_language

    def ask(
        self,
        question: str,
        language: Optional[str] = None,
        user_id: Optional[int] = None,
        limit: int = DEFAULT_RESULT_LIMIT,
    ) -> QAAnswer:
        language = language or self.default_language
        logger.info("qa_question_received", language=language, question_length=len(question))

        candidates = self.matcher.find_candidates(
            CorpusQuery(text=question, language=language),
            k=limit,
            strategies=QA_STRATEGIES,
        )

        if not candidates:
            template = NO_RESULTS_ANSWERS.get(language, NO_RESULTS_ANSWERS["en"])
            answer = template.format(question=question)
            self.repository.record_qa(user_id, question, answer, [], language, found_results=False)
            return QAAnswer(answer=answer, related_sops=[], found_results=False)

        context = "\n---\n\n".join(_format_context(candidate) for candidate in candidates)
        payload = run_structured_call(
            self.llm,
            QA_SYSTEM_PROMPT.format(language=language_name(language)),
            QA_USER_PROMPT.format(context=context, question=question),
            _AnswerPayload,
            "qa_answer",
        )

        related: list[dict[str, Any]] = [
            {
                "id": candidate.sop_id,
                "title": candidate.title,
                "department": candidate.department,
                "category": candidate.category,
                "similarity": candidate.score,
            }
            for candidate in candidates
        ]
        self.repository.record_qa(
            user_id,
            question,
            payload.answer,
            [item["id"] for item in related],
            language,
            found_results=True,
        )

        logger.info("qa_answered", related=len(related), strategy=candidates[0].strategy.value)
        return QAAnswer(answer=payload.answer, related_sops=related, found_results=True)
