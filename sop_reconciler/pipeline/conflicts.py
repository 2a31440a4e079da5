"""
Conflict classification of a new SOP against corpus candidates.

One model call per candidate scores similarity and labels the relationship.
A failed comparison degrades to "similarity 0, complementary" so a single bad
call never blocks document processing.
"""

import structlog

from sop_reconciler.config import Settings
from sop_reconciler.config.prompts import COMPARISON_SYSTEM_PROMPT, COMPARISON_USER_PROMPT
from sop_reconciler.llm import LanguageModel, run_structured_call
from sop_reconciler.models import (
    ConflictAnalysis,
    ConflictType,
    CorpusCandidate,
    MergeSuggestion,
    RelatedSOP,
    SOPComparison,
    StructuredSOP,
    SuggestionAction,
)

logger = structlog.get_logger(__name__)


def _failed_comparison(error: Exception) -> SOPComparison:
    return SOPComparison(
        similarity=0.0,
        conflict_type=ConflictType.COMPLEMENTARY,
        details=f"comparison failed: {error}",
    )


def _keep_both(reason: str, details: str) -> ConflictAnalysis:
    return ConflictAnalysis(
        suggestions=[
            MergeSuggestion(action=SuggestionAction.KEEP_BOTH, reason=reason, details=details)
        ]
    )


def generate_suggestions(
    related: list[RelatedSOP],
    duplicate_threshold: float = 0.8,
) -> list[MergeSuggestion]:
    """One or two suggestions driven by the most similar related SOP."""
    if not related:
        return []

    top = max(related, key=lambda r: r.similarity)
    percent = round(top.similarity * 100)

    if top.conflict_type == ConflictType.DUPLICATE or top.similarity > duplicate_threshold:
        return [
            MergeSuggestion(
                action=SuggestionAction.REPLACE,
                target_sop_id=top.id,
                reason=f'Highly duplicates "{top.title}" (similarity {percent}%)',
                details="Replace the existing SOP with the new document, or merge both to keep every detail.",
            ),
            MergeSuggestion(
                action=SuggestionAction.MERGE,
                target_sop_id=top.id,
                reason="Combine the strengths of both versions",
                details="Merge the new and existing SOPs, keeping all details and differences of both.",
            ),
        ]

    if top.conflict_type == ConflictType.CONFLICTING:
        return [
            MergeSuggestion(
                action=SuggestionAction.MERGE,
                target_sop_id=top.id,
                reason=f'Conflicts with "{top.title}"',
                details=f"{top.details}. Merge and resolve the conflict to unify the procedure.",
            ),
            MergeSuggestion(
                action=SuggestionAction.KEEP_BOTH,
                reason="Keep both versions if they apply to different situations",
                details="Both SOPs can stay if each states clearly when it applies.",
            ),
        ]

    if top.conflict_type == ConflictType.PARTIAL_OVERLAP:
        return [
            MergeSuggestion(
                action=SuggestionAction.UPDATE_EXISTING,
                target_sop_id=top.id,
                reason=f'Adds to "{top.title}"',
                details="The new document has extra steps or details; update the existing SOP with them.",
            ),
            MergeSuggestion(
                action=SuggestionAction.MERGE,
                target_sop_id=top.id,
                reason="Merge into a more complete procedure",
                details="Merge both SOPs into one procedure covering every step.",
            ),
        ]

    return [
        MergeSuggestion(
            action=SuggestionAction.KEEP_BOTH,
            reason="Procedures are complementary and can coexist",
            details=f'The new SOP and "{top.title}" describe different but related procedures.',
        )
    ]


class ConflictClassifier:
    """Scores and labels the relationship between a new SOP and existing ones."""

    def __init__(self, llm: LanguageModel, settings: Settings):
        self.llm = llm
        self.related_threshold = settings.related_similarity_threshold
        self.duplicate_threshold = settings.duplicate_similarity_threshold

    def classify(self, new_sop: StructuredSOP, candidate: CorpusCandidate) -> SOPComparison:
        """Compare against one candidate; never raises."""
        comparison, _ = self._classify(new_sop, candidate)
        return comparison

    def _classify(self, new_sop: StructuredSOP, candidate: CorpusCandidate) -> tuple[SOPComparison, bool]:
        """Comparison plus whether it degraded to the failure default."""
        try:
            return self._compare(new_sop, candidate), False
        except Exception as e:
            logger.warning("sop_comparison_failed", candidate_id=candidate.sop_id, error=str(e))
            return _failed_comparison(e), True

    def _compare(self, new_sop: StructuredSOP, candidate: CorpusCandidate) -> SOPComparison:
        user_prompt = COMPARISON_USER_PROMPT.format(
            new_title=new_sop.title,
            new_department=new_sop.department,
            new_category=new_sop.category,
            new_step_count=len(new_sop.steps),
            new_steps="; ".join(step.title for step in new_sop.steps),
            existing_title=candidate.title,
            existing_step_count=len(candidate.steps),
            existing_steps="; ".join(step.title for step in candidate.steps),
        )
        return run_structured_call(
            self.llm,
            COMPARISON_SYSTEM_PROMPT,
            user_prompt,
            SOPComparison,
            "sop_comparison",
        )

    def analyze(self, new_sop: StructuredSOP, candidates: list[CorpusCandidate]) -> ConflictAnalysis:
        """Classify every candidate and aggregate the verdict with suggestions."""
        if not candidates:
            logger.info("conflict_detection_no_candidates", title=new_sop.title)
            return _keep_both(
                "No existing SOPs in this department or category",
                "This is the first SOP of its kind; create it as a new SOP.",
            )

        related: list[RelatedSOP] = []
        failures = 0

        for candidate in candidates:
            comparison, failed = self._classify(new_sop, candidate)
            if failed:
                failures += 1

            logger.debug(
                "sop_compared",
                candidate_id=candidate.sop_id,
                similarity=comparison.similarity,
                conflict_type=comparison.conflict_type.value,
            )

            if comparison.similarity > self.related_threshold:
                related.append(
                    RelatedSOP(
                        id=candidate.sop_id,
                        title=candidate.title,
                        department=candidate.department,
                        category=candidate.category,
                        similarity=comparison.similarity,
                        conflict_type=comparison.conflict_type,
                        details=comparison.details,
                    )
                )

        if failures == len(candidates):
            logger.warning("conflict_detection_degraded", candidates=len(candidates))
            return _keep_both(
                "Automatic comparison failed; manual review recommended",
                "The related SOPs could not be compared. Review them manually before creating a new SOP.",
            )

        if not related:
            logger.info("conflict_detection_complete", candidates=len(candidates), related=0)
            return _keep_both(
                "No overlapping SOPs found",
                "The content does not overlap with existing SOPs; create it as a new SOP.",
            )

        analysis = ConflictAnalysis(
            has_conflicts=any(r.conflict_type == ConflictType.CONFLICTING for r in related),
            has_duplicates=any(
                r.conflict_type == ConflictType.DUPLICATE or r.similarity > self.duplicate_threshold
                for r in related
            ),
            related_sops=related,
            suggestions=generate_suggestions(related, self.duplicate_threshold),
        )

        logger.info(
            "conflict_detection_complete",
            candidates=len(candidates),
            related=len(related),
            has_conflicts=analysis.has_conflicts,
            has_duplicates=analysis.has_duplicates,
        )
        return analysis
