"""Merging two structured SOPs into one with a single model call."""

import json

import structlog

from sop_reconciler.config import Settings
from sop_reconciler.config.prompts import (
    MERGE_STRATEGY_INSTRUCTIONS,
    MERGE_SYSTEM_PROMPT,
    MERGE_USER_PROMPT,
    language_name,
)
from sop_reconciler.llm import LanguageModel, run_structured_call
from sop_reconciler.models import MergeStrategy, StructuredSOP

logger = structlog.get_logger(__name__)


class SOPMerger:
    """Combines a new SOP with an existing one.

    The strategy is instruction text for the model and is not enforced in
    code. What code does enforce: steps are renumbered 1..N and the image
    lists of both inputs are concatenated (new first, indices unchanged).
    """

    def __init__(self, llm: LanguageModel, settings: Settings):
        self.llm = llm
        self.language = settings.primary_language

    def merge(
        self,
        new_sop: StructuredSOP,
        existing_sop: StructuredSOP,
        strategy: MergeStrategy = MergeStrategy.SMART_COMBINE,
    ) -> StructuredSOP:
        """Merge ``new_sop`` into ``existing_sop``. Model failures propagate."""
        logger.info(
            "merging_sops",
            new_title=new_sop.title,
            existing_title=existing_sop.title,
            new_steps=len(new_sop.steps),
            existing_steps=len(existing_sop.steps),
            strategy=strategy.value,
        )

        user_prompt = MERGE_USER_PROMPT.format(
            new_sop=json.dumps(new_sop.to_prompt_json(), ensure_ascii=False, indent=2),
            existing_sop=json.dumps(existing_sop.to_prompt_json(), ensure_ascii=False, indent=2),
            strategy=strategy.value,
            strategy_instruction=MERGE_STRATEGY_INSTRUCTIONS[strategy.value],
        )
        merged = run_structured_call(
            self.llm,
            MERGE_SYSTEM_PROMPT.format(language=language_name(self.language)),
            user_prompt,
            StructuredSOP,
            "sop_merge",
        )

        merged = merged.model_copy(
            update={"images": [*new_sop.images, *existing_sop.images]}
        ).renumbered()

        largest_input = max(len(new_sop.steps), len(existing_sop.steps))
        if strategy is MergeStrategy.MERGE_ALL and len(merged.steps) < largest_input:
            logger.warning(
                "merge_dropped_steps",
                merged_steps=len(merged.steps),
                largest_input=largest_input,
            )

        logger.info(
            "merge_complete",
            title=merged.title,
            steps=len(merged.steps),
            images=len(merged.images),
            has_merge_notes=bool(merged.merge_notes),
        )
        return merged

    def merge_multiple(
        self,
        sops: list[StructuredSOP],
        strategy: MergeStrategy = MergeStrategy.SMART_COMBINE,
    ) -> StructuredSOP:
        """Left fold: ``merge(merge(s0, s1), s2) ...``.

        Each fold step depends on model judgment, so the result is neither
        associative nor independent of input order.
        """
        if len(sops) < 2:
            raise ValueError("At least 2 SOPs are required to merge")

        merged = self.merge(sops[0], sops[1], strategy)
        for position, sop in enumerate(sops[2:], start=3):
            logger.info("merging_next_sop", position=position, total=len(sops))
            merged = self.merge(merged, sop, strategy)

        return merged
