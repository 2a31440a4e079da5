"""Translation of a StructuredSOP into the partner language."""

import json

import structlog

from sop_reconciler.config.prompts import (
    TRANSLATION_SYSTEM_PROMPT,
    TRANSLATION_USER_PROMPT,
    language_name,
)
from sop_reconciler.llm import LanguageModel, run_structured_call
from sop_reconciler.models import StructuredSOP

logger = structlog.get_logger(__name__)


class Translator:
    """Translates SOP values while keeping the field structure and step mapping."""

    def __init__(self, llm: LanguageModel):
        self.llm = llm

    def translate(self, sop: StructuredSOP, target_language: str) -> StructuredSOP:
        """Translate ``sop`` into ``target_language``.

        The prompt asks for a 1:1 step mapping, but the count is not enforced:
        a mismatch is logged and the translation is returned as produced.
        Model failures propagate as ``ModelError``/``SchemaError``.
        """
        source = sop.model_dump(mode="json", by_alias=True, exclude={"images"})
        language = language_name(target_language)

        logger.info("translating_sop", title=sop.title, target_language=target_language)

        translated = run_structured_call(
            self.llm,
            TRANSLATION_SYSTEM_PROMPT.format(language=language),
            TRANSLATION_USER_PROMPT.format(
                language=language,
                step_count=len(sop.steps),
                sop_json=json.dumps(source, ensure_ascii=False, indent=2),
            ),
            StructuredSOP,
            "sop_translation",
        )
        translated = translated.model_copy(update={"images": list(sop.images)}).renumbered()

        if len(translated.steps) != len(sop.steps):
            logger.warning(
                "translation_step_count_mismatch",
                source_steps=len(sop.steps),
                translated_steps=len(translated.steps),
                target_language=target_language,
            )

        return translated
