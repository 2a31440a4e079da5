"""Structured SOP models shared by every pipeline stage.

The JSON exchanged with the language model and stored in the ``content``
column uses camelCase keys (``imageRefs``, ``mergeNotes``); attributes are
snake_case. Both spellings are accepted on input.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractedImage(CamelModel):
    """An image pulled out of a source document and stored in the blob store."""

    index: int = Field(..., ge=0, description="0-based position in document-encounter order")
    filename: str = Field(..., description="Stored filename")
    url: str = Field(..., description="Blob store URL")
    content_type: str = Field(default="image/png", description="MIME type")


class Step(CamelModel):
    """One step of a procedure."""

    order: int = Field(default=1, ge=1, description="1-based position, equals array index + 1")
    title: str = Field(..., description="Short step title")
    description: str = Field(default="", description="Full step detail")
    responsible: Optional[str] = Field(None, description="Role or person responsible")
    conditions: list[str] = Field(default_factory=list, description="Triggers and preconditions")
    notes: list[str] = Field(default_factory=list, description="Cautions, examples, figures")
    image_refs: list[int] = Field(
        default_factory=list, description="Indices into the owning SOP's image list"
    )
    merge_info: Optional[str] = Field(
        None, description="Which input steps this step was merged from"
    )

    @field_validator("order", mode="before")
    @classmethod
    def _coerce_order(cls, value: Any) -> int:
        # Model-supplied numbering is advisory; renumber_steps() fixes it.
        try:
            order = int(value)
        except (TypeError, ValueError):
            return 1
        return order if order >= 1 else 1

    @field_validator("description", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("conditions", "notes", mode="before")
    @classmethod
    def _coerce_text_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return value

    @field_validator("image_refs", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def block_text(self) -> str:
        """Searchable text of the step."""
        return f"{self.title}\n{self.description}"


def renumber_steps(steps: list[Step]) -> list[Step]:
    """Return copies of ``steps`` with ``order`` set to array position + 1."""
    return [step.model_copy(update={"order": i}) for i, step in enumerate(steps, start=1)]


class StructuredSOP(CamelModel):
    """The canonical unit of work: a titled, ordered procedure."""

    title: str = Field(..., min_length=1)
    department: str = ""
    category: str = ""
    description: Optional[str] = None
    steps: list[Step] = Field(default_factory=list)
    images: list[ExtractedImage] = Field(default_factory=list)
    merge_notes: Optional[str] = None

    @field_validator("department", "category", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    def renumbered(self) -> "StructuredSOP":
        """Copy with the step-order invariant re-established."""
        return self.model_copy(update={"steps": renumber_steps(self.steps)})

    def has_contiguous_order(self) -> bool:
        return all(step.order == i for i, step in enumerate(self.steps, start=1))

    def to_content(self) -> dict[str, Any]:
        """JSON-ready dict for persistence and prompts."""
        return self.model_dump(mode="json", by_alias=True)

    def to_prompt_json(self) -> dict[str, Any]:
        """Content without images and merge bookkeeping, for model prompts."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"images": True, "merge_notes": True, "steps": {"__all__": {"merge_info"}}},
        )
