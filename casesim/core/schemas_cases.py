"""Schemas for case definitions, stages and per-case stage overrides."""

from typing import Any

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from casesim.core.schemas_base import CamelModel


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return value


class Stage(CamelModel):
    """One ordered phase of a case conversation."""

    id: str = Field(..., description="Stage identifier")
    order: int = Field(..., ge=0, description="Zero-based position in the case")
    title: str = Field(..., description="Stage title")
    description: str = Field(default="", description="Learner-facing description")
    role: str = Field(default="", description="Persona role label that answers in this stage")
    base_prompt: str = Field(default="", description="Stage-specific system prompt")
    feedback_prompt_key: str | None = Field(default=None, description="Key of the feedback prompt")
    keywords: list[str] = Field(
        default_factory=list,
        description="Terms whose presence in a persona reply counts as a keyword hit",
    )


class StageOverride(CamelModel):
    """Per-case administrative edits to one stage."""

    active: bool = Field(default=True, description="Inactive stages are skipped entirely")
    title: str | None = None
    description: str | None = None
    base_prompt: str | None = None
    min_user_turns: int = Field(default=1, ge=0)
    min_assistant_turns: int = Field(default=1, ge=0)
    min_assistant_keyword_hits: int = Field(default=1, ge=0)

    @field_validator("active", mode="before")
    @classmethod
    def _active_bool(cls, value: Any) -> Any:
        if value is None:
            return True
        return _coerce_bool(value)

    @field_validator(
        "min_user_turns", "min_assistant_turns", "min_assistant_keyword_hits", mode="before"
    )
    @classmethod
    def _threshold_default(cls, value: Any) -> Any:
        # Unset thresholds fall back to 1
        if value is None or value == "":
            return 1
        return value

    def apply(self, stage: Stage) -> Stage:
        """Return the stage with this override's text fields layered on top."""
        updates = {
            "title": self.title or stage.title,
            "description": self.description if self.description is not None else stage.description,
            "base_prompt": self.base_prompt or stage.base_prompt,
        }
        return stage.model_copy(update=updates)


class CaseFieldsSnapshot(CamelModel):
    """Narrative fields of a case. Unknown fields are kept but never drive control flow."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str | None = None
    title: str | None = None
    description: str | None = None
    species: str | None = None
    breed: str | None = None
    condition: str | None = None
    patient_name: str | None = None
    patient_age: str | None = None
    patient_sex: str | None = None
    presenting_complaint: str | None = None
    history: str | None = None
    physical_findings: str | None = None
    lab_results: str | None = None
    imaging_results: str | None = None
    owner_background: str | None = None
    owner_name: str | None = None
    differential_diagnoses: str | None = None
    treatment_plan: str | None = None


class CaseDefinition(CaseFieldsSnapshot):
    """A versioned clinical scenario with its ordered stages."""

    id: str = Field(..., description="Canonical case identifier")
    slug: str | None = Field(default=None, description="Human-friendly alternate identifier")
    title: str = Field(default="", description="Case title")
    stages: list[Stage] = Field(default_factory=list)

    @model_validator(mode="after")
    def _dense_stage_order(self) -> "CaseDefinition":
        ordered = sorted(self.stages, key=lambda s: s.order)
        for index, stage in enumerate(ordered):
            if stage.order != index:
                raise ValueError(
                    f"Stage order must be a dense zero-based sequence; "
                    f"expected {index}, got {stage.order} for stage {stage.id}"
                )
        self.stages = ordered
        return self

    def fields_snapshot(self) -> CaseFieldsSnapshot:
        data = self.model_dump(exclude={"stages", "slug"})
        return CaseFieldsSnapshot.model_validate(data)


def parse_stage_overrides(raw: dict[str, Any] | None) -> dict[str, StageOverride]:
    """Validate a persisted override map keyed by stringified stage index.

    Raises:
        ValueError: A key is not a stage index or an entry is malformed
    """
    overrides: dict[str, StageOverride] = {}
    for key, value in (raw or {}).items():
        try:
            index = str(int(key))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Stage override key {key!r} is not a stage index") from e
        if isinstance(value, bool) or isinstance(value, str):
            # Legacy activation-only map: {"0": true}
            overrides[index] = StageOverride(active=_coerce_bool(value))
        else:
            overrides[index] = StageOverride.model_validate(value or {})
    return overrides
