"""Pipeline definitions, items and per-run state.

Steps form a closed, tagged set selected by their `type` field:
classify, filter, summarize, draft and custom. Declarative steps can be
loaded from plain data (JSON/TOML) through pydantic validation; `custom`
steps carry a caller-supplied coroutine and only exist in code.

[invariant:typing] Step models are frozen; a definition never changes once built.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ClassifyStep(BaseModel):
    """Label every working item with one of `labels`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["classify"] = "classify"
    labels: list[str] = Field(..., min_length=1)
    model: str | None = None
    context: str | None = None


class FilterStep(BaseModel):
    """Keep items whose classification label is in `keep_labels` with enough confidence.

    Items that were never classified are dropped.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["filter"] = "filter"
    keep_labels: list[str]
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class SummarizeStep(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["summarize"] = "summarize"
    style: Literal["brief", "detailed", "bullet-points"] | None = None
    max_length: int | None = Field(default=None, gt=0)
    model: str | None = None


class DraftStep(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["draft"] = "draft"
    intent: str | None = None
    tone: Literal["professional", "casual", "concise"] | None = None
    model: str | None = None


class CustomStep(BaseModel):
    """Escape hatch: `fn(context, provider)` returns the next context."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["custom"] = "custom"
    name: str
    fn: Callable[..., Awaitable[Any]]


PipelineStep = Annotated[
    ClassifyStep | FilterStep | SummarizeStep | DraftStep | CustomStep,
    Field(discriminator="type"),
]


class PipelineDefinition(BaseModel):
    """A named, ordered sequence of steps."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    name: str
    steps: list[PipelineStep] = Field(default_factory=list)


def step_label(step: ClassifyStep | FilterStep | SummarizeStep | DraftStep | CustomStep) -> str:
    """Name used in timing records: the step type, or a custom step's name."""
    if isinstance(step, CustomStep):
        return step.name
    return step.type


# -----------------------------------------------------------------------------
# Items and run state
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PipelineItem:
    """An inbox-like item flowing through a pipeline."""

    id: str
    title: str
    body: str | None = None
    preview: str | None = None
    type: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        """Body, else preview, else the empty string."""
        if self.body is not None:
            return self.body
        if self.preview is not None:
            return self.preview
        return ""


@dataclass(frozen=True, slots=True)
class Classification:
    label: str
    confidence: float
    reasoning: str | None = None


@dataclass(frozen=True, slots=True)
class StepTiming:
    step: str
    duration_ms: float


@dataclass(frozen=True, slots=True)
class PipelineContext:
    """State threaded through one pipeline run.

    Each step returns a new context; dict fields are copied on write and
    never shared between two runs.
    """

    items: tuple[PipelineItem, ...] = ()
    classifications: dict[str, Classification] = field(default_factory=dict)
    summaries: dict[str, str] = field(default_factory=dict)
    drafts: dict[str, str] = field(default_factory=dict)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    step_timings: tuple[StepTiming, ...] = ()


@dataclass(slots=True)
class PipelineResult:
    items: list[PipelineItem]
    classifications: dict[str, Classification]
    summaries: dict[str, str]
    drafts: dict[str, str]
    total_input_tokens: int
    total_output_tokens: int
    step_timings: list[StepTiming]

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable view of the result."""
        return {
            "items": [asdict(item) for item in self.items],
            "classifications": {k: asdict(v) for k, v in self.classifications.items()},
            "summaries": dict(self.summaries),
            "drafts": dict(self.drafts),
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "step_timings": [asdict(t) for t in self.step_timings],
        }


__all__ = [
    "Classification",
    "ClassifyStep",
    "CustomStep",
    "DraftStep",
    "FilterStep",
    "PipelineContext",
    "PipelineDefinition",
    "PipelineItem",
    "PipelineResult",
    "PipelineStep",
    "StepTiming",
    "SummarizeStep",
    "step_label",
]
