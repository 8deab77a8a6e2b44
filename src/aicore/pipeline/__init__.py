"""Multi-step AI pipelines over inbox-like items."""

from aicore.pipeline.engine import (
    InvalidPipelineError,
    PipelineEngine,
    PipelineNotFoundError,
)
from aicore.pipeline.steps import (
    Classification,
    ClassifyStep,
    CustomStep,
    DraftStep,
    FilterStep,
    PipelineContext,
    PipelineDefinition,
    PipelineItem,
    PipelineResult,
    PipelineStep,
    StepTiming,
    SummarizeStep,
)

__all__ = [
    "Classification",
    "ClassifyStep",
    "CustomStep",
    "DraftStep",
    "FilterStep",
    "InvalidPipelineError",
    "PipelineContext",
    "PipelineDefinition",
    "PipelineEngine",
    "PipelineItem",
    "PipelineNotFoundError",
    "PipelineResult",
    "PipelineStep",
    "StepTiming",
    "SummarizeStep",
]
