"""
Pipeline engine: run registered or inline pipelines against a provider.

A run threads an immutable `PipelineContext` through each step in order.
Steps never mutate the caller's item list; every step returns a new context.
Provider errors propagate unchanged and abort the run.

Usage:
    engine = PipelineEngine()
    engine.register(PipelineDefinition(
        id="triage",
        name="Triage",
        steps=[ClassifyStep(labels=["urgent", "later"]),
               FilterStep(keep_labels=["urgent"]),
               SummarizeStep(style="brief")],
    ))
    result = await engine.run("triage", items, provider)
"""

from __future__ import annotations

import inspect
import threading
import time
from collections.abc import Sequence
from dataclasses import replace

from aicore.core.console import get_logger
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
    StepTiming,
    SummarizeStep,
    step_label,
)
from aicore.providers import (
    AIProvider,
    ClassifyItem,
    ClassifyRequest,
    DraftItem,
    DraftRequest,
    SummarizeRequest,
)

logger = get_logger(__name__)


class PipelineNotFoundError(LookupError):
    """Raised when running a pipeline id that is not registered."""

    def __init__(self, pipeline_id: str) -> None:
        super().__init__(f"Pipeline '{pipeline_id}' not found")
        self.pipeline_id = pipeline_id


class InvalidPipelineError(TypeError):
    """Raised when an inline pipeline is not a `PipelineDefinition`."""


# -----------------------------------------------------------------------------
# Step executors
# -----------------------------------------------------------------------------


async def classify_items(
    step: ClassifyStep, ctx: PipelineContext, provider: AIProvider
) -> PipelineContext:
    """Classify all working items in one batched provider call."""
    if not ctx.items:
        return ctx

    response = await provider.classify(
        ClassifyRequest(
            items=[
                ClassifyItem(
                    id=item.id,
                    title=item.title,
                    body=item.body,
                    preview=item.preview,
                    metadata=item.metadata,
                )
                for item in ctx.items
            ],
            labels=list(step.labels),
            model=step.model,
            context=step.context,
        )
    )

    classifications = dict(ctx.classifications)
    for result in response.results:
        classifications[result.item_id] = Classification(
            label=result.label,
            confidence=result.confidence,
            reasoning=result.reasoning,
        )

    return replace(
        ctx,
        classifications=classifications,
        total_input_tokens=ctx.total_input_tokens + response.input_tokens,
        total_output_tokens=ctx.total_output_tokens + response.output_tokens,
    )


def filter_items(step: FilterStep, ctx: PipelineContext) -> PipelineContext:
    """Keep classified items with an allowed label and sufficient confidence.

    Unclassified items are always dropped. Applying the same filter twice
    yields the same item set.
    """
    keep = set(step.keep_labels)
    kept = tuple(
        item
        for item in ctx.items
        if (c := ctx.classifications.get(item.id)) is not None
        and c.label in keep
        and c.confidence >= step.min_confidence
    )
    if len(kept) != len(ctx.items):
        logger.debug("Filter kept %d of %d items", len(kept), len(ctx.items))
    return replace(ctx, items=kept)


async def summarize_items(
    step: SummarizeStep, ctx: PipelineContext, provider: AIProvider
) -> PipelineContext:
    """Summarize each working item, one provider call per item, in order."""
    summaries = dict(ctx.summaries)
    input_tokens = ctx.total_input_tokens
    output_tokens = ctx.total_output_tokens

    for item in ctx.items:
        response = await provider.summarize(
            SummarizeRequest(
                content=f"{item.title}\n\n{item.text}",
                max_length=step.max_length,
                style=step.style,
                model=step.model,
            )
        )
        summaries[item.id] = response.summary
        input_tokens += response.input_tokens
        output_tokens += response.output_tokens

    return replace(
        ctx,
        summaries=summaries,
        total_input_tokens=input_tokens,
        total_output_tokens=output_tokens,
    )


async def draft_items(
    step: DraftStep, ctx: PipelineContext, provider: AIProvider
) -> PipelineContext:
    """Draft a reply for each working item, one provider call per item, in order."""
    drafts = dict(ctx.drafts)
    input_tokens = ctx.total_input_tokens
    output_tokens = ctx.total_output_tokens

    for item in ctx.items:
        response = await provider.draft(
            DraftRequest(
                item=DraftItem(
                    id=item.id,
                    title=item.title,
                    body=item.text,
                    type=item.type or "unknown",
                    metadata=item.metadata,
                ),
                intent=step.intent,
                tone=step.tone,
                model=step.model,
            )
        )
        drafts[item.id] = response.draft
        input_tokens += response.input_tokens
        output_tokens += response.output_tokens

    return replace(
        ctx,
        drafts=drafts,
        total_input_tokens=input_tokens,
        total_output_tokens=output_tokens,
    )


async def run_custom(
    step: CustomStep, ctx: PipelineContext, provider: AIProvider
) -> PipelineContext:
    result = step.fn(ctx, provider)
    if inspect.isawaitable(result):
        result = await result
    if not isinstance(result, PipelineContext):
        raise InvalidPipelineError(
            f"Custom step '{step.name}' returned {type(result).__name__}, expected PipelineContext"
        )
    return result


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


class PipelineEngine:
    """Registry of pipeline definitions and their sequential executor."""

    def __init__(self) -> None:
        self._pipelines: dict[str, PipelineDefinition] = {}
        self._lock = threading.RLock()

    def register(self, pipeline: PipelineDefinition) -> None:
        """Insert or overwrite a pipeline by id."""
        with self._lock:
            self._pipelines[pipeline.id] = pipeline
        logger.debug("Registered pipeline %s (%d steps)", pipeline.id, len(pipeline.steps))

    def unregister(self, pipeline_id: str) -> None:
        with self._lock:
            self._pipelines.pop(pipeline_id, None)

    def get(self, pipeline_id: str) -> PipelineDefinition | None:
        with self._lock:
            return self._pipelines.get(pipeline_id)

    def list(self) -> list[PipelineDefinition]:
        with self._lock:
            return list(self._pipelines.values())

    async def run(
        self,
        pipeline: PipelineDefinition | str,
        items: Sequence[PipelineItem],
        provider: AIProvider,
    ) -> PipelineResult:
        """Execute every step in order and return the accumulated result.

        Args:
            pipeline: Registered pipeline id or an inline definition
            items: Input items; never modified
            provider: Provider serving classify/summarize/draft calls

        Raises:
            PipelineNotFoundError: If `pipeline` is an unregistered id
            InvalidPipelineError: If `pipeline` is neither an id nor a definition
            AIProviderError: Propagated unchanged from the provider
        """
        definition = self._lookup(pipeline)
        logger.debug("Running pipeline %s on %d items", definition.id, len(items))

        ctx = PipelineContext(items=tuple(items))
        for step in definition.steps:
            started = time.perf_counter()
            match step:
                case ClassifyStep():
                    ctx = await classify_items(step, ctx, provider)
                case FilterStep():
                    ctx = filter_items(step, ctx)
                case SummarizeStep():
                    ctx = await summarize_items(step, ctx, provider)
                case DraftStep():
                    ctx = await draft_items(step, ctx, provider)
                case CustomStep():
                    ctx = await run_custom(step, ctx, provider)
                case _:
                    raise InvalidPipelineError(f"Unknown step type: {type(step).__name__}")
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug("Step %s finished in %.1f ms", step_label(step), elapsed_ms)
            ctx = replace(
                ctx,
                step_timings=(*ctx.step_timings, StepTiming(step_label(step), elapsed_ms)),
            )

        logger.info(
            "Pipeline %s finished: %d items, %d in / %d out tokens",
            definition.id,
            len(ctx.items),
            ctx.total_input_tokens,
            ctx.total_output_tokens,
        )

        return PipelineResult(
            items=list(ctx.items),
            classifications=dict(ctx.classifications),
            summaries=dict(ctx.summaries),
            drafts=dict(ctx.drafts),
            total_input_tokens=ctx.total_input_tokens,
            total_output_tokens=ctx.total_output_tokens,
            step_timings=list(ctx.step_timings),
        )

    def _lookup(self, pipeline: PipelineDefinition | str) -> PipelineDefinition:
        if isinstance(pipeline, str):
            definition = self.get(pipeline)
            if definition is None:
                raise PipelineNotFoundError(pipeline)
            return definition
        if not isinstance(pipeline, PipelineDefinition):
            raise InvalidPipelineError(
                f"Expected a pipeline id or PipelineDefinition, got {type(pipeline).__name__}"
            )
        return pipeline


__all__ = [
    "InvalidPipelineError",
    "PipelineEngine",
    "PipelineNotFoundError",
    "classify_items",
    "draft_items",
    "filter_items",
    "run_custom",
    "summarize_items",
]
