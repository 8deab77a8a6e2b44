"""
AI provider abstraction for aicore.

This module defines the contract every AI backend adapter implements, the
request/response types exchanged with it, and the closed error taxonomy that
crosses every component (registry, router, cost tracker, pipeline engine).

Concrete adapters that talk to a vendor API live outside this package; they
subclass `BaseAIProvider` (or satisfy the `AIProvider` protocol) and map vendor
failures onto `AIProviderError` with the correct `retryable` flag.

Usage:
    from aicore.providers import CompletionRequest, Message

    response = await provider.complete(
        CompletionRequest(messages=[Message(role="user", content="Hello")]),
    )

    async for chunk in provider.stream(request):
        if chunk.type == "text":
            print(chunk.content, end="")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable


class Capability(str, Enum):
    """Operations a model is suitable for."""

    COMPLETION = "completion"
    CLASSIFICATION = "classification"
    SUMMARIZATION = "summarization"
    DRAFTING = "drafting"
    STREAMING = "streaming"


def _as_decimal(value: Decimal | float | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True, slots=True)
class Model:
    """A model offered by a provider, with pricing per 1000 tokens (USD)."""

    id: str
    name: str
    context_window: int
    input_cost_per_1k: Decimal
    output_cost_per_1k: Decimal
    capabilities: frozenset[Capability] = frozenset({Capability.COMPLETION})

    def __post_init__(self) -> None:
        object.__setattr__(self, "input_cost_per_1k", _as_decimal(self.input_cost_per_1k))
        object.__setattr__(self, "output_cost_per_1k", _as_decimal(self.output_cost_per_1k))
        object.__setattr__(self, "capabilities", frozenset(Capability(c) for c in self.capabilities))

    def supports(self, capability: Capability | str) -> bool:
        return Capability(capability) in self.capabilities


Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True, slots=True)
class Message:
    """A message in the conversation history."""

    role: Role
    content: str


# -----------------------------------------------------------------------------
# Completion
# -----------------------------------------------------------------------------

StopReason = Literal["end_turn", "max_tokens", "stop_sequence"]


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """A single completion request.

    `model` is optional; the router substitutes the resolved model id.
    """

    messages: tuple[Message, ...] | list[Message]
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class CompletionResponse:
    """Response from a completion request."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: StopReason = "end_turn"
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """A chunk of a streamed completion.

    A stream yields `text` chunks, then exactly one terminal `done` chunk
    carrying token counts and the model id, or an `error` chunk.
    """

    type: Literal["text", "done", "error"]
    content: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClassifyItem:
    id: str
    title: str
    body: str | None = None
    preview: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class ClassifyRequest:
    items: Sequence[ClassifyItem]
    labels: Sequence[str]
    model: str | None = None
    context: str | None = None


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    item_id: str
    label: str
    confidence: float
    reasoning: str | None = None


@dataclass(frozen=True, slots=True)
class ClassifyResponse:
    results: Sequence[ClassificationResult]
    input_tokens: int
    output_tokens: int
    model: str


# -----------------------------------------------------------------------------
# Summarization
# -----------------------------------------------------------------------------

SummaryStyle = Literal["brief", "detailed", "bullet-points"]


@dataclass(frozen=True, slots=True)
class SummarizeRequest:
    content: str
    max_length: int | None = None
    style: SummaryStyle | None = None
    model: str | None = None
    context: str | None = None


@dataclass(frozen=True, slots=True)
class SummarizeResponse:
    summary: str
    input_tokens: int
    output_tokens: int
    model: str


# -----------------------------------------------------------------------------
# Drafting
# -----------------------------------------------------------------------------

DraftTone = Literal["professional", "casual", "concise"]


@dataclass(frozen=True, slots=True)
class DraftItem:
    id: str
    title: str
    body: str
    type: str
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class DraftRequest:
    item: DraftItem
    intent: str | None = None
    tone: DraftTone | None = None
    model: str | None = None
    context: str | None = None


@dataclass(frozen=True, slots=True)
class DraftResponse:
    draft: str
    input_tokens: int
    output_tokens: int
    model: str


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class AIErrorKind(str, Enum):
    """Closed taxonomy of AI operation failures."""

    RATE_LIMITED = "rate_limited"
    TOKEN_LIMIT_EXCEEDED = "token_limit_exceeded"
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION_FAILED = "authentication_failed"
    NETWORK_ERROR = "network_error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    BUDGET_EXCEEDED = "budget_exceeded"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Base exception for provider errors."""

    pass


class AIProviderError(ProviderError):
    """A categorized AI failure.

    The router uses `retryable` as the sole trigger for advancing a fallback
    chain, so whoever constructs the error must set it correctly.

    Attributes:
        kind: Error category
        provider: Id of the provider (or component) that raised it
        retryable: Safe to retry against an alternate provider/model
        retry_after: Suggested delay in seconds before retrying, if known
    """

    default_kind: AIErrorKind = AIErrorKind.UNKNOWN
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        kind: AIErrorKind | str | None = None,
        provider: str = "unknown",
        *,
        retryable: bool | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = AIErrorKind(kind) if kind is not None else self.default_kind
        self.provider = provider
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, kind={self.kind.value!r}, "
            f"provider={self.provider!r}, retryable={self.retryable})"
        )


class RateLimitError(AIProviderError):
    """Raised when the provider's rate limit is exceeded."""

    default_kind = AIErrorKind.RATE_LIMITED
    default_retryable = True


class NetworkError(AIProviderError):
    """Raised when the provider could not be reached."""

    default_kind = AIErrorKind.NETWORK_ERROR
    default_retryable = True


class ProviderUnavailableError(AIProviderError):
    """Raised when the provider (or any provider) cannot serve the request."""

    default_kind = AIErrorKind.PROVIDER_UNAVAILABLE
    default_retryable = True


class AuthenticationError(AIProviderError):
    """Raised when authentication fails."""

    default_kind = AIErrorKind.AUTHENTICATION_FAILED


class InvalidRequestError(AIProviderError):
    """Raised when the provider rejects the request as malformed."""

    default_kind = AIErrorKind.INVALID_REQUEST


class ContextLengthError(AIProviderError):
    """Raised when input exceeds the model's context length."""

    default_kind = AIErrorKind.TOKEN_LIMIT_EXCEEDED


class BudgetExceededError(AIProviderError):
    """Raised before a billable request when a spend ceiling is reached."""

    default_kind = AIErrorKind.BUDGET_EXCEEDED


# -----------------------------------------------------------------------------
# Provider contract
# -----------------------------------------------------------------------------


@runtime_checkable
class AIProvider(Protocol):
    """Protocol defining the interface for AI providers.

    Identity is `id`; at most one instance per id is registered at a time.
    """

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def models(self) -> Sequence[Model]: ...

    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...

    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]: ...

    async def classify(self, request: ClassifyRequest) -> ClassifyResponse: ...

    async def summarize(self, request: SummarizeRequest) -> SummarizeResponse: ...

    async def draft(self, request: DraftRequest) -> DraftResponse: ...

    async def is_available(self) -> bool:
        """Report configuration/connectivity health without a billable call."""
        ...


class BaseAIProvider(ABC):
    """Abstract base class for AI provider adapters.

    Subclasses declare their models at construction and implement the
    operations; lookups and defaults are shared here.
    """

    def __init__(self, provider_id: str, name: str, models: Sequence[Model]) -> None:
        self._id = provider_id
        self._name = name
        self._models: tuple[Model, ...] = tuple(models)

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def models(self) -> tuple[Model, ...]:
        return self._models

    @property
    def default_model(self) -> Model | None:
        """First-listed model, or None for a provider with no models."""
        return self._models[0] if self._models else None

    def get_model(self, model_id: str) -> Model | None:
        for model in self._models:
            if model.id == model_id:
                return model
        return None

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        ...

    @abstractmethod
    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        ...

    @abstractmethod
    async def classify(self, request: ClassifyRequest) -> ClassifyResponse:
        ...

    @abstractmethod
    async def summarize(self, request: SummarizeRequest) -> SummarizeResponse:
        ...

    @abstractmethod
    async def draft(self, request: DraftRequest) -> DraftResponse:
        ...

    async def is_available(self) -> bool:
        """Default: available."""
        return True


def find_model(provider: AIProvider, model_id: str) -> Model | None:
    """Look up a model by id on any provider implementation."""
    for model in provider.models:
        if model.id == model_id:
            return model
    return None


__all__ = [
    # Model
    "Capability",
    "Model",
    "Message",
    "Role",
    # Requests / responses
    "CompletionRequest",
    "CompletionResponse",
    "StopReason",
    "StreamChunk",
    "ClassifyItem",
    "ClassifyRequest",
    "ClassificationResult",
    "ClassifyResponse",
    "SummaryStyle",
    "SummarizeRequest",
    "SummarizeResponse",
    "DraftTone",
    "DraftItem",
    "DraftRequest",
    "DraftResponse",
    # Errors
    "AIErrorKind",
    "ProviderError",
    "AIProviderError",
    "RateLimitError",
    "NetworkError",
    "ProviderUnavailableError",
    "AuthenticationError",
    "InvalidRequestError",
    "ContextLengthError",
    "BudgetExceededError",
    # Protocol and base
    "AIProvider",
    "BaseAIProvider",
    "find_model",
]
