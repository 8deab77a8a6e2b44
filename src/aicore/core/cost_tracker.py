"""
Token usage and cost tracking with daily and monthly spend ceilings.

Usage records are appended to an external ledger; every status query
re-aggregates from that ledger, so nothing is cached in memory here.

Usage:
    tracker = CostTracker(ledger)
    tracker.set_daily_budget(max_cost_usd=Decimal("5.00"))

    # Immediately before a billable request
    tracker.assert_budget()

    # After the request completes
    cost = tracker.record(UsageParams(provider="claude", model=model,
                                      operation="classify",
                                      input_tokens=1200, output_tokens=80))

`assert_budget()` is advisory: two concurrent callers can both pass the check
and jointly overshoot the ceiling.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Literal, Protocol

from aicore.core.console import get_logger
from aicore.providers import BudgetExceededError, Model

logger = get_logger(__name__)

Period = Literal["daily", "monthly"]

_UNSET: object = object()


# -----------------------------------------------------------------------------
# Ledger contract
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """One immutable AI operation record handed to the ledger."""

    provider: str
    model: str
    operation: str
    input_tokens: int
    output_tokens: int
    cost_usd: Decimal
    duration_ms: int | None = None
    plugin_id: str | None = None
    pipeline_id: str | None = None
    inbox_item_id: str | None = None
    execution_id: str | None = None


@dataclass(frozen=True, slots=True)
class UsageSummary:
    """Ledger aggregate for one provider."""

    provider: str
    total_input_tokens: int
    total_output_tokens: int
    total_cost_usd: Decimal
    operation_count: int


class UsageLedger(Protocol):
    """Persistence collaborator that stores usage records."""

    def create(self, record: UsageRecord) -> object: ...

    def get_usage_summary(self, since_ms: int) -> Sequence[UsageSummary]: ...

    def get_plugin_cost(self, plugin_id: str, since_ms: int) -> Decimal: ...


# -----------------------------------------------------------------------------
# Budgets and snapshots
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CostBudget:
    """Ceilings for one period; None means unlimited."""

    max_cost_usd: Decimal | None = None
    max_operations: int | None = None


@dataclass(frozen=True, slots=True)
class CostSnapshot:
    cost_usd: Decimal = Decimal(0)
    input_tokens: int = 0
    output_tokens: int = 0
    operation_count: int = 0


@dataclass(frozen=True, slots=True)
class CostBudgetStatus:
    period: Period
    budget: CostBudget
    usage: CostSnapshot
    remaining_cost_usd: Decimal | None
    remaining_operations: int | None
    exceeded: bool


@dataclass(frozen=True, slots=True)
class UsageParams:
    """Inputs for `CostTracker.record`."""

    provider: str
    model: Model
    operation: str
    input_tokens: int
    output_tokens: int
    duration_ms: int | None = None
    plugin_id: str | None = None
    pipeline_id: str | None = None
    inbox_item_id: str | None = None
    execution_id: str | None = None


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def start_of_day(now: datetime) -> int:
    """Local midnight of `now`, in epoch milliseconds."""
    return _epoch_ms(now.replace(hour=0, minute=0, second=0, microsecond=0))


def start_of_month(now: datetime) -> int:
    """Local midnight on the 1st of `now`'s month, in epoch milliseconds."""
    return _epoch_ms(now.replace(day=1, hour=0, minute=0, second=0, microsecond=0))


def format_usd(value: Decimal | None) -> str:
    if value is None:
        return "unlimited"
    return f"${value:.2f}"


@dataclass
class CostTracker:
    """Compute per-request cost, record it, and enforce period ceilings.

    Attributes:
        ledger: External usage ledger (append-only)
        clock: Returns the current local time; period boundaries derive from it
    """

    ledger: UsageLedger
    clock: Callable[[], datetime] = field(default=datetime.now)

    _daily: CostBudget = field(default_factory=CostBudget, init=False)
    _monthly: CostBudget = field(default_factory=CostBudget, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    # -------------------------------------------------------------------------
    # Budget configuration
    # -------------------------------------------------------------------------

    def set_daily_budget(
        self,
        *,
        max_cost_usd: Decimal | float | None | object = _UNSET,
        max_operations: int | None | object = _UNSET,
    ) -> None:
        """Merge a partial daily budget; pass None for unlimited, omit to keep."""
        with self._lock:
            self._daily = _merge_budget(self._daily, max_cost_usd, max_operations)

    def set_monthly_budget(
        self,
        *,
        max_cost_usd: Decimal | float | None | object = _UNSET,
        max_operations: int | None | object = _UNSET,
    ) -> None:
        """Merge a partial monthly budget; pass None for unlimited, omit to keep."""
        with self._lock:
            self._monthly = _merge_budget(self._monthly, max_cost_usd, max_operations)

    def get_daily_budget(self) -> CostBudget:
        with self._lock:
            return self._daily

    def get_monthly_budget(self) -> CostBudget:
        with self._lock:
            return self._monthly

    # -------------------------------------------------------------------------
    # Cost calculation and recording
    # -------------------------------------------------------------------------

    @staticmethod
    def estimate_cost(model: Model, input_tokens: int, output_tokens: int) -> Decimal:
        """Cost in USD for a token count at the model's per-1k pricing."""
        input_cost = (Decimal(input_tokens) / Decimal(1000)) * model.input_cost_per_1k
        output_cost = (Decimal(output_tokens) / Decimal(1000)) * model.output_cost_per_1k
        return input_cost + output_cost

    def record(self, params: UsageParams) -> Decimal:
        """Append a usage record to the ledger and return its cost."""
        cost = self.estimate_cost(params.model, params.input_tokens, params.output_tokens)
        self.ledger.create(
            UsageRecord(
                provider=params.provider,
                model=params.model.id,
                operation=params.operation,
                input_tokens=params.input_tokens,
                output_tokens=params.output_tokens,
                cost_usd=cost,
                duration_ms=params.duration_ms,
                plugin_id=params.plugin_id,
                pipeline_id=params.pipeline_id,
                inbox_item_id=params.inbox_item_id,
                execution_id=params.execution_id,
            )
        )
        logger.debug(
            "Recorded %s via %s/%s: %d in, %d out, %s",
            params.operation,
            params.provider,
            params.model.id,
            params.input_tokens,
            params.output_tokens,
            format_usd(cost) if cost >= Decimal("0.01") else f"${cost:.4f}",
        )
        return cost

    # -------------------------------------------------------------------------
    # Budget enforcement
    # -------------------------------------------------------------------------

    def assert_budget(self) -> None:
        """Raise if the daily or monthly budget is already exhausted.

        Raises:
            BudgetExceededError: On the first exceeded period (daily, then monthly)
        """
        for status in (self.get_daily_status(), self.get_monthly_status()):
            if status.exceeded:
                message = _exceeded_message(status)
                logger.warning(message)
                raise BudgetExceededError(message, provider="cost-tracker")

    # -------------------------------------------------------------------------
    # Usage snapshots
    # -------------------------------------------------------------------------

    def get_daily_status(self) -> CostBudgetStatus:
        return self._build_status("daily", self.get_daily_budget(), start_of_day(self.clock()))

    def get_monthly_status(self) -> CostBudgetStatus:
        return self._build_status(
            "monthly", self.get_monthly_budget(), start_of_month(self.clock())
        )

    def get_total_usage(self) -> CostSnapshot:
        """Lifetime usage."""
        return self._snapshot_since(0)

    def get_usage_by_provider(self, since_ms: int = 0) -> list[UsageSummary]:
        return list(self.ledger.get_usage_summary(since_ms))

    def get_plugin_monthly_usage(self, plugin_id: str) -> Decimal:
        """Cost attributed to one plugin since the start of the current month."""
        return Decimal(str(self.ledger.get_plugin_cost(plugin_id, start_of_month(self.clock()))))

    def _build_status(self, period: Period, budget: CostBudget, since_ms: int) -> CostBudgetStatus:
        usage = self._snapshot_since(since_ms)

        remaining_cost: Decimal | None = None
        if budget.max_cost_usd is not None:
            remaining_cost = max(Decimal(0), budget.max_cost_usd - usage.cost_usd)

        remaining_ops: int | None = None
        if budget.max_operations is not None:
            remaining_ops = max(0, budget.max_operations - usage.operation_count)

        exceeded = (
            budget.max_cost_usd is not None and usage.cost_usd >= budget.max_cost_usd
        ) or (
            budget.max_operations is not None and usage.operation_count >= budget.max_operations
        )

        return CostBudgetStatus(
            period=period,
            budget=budget,
            usage=usage,
            remaining_cost_usd=remaining_cost,
            remaining_operations=remaining_ops,
            exceeded=exceeded,
        )

    def _snapshot_since(self, since_ms: int) -> CostSnapshot:
        cost = Decimal(0)
        input_tokens = 0
        output_tokens = 0
        operations = 0
        for summary in self.ledger.get_usage_summary(since_ms):
            cost += Decimal(str(summary.total_cost_usd))
            input_tokens += summary.total_input_tokens
            output_tokens += summary.total_output_tokens
            operations += summary.operation_count
        return CostSnapshot(
            cost_usd=cost,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            operation_count=operations,
        )


def _merge_budget(budget: CostBudget, max_cost_usd: object, max_operations: object) -> CostBudget:
    if max_cost_usd is not _UNSET:
        cost = None if max_cost_usd is None else Decimal(str(max_cost_usd))
        budget = replace(budget, max_cost_usd=cost)
    if max_operations is not _UNSET:
        ops = None if max_operations is None else int(max_operations)  # type: ignore[call-overload]
        budget = replace(budget, max_operations=ops)
    return budget


def _exceeded_message(status: CostBudgetStatus) -> str:
    label = "Daily" if status.period == "daily" else "Monthly"
    budget = status.budget
    usage = status.usage
    if budget.max_cost_usd is not None and usage.cost_usd >= budget.max_cost_usd:
        detail = f"{format_usd(usage.cost_usd)} / {format_usd(budget.max_cost_usd)}"
    else:
        detail = f"{usage.operation_count} / {budget.max_operations} operations"
    return f"{label} AI budget exceeded ({detail})"


__all__ = [
    "CostBudget",
    "CostBudgetStatus",
    "CostSnapshot",
    "CostTracker",
    "Period",
    "UsageLedger",
    "UsageParams",
    "UsageRecord",
    "UsageSummary",
    "format_usd",
    "start_of_day",
    "start_of_month",
]
