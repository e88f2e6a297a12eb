"""Token budget configuration and validation."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field

from ctxcomposer.composer.models import Lane
from ctxcomposer.exceptions import ConfigError


class LaneBudget(BaseModel):
    """Sub-budget for one lane. Lanes are evaluated in ascending priority."""

    model_config = ConfigDict(frozen=True)

    min: int = 0
    max: int = 0
    priority: float = 0


class BudgetConfig(BaseModel):
    """Total token budget plus a min/max/priority triple per lane."""

    model_config = ConfigDict(frozen=True)

    total_tokens: int
    lanes: dict[Lane, LaneBudget] = Field(default_factory=dict)

    def problems(self) -> list[str]:
        """List every consistency problem with this config (empty if valid)."""
        found: list[str] = []
        if self.total_tokens <= 0:
            found.append(f"total_tokens must be > 0 (got {self.total_tokens})")

        for lane in Lane:
            budget = self.lanes.get(lane)
            if budget is None:
                found.append(f"lane '{lane.value}' is missing")
                continue
            if budget.min < 0 or budget.max < 0:
                found.append(
                    f"lane '{lane.value}' has negative bounds "
                    f"(min={budget.min}, max={budget.max})"
                )
            if budget.min > budget.max:
                found.append(
                    f"lane '{lane.value}' min {budget.min} exceeds max {budget.max}"
                )
            if not math.isfinite(budget.priority):
                found.append(f"lane '{lane.value}' priority must be finite")

        min_total = sum(b.min for b in self.lanes.values())
        if min_total > self.total_tokens:
            found.append(
                f"sum of lane minimums ({min_total}) exceeds total_tokens "
                f"({self.total_tokens})"
            )
        return found

    def lane(self, lane: Lane) -> LaneBudget:
        return self.lanes[lane]

    def lane_order(self) -> list[Lane]:
        """Lanes in evaluation order: ascending priority, then declaration order."""
        declared = list(Lane)
        return sorted(
            self.lanes,
            key=lambda lane: (self.lanes[lane].priority, declared.index(lane)),
        )

    def lane_priorities(self) -> dict[Lane, float]:
        return {lane: budget.priority for lane, budget in self.lanes.items()}


def validate_budget_config(config: BudgetConfig) -> BudgetConfig:
    """Raise ConfigError if the config is inconsistent; return it otherwise."""
    found = config.problems()
    if found:
        raise ConfigError("Invalid budget config: " + "; ".join(found))
    return config


DEFAULT_BUDGET_CONFIG = BudgetConfig(
    total_tokens=8000,
    lanes={
        Lane.POLICY: LaneBudget(min=500, max=1500, priority=0),
        Lane.RULES: LaneBudget(min=500, max=2000, priority=1),
        Lane.LOCAL: LaneBudget(min=0, max=2500, priority=2),
        Lane.STRUCTURE: LaneBudget(min=0, max=1500, priority=3),
        Lane.RETRIEVED: LaneBudget(min=0, max=1500, priority=4),
        Lane.HISTORY: LaneBudget(min=0, max=1000, priority=5),
    },
)
