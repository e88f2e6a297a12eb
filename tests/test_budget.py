"""Tests for budget configuration and validation."""

from __future__ import annotations

import pytest

from conftest import make_budget
from ctxcomposer.composer.budget import (
    DEFAULT_BUDGET_CONFIG,
    BudgetConfig,
    LaneBudget,
    validate_budget_config,
)
from ctxcomposer.composer.models import Lane
from ctxcomposer.exceptions import ConfigError


class TestDefaultBudget:
    def test_default_is_valid(self):
        assert DEFAULT_BUDGET_CONFIG.problems() == []
        assert validate_budget_config(DEFAULT_BUDGET_CONFIG) is DEFAULT_BUDGET_CONFIG

    def test_default_values(self):
        assert DEFAULT_BUDGET_CONFIG.total_tokens == 8000
        assert DEFAULT_BUDGET_CONFIG.lane(Lane.POLICY) == LaneBudget(min=500, max=1500, priority=0)
        assert DEFAULT_BUDGET_CONFIG.lane(Lane.HISTORY).max == 1000

    def test_lane_order(self):
        assert DEFAULT_BUDGET_CONFIG.lane_order() == [
            Lane.POLICY, Lane.RULES, Lane.LOCAL, Lane.STRUCTURE, Lane.RETRIEVED, Lane.HISTORY,
        ]


class TestValidation:
    def test_zero_total(self):
        config = make_budget(total=0)
        with pytest.raises(ConfigError, match="total_tokens"):
            validate_budget_config(config)

    def test_min_exceeds_max(self):
        config = make_budget(1000, policy=(300, 200, 0))
        with pytest.raises(ConfigError, match="exceeds max"):
            validate_budget_config(config)

    def test_minimums_exceed_total(self):
        config = make_budget(1000, policy=(600, 800, 0), rules=(600, 800, 1))
        with pytest.raises(ConfigError, match="sum of lane minimums"):
            validate_budget_config(config)

    def test_negative_bounds(self):
        config = make_budget(1000, local=(-1, 100, 2))
        assert any("negative" in p for p in config.problems())

    def test_missing_lane(self):
        config = BudgetConfig(
            total_tokens=1000,
            lanes={Lane.POLICY: LaneBudget(min=0, max=1000, priority=0)},
        )
        with pytest.raises(ConfigError, match="missing"):
            validate_budget_config(config)

    def test_non_finite_priority(self):
        config = make_budget(1000, history=(0, 100, float("nan")))
        assert any("priority" in p for p in config.problems())

    def test_all_problems_reported(self):
        config = make_budget(0, policy=(300, 200, 0))
        assert len(config.problems()) >= 2


class TestLaneOrder:
    def test_ties_use_declaration_order(self):
        config = make_budget(
            1000,
            policy=(0, 100, 1), rules=(0, 100, 1), local=(0, 100, 0),
            structure=(0, 100, 1), retrieved=(0, 100, 1), history=(0, 100, 1),
        )
        order = config.lane_order()
        assert order[0] is Lane.LOCAL
        assert order[1:] == [Lane.POLICY, Lane.RULES, Lane.STRUCTURE, Lane.RETRIEVED, Lane.HISTORY]
