"""Tests for podium/domains/profiles.py: domain profile resolution."""

import pytest

from podium.core.models import JudgeMode, JudgeWeights, ObjectiveMode, TaskCategory
from podium.domains.profiles import (
    get_domain_profile,
    has_explicit_weights,
    list_domain_profiles,
    resolve_domain_plan,
)


class TestProfiles:
    def test_every_category_has_a_profile(self):
        ids = {profile.id for profile in list_domain_profiles()}
        assert ids == set(TaskCategory)

    def test_list_returns_copies(self):
        profiles = list_domain_profiles()
        profiles[0].default_tools.append("mutated")
        assert "mutated" not in get_domain_profile(profiles[0].id).default_tools

    def test_coding_profile(self):
        profile = get_domain_profile(TaskCategory.CODING)
        assert profile.objective_mode == ObjectiveMode.CODING_V1
        assert "workspace-shell" in profile.default_tools
        assert profile.default_weights.accuracy == pytest.approx(0.45)

    def test_creative_has_no_tools(self):
        assert get_domain_profile(TaskCategory.CREATIVE).default_tools == []


class TestHasExplicitWeights:
    def test_none(self):
        assert has_explicit_weights(None) is False

    def test_default_vector_is_not_explicit(self):
        assert has_explicit_weights({"accuracy": 0.3, "completeness": 0.3, "clarity": 0.2, "insight": 0.2}) is False
        assert has_explicit_weights(JudgeWeights()) is False

    def test_non_numeric_is_not_explicit(self):
        assert has_explicit_weights({"accuracy": "high"}) is False
        assert has_explicit_weights({"accuracy": True}) is False

    def test_different_vector_is_explicit(self):
        assert has_explicit_weights({"accuracy": 1, "completeness": 0, "clarity": 0, "insight": 0}) is True


class TestResolveDomainPlan:
    def test_classifies_when_category_missing(self):
        plan = resolve_domain_plan("Write a poem about the sea")
        assert plan.category == TaskCategory.CREATIVE
        assert plan.active_tools == []
        assert plan.judge_mode == JudgeMode.SINGLE

    def test_explicit_category_skips_classifier(self):
        calls = []

        def classify(prompt):
            calls.append(prompt)
            return TaskCategory.CODING

        plan = resolve_domain_plan("anything", category=TaskCategory.MATH, classify=classify)
        assert plan.category == TaskCategory.MATH
        assert calls == []

    def test_custom_classifier_is_used(self):
        plan = resolve_domain_plan("anything", classify=lambda _: TaskCategory.FINANCE)
        assert plan.category == TaskCategory.FINANCE
        assert "calculator" in plan.active_tools

    def test_explicit_tools_are_stripped_and_deduped(self):
        plan = resolve_domain_plan(
            "Fix the bug", tools=[" calculator ", "", "calculator", "web-search"]
        )
        assert plan.active_tools == ["calculator", "web-search"]

    def test_empty_tool_list_disables_tools(self):
        plan = resolve_domain_plan("Fix the bug", tools=[])
        assert plan.active_tools == []

    def test_profile_weights_used_without_explicit_weights(self):
        plan = resolve_domain_plan("Fix the bug", weights=JudgeWeights())
        assert plan.weights.accuracy == pytest.approx(0.45)

    def test_explicit_weights_are_normalized(self):
        plan = resolve_domain_plan(
            "Fix the bug", weights={"accuracy": 2, "completeness": 2, "clarity": 0, "insight": 0}
        )
        assert plan.weights.as_tuple() == (0.5, 0.5, 0.0, 0.0)

    def test_judge_mode_override(self):
        assert resolve_domain_plan("hi", judge_mode="consensus").judge_mode == JudgeMode.CONSENSUS
        assert resolve_domain_plan("hi", judge_mode="CONSENSUS").judge_mode == JudgeMode.CONSENSUS
        assert resolve_domain_plan("hi", judge_mode="bogus").judge_mode == JudgeMode.SINGLE

    def test_prompt_hints_come_from_profile(self):
        plan = resolve_domain_plan("Refactor this function")
        assert any("coding task" in hint for hint in plan.prompt_hints)


class TestConfiguredDefaultWeights:
    ACCURACY_ONLY = {"accuracy": 1.0, "completeness": 0.0, "clarity": 0.0, "insight": 0.0}

    def test_general_and_analysis_use_configured_default(self):
        for category in (TaskCategory.GENERAL, TaskCategory.ANALYSIS):
            plan = resolve_domain_plan("hi", category=category, default_weights=self.ACCURACY_ONLY)
            assert plan.weights.as_tuple() == (1.0, 0.0, 0.0, 0.0)

    def test_profiles_with_own_weights_ignore_configured_default(self):
        plan = resolve_domain_plan("hi", category=TaskCategory.CODING, default_weights=self.ACCURACY_ONLY)
        assert plan.weights.accuracy == pytest.approx(0.45)

    def test_configured_default_is_not_explicit(self):
        default = JudgeWeights(**self.ACCURACY_ONLY)
        assert has_explicit_weights(self.ACCURACY_ONLY, default) is False
        assert has_explicit_weights(JudgeWeights(), default) is True

    def test_explicit_weights_equal_to_configured_default_keep_profile(self):
        plan = resolve_domain_plan(
            "hi", category=TaskCategory.MATH, weights=self.ACCURACY_ONLY, default_weights=self.ACCURACY_ONLY
        )
        assert plan.weights.accuracy == pytest.approx(0.45)

    def test_partial_explicit_weights_fill_from_configured_default(self):
        plan = resolve_domain_plan(
            "hi", category=TaskCategory.GENERAL, weights={"insight": 1.0}, default_weights=self.ACCURACY_ONLY
        )
        assert plan.weights.as_tuple() == (0.5, 0.0, 0.0, 0.5)

    def test_unnormalized_default_is_normalized(self):
        plan = resolve_domain_plan(
            "hi", category=TaskCategory.GENERAL,
            default_weights={"accuracy": 2, "completeness": 2, "clarity": 0, "insight": 0},
        )
        assert plan.weights.as_tuple() == (0.5, 0.5, 0.0, 0.0)
