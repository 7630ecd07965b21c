"""
🧪 Unit Tests for Test Registry and Test Assignment
File: tests/unit/test_registry_assign.py

Tests addp/registry.py and addp/assign.py:
- Default test rules (expected-count threshold, correlation groups)
- Explicit overrides and their validation

Run with: pytest tests/unit/test_registry_assign.py -v
"""

import numpy as np
import pytest

from addp.assign import assign_tests
from addp.exceptions import ConfigurationError
from addp.registry import (
    SUMMARY_TESTS,
    SURVEY_TESTS,
    default_summary_test,
    default_survey_test,
    get_test,
)
from addp.selectors import all_continuous, vars
from addp.stat_tests import expected_counts
from addp.summary import summary_table

pytestmark = pytest.mark.unit


class TestRegistry:
    def test_summary_ids(self):
        assert set(SUMMARY_TESTS) == {
            "t.test",
            "aov",
            "wilcox.test",
            "kruskal.test",
            "chisq.test",
            "chisq.test.no.correct",
            "fisher.test",
            "lme4",
        }

    def test_survey_ids(self):
        assert len(SURVEY_TESTS) == 11
        assert all(test_id.startswith("svy.") for test_id in SURVEY_TESTS)

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            SUMMARY_TESTS["my.test"] = None

    def test_labels(self):
        assert get_test(SUMMARY_TESTS, "kruskal.test").label == "Kruskal-Wallis rank sum test"
        assert get_test(SUMMARY_TESTS, "fisher.test").label == "Fisher's exact test"

    def test_unknown_id(self):
        with pytest.raises(ConfigurationError, match="not a valid test"):
            get_test(SUMMARY_TESTS, "anova.test")


class TestDefaultSummaryTest:
    def test_small_expected_counts_use_fisher(self, counts_frame):
        data = counts_frame([[2, 1], [1, 2]])
        assert expected_counts(data["x"], data["g"]).min() == pytest.approx(1.5)
        assert default_summary_test(data, "x", "categorical", "g") == "fisher.test"

    def test_large_expected_counts_use_chisq(self, counts_frame):
        data = counts_frame([[50, 40], [45, 55]])
        assert default_summary_test(data, "x", "dichotomous", "g") == "chisq.test"

    def test_threshold_from_config(self, counts_frame, config):
        data = counts_frame([[2, 1], [1, 2]])
        config.update("tests.expected_count_min", 1)
        assert default_summary_test(data, "x", "categorical", "g", config=config) == "chisq.test"

    def test_boundary_is_inclusive(self, counts_frame):
        # expected count of every cell is exactly 5
        data = counts_frame([[5, 5], [5, 5]])
        assert default_summary_test(data, "x", "categorical", "g") == "chisq.test"

    def test_continuous(self, trial):
        assert default_summary_test(trial, "age", "continuous", "trt") == "kruskal.test"

    def test_group_with_binary_by(self, trial):
        assert default_summary_test(trial, "age", "continuous", "trt", group="site") == "lme4"

    def test_group_with_multilevel_by(self, trial):
        with pytest.raises(ConfigurationError) as exc:
            default_summary_test(trial, "age", "continuous", "stage", group="site")
        assert exc.value.argument == "group"

    def test_missing_pairs_ignored(self, counts_frame):
        data = counts_frame([[50, 40], [45, 55]])
        data.loc[:5, "x"] = np.nan
        assert default_summary_test(data, "x", "categorical", "g") == "chisq.test"


class TestDefaultSurveyTest:
    def test_rules(self):
        assert default_survey_test(None, "age", "continuous", "trt") == "svy.wilcox.test"
        assert default_survey_test(None, "stage", "categorical", "trt") == "svy.chisq.test"
        assert default_survey_test(None, "response", "dichotomous", "trt") == "svy.chisq.test"


class TestAssignTests:
    @pytest.fixture
    def types(self, trial):
        return summary_table(trial, by="trt", include=["age", "marker", "stage", "response"]).summary_types

    def test_defaults(self, trial, types):
        assignments = assign_tests(trial, list(types), types, "trt")
        assert assignments["age"] == "kruskal.test"
        assert assignments["marker"] == "kruskal.test"
        assert assignments["stage"] == default_summary_test(trial, "stage", "categorical", "trt")
        assert set(assignments) == set(types)

    def test_override_changes_only_that_variable(self, trial, types):
        defaults = assign_tests(trial, list(types), types, "trt")
        assignments = assign_tests(trial, list(types), types, "trt", overrides=[(vars("age"), "t.test")])
        assert assignments["age"] == "t.test"
        for variable in ("marker", "stage", "response"):
            assert assignments[variable] == defaults[variable]

    def test_override_only_for_requested_variables(self, trial, types):
        assignments = assign_tests(trial, ["stage"], types, "trt", overrides=[(all_continuous(), "t.test")])
        assert dict(assignments) == {"stage": default_summary_test(trial, "stage", "categorical", "trt")}

    def test_custom_function(self, trial, types):
        def my_test(data, variable, by, **kwargs):
            return {"p": 0.5, "test": "mine"}

        assignments = assign_tests(trial, ["age"], types, "trt", overrides={"age": my_test})
        assert assignments["age"] is my_test

    def test_result_is_read_only(self, trial, types):
        assignments = assign_tests(trial, ["age"], types, "trt")
        with pytest.raises(TypeError):
            assignments["age"] = "t.test"

    @pytest.mark.parametrize(
        "overrides,match",
        [
            ({"age": "anova.test"}, "not a valid test"),
            ({"stage": "t.test"}, "cannot be used for categorical"),
            ({"age": "chisq.test"}, "cannot be used for continuous"),
            ({"age": 42}, "must be a test name or a function"),
            ({"height": "t.test"}, "don't exist"),
        ],
    )
    def test_invalid_overrides(self, trial, types, overrides, match):
        with pytest.raises(ConfigurationError, match=match):
            assign_tests(trial, list(types), types, "trt", overrides=overrides)

    def test_lme4_requires_group(self, trial, types):
        with pytest.raises(ConfigurationError) as exc:
            assign_tests(trial, ["age"], types, "trt", overrides="lme4")
        assert exc.value.argument == "group"

    def test_two_group_test_needs_binary_by(self, trial, types):
        with pytest.raises(ConfigurationError, match="exactly 2 levels"):
            assign_tests(trial, ["age"], types, "stage", overrides="t.test")

    def test_by_errors(self, trial, types):
        with pytest.raises(ConfigurationError):
            assign_tests(trial, ["age"], types, None)
        with pytest.raises(ConfigurationError):
            assign_tests(trial, ["age"], types, "arm")

    def test_group_errors(self, trial, types):
        with pytest.raises(ConfigurationError, match="not found"):
            assign_tests(trial, ["age"], types, "trt", group="hospital")
        with pytest.raises(ConfigurationError, match="single column"):
            assign_tests(trial, ["age"], types, "trt", group=["site", "stage"])

    def test_survey_registry(self, trial, types):
        from addp.design import SurveyDesign

        design = SurveyDesign(trial, weights="weight", ids="psu", strata="stratum")
        assignments = assign_tests(
            design,
            ["age", "stage"],
            types,
            "trt",
            registry=SURVEY_TESTS,
            default_rule=default_survey_test,
        )
        assert dict(assignments) == {"age": "svy.wilcox.test", "stage": "svy.chisq.test"}

        with pytest.raises(ConfigurationError):
            assign_tests(design, ["age"], types, "trt", overrides="t.test", registry=SURVEY_TESTS)
