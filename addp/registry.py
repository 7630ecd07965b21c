"""
Test Registry

Fixed tables of built-in test identifiers per table kind, and the
data-driven default rules used when the caller does not choose a test.

    SUMMARY_TESTS    summary and cross tables
    SURVEY_TESTS     survey-weighted summary tables
    SURVIVAL_TESTS   survival tables (see addp.survival)
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

import pandas as pd

from addp import stat_tests, survey_tests
from addp.config import ConfigManager
from addp.exceptions import ConfigurationError
from addp.stat_tests import by_levels, min_expected_count

CONTINUOUS = frozenset({"continuous"})
CATEGORICAL = frozenset({"categorical", "dichotomous"})


@dataclass(frozen=True)
class TestSpec:
    """A built-in test: implementation, display label and applicability."""

    __test__ = False  # not a pytest test class

    test_id: str
    fn: Callable
    label: str | None
    summary_types: frozenset
    requires_group: bool = False
    binary_by: bool = False


def _registry(*specs: TestSpec) -> Mapping[str, TestSpec]:
    return MappingProxyType({spec.test_id: spec for spec in specs})


SUMMARY_TESTS = _registry(
    TestSpec("t.test", stat_tests.t_test, "Welch Two Sample t-test", CONTINUOUS, binary_by=True),
    TestSpec("aov", stat_tests.aov, "One-way ANOVA", CONTINUOUS),
    TestSpec("wilcox.test", stat_tests.wilcox_test, "Wilcoxon rank sum test", CONTINUOUS, binary_by=True),
    TestSpec("kruskal.test", stat_tests.kruskal_test, "Kruskal-Wallis rank sum test", CONTINUOUS),
    TestSpec("chisq.test", stat_tests.chisq_test, "Pearson's Chi-squared test", CATEGORICAL),
    TestSpec("chisq.test.no.correct", stat_tests.chisq_test_no_correct, "Pearson's Chi-squared test", CATEGORICAL),
    TestSpec("fisher.test", stat_tests.fisher_test, "Fisher's exact test", CATEGORICAL),
    TestSpec(
        "lme4",
        stat_tests.lme4,
        "GEE logistic regression (exchangeable correlation)",
        CONTINUOUS | CATEGORICAL,
        requires_group=True,
        binary_by=True,
    ),
)

SURVEY_TESTS = _registry(
    TestSpec("svy.t.test", survey_tests.svy_t_test, "t-test adapted to complex survey samples", CONTINUOUS, binary_by=True),
    TestSpec("svy.wilcox.test", survey_tests.svy_wilcox_test, "Wilcoxon rank-sum test for complex survey samples", CONTINUOUS),
    TestSpec("svy.kruskal.test", survey_tests.svy_kruskal_test, "Kruskal-Wallis rank-sum test for complex survey samples", CONTINUOUS),
    TestSpec(
        "svy.vanderwaerden.test",
        survey_tests.svy_vanderwaerden_test,
        "van der Waerden's normal-scores test for complex survey samples",
        CONTINUOUS,
    ),
    TestSpec("svy.median.test", survey_tests.svy_median_test, "Mood's test for the median for complex survey samples", CONTINUOUS),
    TestSpec("svy.chisq.test", survey_tests.svy_chisq_test, "chi-squared test with Rao & Scott's second-order correction", CATEGORICAL),
    TestSpec("svy.adj.chisq.test", survey_tests.svy_adj_chisq_test, "chi-squared test adjusted by a design effect estimate", CATEGORICAL),
    TestSpec("svy.wald.test", survey_tests.svy_wald_test, "Wald test of independence for complex survey samples", CATEGORICAL),
    TestSpec("svy.adj.wald.test", survey_tests.svy_adj_wald_test, "adjusted Wald test of independence for complex survey samples", CATEGORICAL),
    TestSpec(
        "svy.lincom.test",
        survey_tests.svy_lincom_test,
        "test of independence using the exact asymptotic distribution for complex survey samples",
        CATEGORICAL,
    ),
    TestSpec(
        "svy.saddlepoint.test",
        survey_tests.svy_saddlepoint_test,
        "test of independence using a saddlepoint approximation for complex survey samples",
        CATEGORICAL,
    ),
)


def get_test(registry: Mapping[str, TestSpec], test_id: str, arg_name: str = "test") -> TestSpec:
    """Look up a built-in test; unknown identifiers are a configuration error."""
    try:
        return registry[test_id]
    except KeyError:
        raise ConfigurationError(
            f"'{test_id}' is not a valid test. Choose one of: {', '.join(registry)}",
            argument=arg_name,
        ) from None


# =============================================================================
# DEFAULT RULES
# =============================================================================


def default_summary_test(
    data: pd.DataFrame,
    variable: str,
    summary_type: str,
    by: str,
    group: str | None = None,
    config: ConfigManager | None = None,
) -> str:
    """
    Default test for a summary or cross table variable.

    - correlation group present: ``lme4`` (binary `by` only)
    - continuous: ``kruskal.test``
    - categorical/dichotomous: ``chisq.test`` when every expected count is at least ``tests.expected_count_min`` (5), otherwise ``fisher.test``
    """
    if group is not None:
        n_levels = len(by_levels(data[by]))
        if n_levels != 2:
            raise ConfigurationError(
                f"a correlation group requires a binary `by` variable; '{by}' has {n_levels} levels",
                argument="group",
            )
        return "lme4"

    if summary_type == "continuous":
        return "kruskal.test"

    threshold = config.get("tests.expected_count_min", 5) if config is not None else 5
    complete = data[[variable, by]].dropna()
    if min_expected_count(complete[variable], complete[by]) >= threshold:
        return "chisq.test"
    return "fisher.test"


def default_survey_test(
    data,
    variable: str,
    summary_type: str,
    by: str,
    group: str | None = None,
    config: ConfigManager | None = None,
) -> str:
    """Default design-based test: rank-sum for continuous, Rao-Scott chi-squared otherwise."""
    if summary_type == "continuous":
        return "svy.wilcox.test"
    return "svy.chisq.test"
