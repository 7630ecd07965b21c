"""
Test Assignment Resolver

Decides which test runs for each variable of a table. An explicit override
(resolved through the selectors) wins over the registry's default rule. The
result is total over the requested variables and read-only.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Callable, Mapping

import pandas as pd

from addp.config import ConfigManager
from addp.exceptions import ConfigurationError
from addp.logger import get_logger
from addp.registry import SUMMARY_TESTS, TestSpec, default_summary_test, get_test
from addp.selectors import resolve_overrides
from addp.stat_tests import by_levels

logger = get_logger(__name__)


def _frame(data: Any) -> pd.DataFrame:
    """Flat data behind a data frame or a survey design."""
    return data if isinstance(data, pd.DataFrame) else data.variables


def validate_test_choice(
    variable: str,
    choice: Any,
    summary_type: str,
    data: pd.DataFrame,
    by: str,
    group: str | None,
    registry: Mapping[str, TestSpec],
) -> None:
    """
    Check that `choice` can run for `variable`, before anything is executed.

    Raises:
        ConfigurationError: Unknown test id, a test not applicable to the summary type, ``lme4`` without a group, or a two-group test with a `by` that does not have two levels.
    """
    if callable(choice):
        return
    if not isinstance(choice, str):
        raise ConfigurationError(
            f"test for '{variable}' must be a test name or a function, got {type(choice).__name__}",
            argument="test",
        )

    spec = get_test(registry, choice)
    if summary_type not in spec.summary_types:
        raise ConfigurationError(
            f"'{choice}' cannot be used for {summary_type} variable '{variable}'", argument="test"
        )
    if spec.requires_group and group is None:
        raise ConfigurationError(f"'{choice}' requires a correlation group", argument="group")
    if spec.binary_by:
        n_levels = len(by_levels(data[by]))
        if n_levels != 2:
            raise ConfigurationError(
                f"'{choice}' requires a `by` variable with exactly 2 levels; '{by}' has {n_levels}",
                argument="test",
            )


def assign_tests(
    data: Any,
    variables: list[str],
    summary_types: Mapping[str, str],
    by: str | None,
    overrides: Any = None,
    group: str | None = None,
    registry: Mapping[str, TestSpec] = SUMMARY_TESTS,
    default_rule: Callable[..., str] = default_summary_test,
    config: ConfigManager | None = None,
) -> Mapping[str, str | Callable]:
    """
    Resolve the test of every variable in `variables`.

    Parameters:
        data: Data frame, or survey design, the table was built from.
        variables (list[str]): Variables that receive a test.
        summary_types (Mapping[str, str]): Summary type of every table variable.
        by (str): Grouping column.
        overrides: Caller's ``test=`` argument (see ``addp.selectors.resolve_overrides``).
        group (str | None): Correlation group column.
        registry: Built-in tests of the table kind.
        default_rule: ``fn(data, variable, summary_type, by, group, config) -> test id``.

    Returns:
        MappingProxyType: variable -> test id or custom test function.
    """
    frame = _frame(data)
    if by is None:
        raise ConfigurationError("the table has no `by` variable to compare across", argument="by")
    if by not in frame.columns:
        raise ConfigurationError(f"grouping variable '{by}' not found in data", argument="by")
    if group is not None:
        if not isinstance(group, str):
            raise ConfigurationError("must be a single column name", argument="group")
        if group not in frame.columns:
            raise ConfigurationError(f"column '{group}' not found in data", argument="group")

    explicit = resolve_overrides(overrides, list(summary_types), dict(summary_types), arg_name="test")

    assignments = {}
    for variable in variables:
        summary_type = summary_types[variable]
        if variable in explicit:
            choice = explicit[variable]
            source = "override"
        else:
            choice = default_rule(data, variable, summary_type, by, group, config)
            source = "default"
        validate_test_choice(variable, choice, summary_type, frame, by, group, registry)
        assignments[variable] = choice
        logger.debug(f"Test for '{variable}' ({summary_type}): {getattr(choice, '__name__', choice)} [{source}]")

    return MappingProxyType(assignments)
