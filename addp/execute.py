"""
⚙️ Test Execution Engine

Runs the assigned test of every variable and normalizes each outcome to a
``TestResult(p, label)``.

- Variables outside ``included`` get a missing result without running anything.
- Built-in tests see only the rows where `variable` and `by` are both present
  (for survey designs the other rows get zero weight instead).
- Custom test functions are called as ``fn(data, variable, by, group=..., type=...)``
  with the full data, and their result is checked structurally.

Variables are independent, so they fan out over a thread pool. The first
failure aborts the whole call.
"""

from __future__ import annotations

import numbers
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd

from addp.config import ConfigManager
from addp.design import SurveyDesign
from addp.exceptions import AddPError, TestContractError, TestExecutionError
from addp.logger import get_logger
from addp.registry import SUMMARY_TESTS, TestSpec, get_test
from addp.tables import TestResult

logger = get_logger(__name__)

_MISSING = object()


def _complete_pairs(data: Any, variable: str, by: str):
    """Restrict data (or a survey design's domain) to rows with both values present."""
    if isinstance(data, SurveyDesign):
        frame = data.variables
        return data.subset((frame[variable].notna() & frame[by].notna()).to_numpy())
    return data.loc[data[variable].notna() & data[by].notna()]


def _field(result: Any, name: str) -> Any:
    if isinstance(result, Mapping):
        return result.get(name, _MISSING)
    return getattr(result, name, _MISSING)


def validate_custom_result(variable: str, result: Any) -> TestResult:
    """
    Normalize the return value of a custom test function.

    Accepts a mapping or an object with a numeric ``p`` and a string ``test``; a bare number is taken as ``p`` with no label.

    Raises:
        TestContractError: If ``p`` or ``test`` is absent or of the wrong type.
    """
    if isinstance(result, (numbers.Real, np.floating)) and not isinstance(result, (bool, np.bool_)):
        return TestResult(float(result), None)

    p = _field(result, "p")
    if p is _MISSING:
        raise TestContractError(variable, "returned no 'p' field")
    if p is None:
        p = np.nan
    if isinstance(p, (bool, np.bool_)) or not isinstance(p, (numbers.Real, np.floating)):
        raise TestContractError(variable, f"returned a non-numeric 'p' ({type(p).__name__})")

    label = _field(result, "test")
    if label is _MISSING:
        raise TestContractError(variable, "returned no 'test' field")
    if not isinstance(label, str):
        raise TestContractError(variable, f"returned a non-string 'test' ({type(label).__name__})")

    return TestResult(float(p), label)


def calculate_pvalue(
    data: Any,
    variable: str,
    by: str,
    test: str | Callable,
    summary_type: str,
    group: str | None = None,
    included: bool = True,
    registry: Mapping[str, TestSpec] = SUMMARY_TESTS,
    settings: Mapping[str, Any] | None = None,
) -> TestResult:
    """
    Compute the p-value of one variable.

    Returns:
        TestResult: ``(nan, None)`` when the variable is not included.

    Raises:
        TestContractError: A custom function broke the result contract.
        TestExecutionError: The test itself failed; chained from the original exception.
    """
    if not included:
        return TestResult.missing()

    test_name = getattr(test, "__name__", repr(test)) if callable(test) else test

    try:
        if callable(test):
            raw = test(data, variable, by, group=group, type=summary_type)
            return validate_custom_result(variable, raw)

        spec = get_test(registry, test)
        result = spec.fn(
            _complete_pairs(data, variable, by),
            variable,
            by,
            group=group,
            type=summary_type,
            settings=settings,
        )
        return TestResult(float(result.p), result.label if result.label is not None else spec.label)
    except AddPError:
        raise
    except Exception as e:
        raise TestExecutionError(variable, test_name, e) from e


def run_tests(
    data: Any,
    assignments: Mapping[str, str | Callable],
    summary_types: Mapping[str, str],
    by: str,
    variables: list[str],
    included: set[str] | None = None,
    group: str | None = None,
    registry: Mapping[str, TestSpec] = SUMMARY_TESTS,
    config: ConfigManager | None = None,
) -> dict[str, TestResult]:
    """
    Run every variable's test, in parallel where possible.

    Results are returned in `variables` order. Variables without an assignment or outside `included` get a missing result.
    """
    config = config or ConfigManager()
    included = set(assignments) if included is None else set(included)
    settings = config.get_section("tests")

    def job(variable: str) -> TestResult:
        return calculate_pvalue(
            data,
            variable,
            by,
            assignments.get(variable),
            summary_types.get(variable),
            group=group,
            included=variable in included and variable in assignments,
            registry=registry,
            settings=settings,
        )

    n_jobs = sum(1 for v in variables if v in included and v in assignments)
    max_workers = min(int(config.get("performance.num_threads", 1)), os.cpu_count() or 1, max(n_jobs, 1))

    if max_workers <= 1:
        return {variable: job(variable) for variable in variables}

    logger.debug(f"Running {n_jobs} test(s) on {max_workers} thread(s)")
    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="addp")
    try:
        futures = {variable: executor.submit(job, variable) for variable in variables}
        results = {variable: future.result() for variable, future in futures.items()}
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results


def results_frame(results: Mapping[str, TestResult], assignments: Mapping[str, Any]) -> pd.DataFrame:
    """Per-variable results as meta data columns: ``stat_test``, ``p.value``, ``stat_test_lbl``."""
    records = []
    for variable, result in results.items():
        test = assignments.get(variable)
        records.append(
            {
                "variable": variable,
                "stat_test": getattr(test, "__name__", test) if callable(test) else test,
                "p.value": result.p,
                "stat_test_lbl": result.label,
            }
        )
    return pd.DataFrame.from_records(records, columns=["variable", "stat_test", "p.value", "stat_test_lbl"])
