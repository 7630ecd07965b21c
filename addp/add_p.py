"""
🧪 add_p: Add p-values to a table

One generic entry point, dispatched on the table kind::

    add_p(SummaryTable, test=None, pvalue_fun=None, group=None, include=None, exclude=None, config=None)
    add_p(CrossTable, test=None, pvalue_fun=None, source_note=None, config=None)
    add_p(SurveySummaryTable, test=None, pvalue_fun=None, include=None, config=None)
    add_p(SurvivalTable, test=None, test_args=None, pvalue_fun=None, include=None, quiet=None, config=None)

Each call walks VALIDATING -> RESOLVING -> EXECUTING -> MERGING -> DONE on a
copy of the table; any failure leaves the input table untouched.
"""

from __future__ import annotations

import warnings
from enum import Enum
from functools import singledispatch
from typing import Any, Callable

from addp.assign import assign_tests
from addp.config import ConfigManager, resolve_config
from addp.exceptions import ConfigurationError
from addp.execute import results_frame, run_tests
from addp.formatting import get_pvalue_fun
from addp.logger import get_logger
from addp.merge import merge_p_values, source_note_p_value, survival_footnote
from addp.registry import SUMMARY_TESTS, SURVEY_TESTS, default_summary_test, default_survey_test
from addp.selectors import everything, resolve, resolve_overrides
from addp.survival import MessageGate, calculate_survival_pvalues, validate_survival_tests
from addp.tables import CallRecord, CrossTable, SummaryTable, SurveySummaryTable, SurvivalTable

logger = get_logger(__name__)


class AugmentationState(Enum):
    VALIDATING = "validating"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    AugmentationState.VALIDATING: {AugmentationState.RESOLVING, AugmentationState.FAILED},
    AugmentationState.RESOLVING: {AugmentationState.EXECUTING, AugmentationState.FAILED},
    AugmentationState.EXECUTING: {AugmentationState.MERGING, AugmentationState.FAILED},
    AugmentationState.MERGING: {AugmentationState.DONE, AugmentationState.FAILED},
    AugmentationState.DONE: set(),
    AugmentationState.FAILED: set(),
}


class Augmentation:
    """
    State of a single add_p call.

    Used as a context manager: an exception inside the block moves the state to FAILED, logs it and re-raises.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.state = AugmentationState.VALIDATING
        logger.log_operation(operation, self.state.value)

    def advance(self, state: AugmentationState, **details: Any) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"{self.operation}: illegal transition {self.state.value} -> {state.value}")
        self.state = state
        logger.log_operation(self.operation, state.value, **details)

    def __enter__(self) -> "Augmentation":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and self.state is not AugmentationState.FAILED:
            self.state = AugmentationState.FAILED
            logger.log_operation(self.operation, "failed", error=f"{exc_type.__name__}: {exc}")
        return False


def _check_pvalue_fun(pvalue_fun: Any, config: ConfigManager, prepend_p: bool = False) -> Callable:
    if pvalue_fun is None:
        return get_pvalue_fun(config, prepend_p=prepend_p)
    if not callable(pvalue_fun):
        raise ConfigurationError("must be a function that formats a number", argument="pvalue_fun")
    return pvalue_fun


def _call_args(**kwargs: Any) -> dict:
    return {k: v for k, v in kwargs.items() if v is not None}


@singledispatch
def add_p(table, **kwargs):
    """Add a p-value column comparing the `by` groups of `table`."""
    raise TypeError(f"add_p() does not support {type(table).__name__}")


# =============================================================================
# SUMMARY TABLE
# =============================================================================


@add_p.register(SummaryTable)
def add_p_summary(
    table: SummaryTable,
    test: Any = None,
    pvalue_fun: Callable | None = None,
    group: str | None = None,
    include: Any = None,
    exclude: Any = None,
    config: ConfigManager | None = None,
) -> SummaryTable:
    """
    Add p-values to a summary table.

    Parameters:
        test: Test per variable: a test id or function for every variable, or (selector, test) pairs / a mapping. Unset variables use the default rule.
        pvalue_fun: Formatter of the p.value column.
        group (str | None): Correlation group column for clustered data (``lme4``).
        include: Variables that receive a p-value (default: all).
        exclude: Deprecated; use ``include=~vars(...)``.
        config (ConfigManager | None): Settings; defaults when omitted.

    Returns:
        SummaryTable: A new table with a ``p.value`` column.

    Raises:
        ConfigurationError: Invalid arguments, raised before any test runs.
        TestContractError: A custom test returned an invalid result.
        TestExecutionError: A test failed.
    """
    config = resolve_config(config)
    with Augmentation("add_p.summary_table") as run, logger.track_time("add_p.summary_table"):
        if table.by is None:
            raise ConfigurationError(
                "Cannot add a p-value when no 'by' variable is specified in the summary table", argument="by"
            )
        pvalue_fun = _check_pvalue_fun(pvalue_fun, config)
        test = test if test is not None else config.get("tests.summary")

        included = _included_variables(table, include, exclude)
        run.advance(AugmentationState.RESOLVING, included=len(included))
        assignments = assign_tests(
            table.data,
            included,
            table.summary_types,
            table.by,
            overrides=test,
            group=group,
            registry=SUMMARY_TESTS,
            default_rule=default_summary_test,
            config=config,
        )

        run.advance(AugmentationState.EXECUTING)
        results = run_tests(
            table.data,
            assignments,
            table.summary_types,
            table.by,
            table.variables,
            included=set(included),
            group=group,
            registry=SUMMARY_TESTS,
            config=config,
        )

        run.advance(AugmentationState.MERGING)
        new = merge_p_values(
            table,
            results_frame(results, assignments),
            pvalue_fun,
            CallRecord("add_p", _call_args(test=test, group=group, include=include, exclude=exclude)),
            config,
        )
        run.advance(AugmentationState.DONE)
    return new


def _included_variables(table, include: Any, exclude: Any) -> list[str]:
    variables = table.variables
    included = resolve(everything() if include is None else include, variables, table.meta_data, "include")
    if exclude is not None:
        warnings.warn(
            "The `exclude` argument of add_p() is deprecated; use `include=~vars(...)` instead.",
            FutureWarning,
            stacklevel=4,
        )
        excluded = set(resolve(exclude, variables, table.meta_data, "exclude"))
        included = [v for v in included if v not in excluded]
    return included


# =============================================================================
# CROSS TABLE
# =============================================================================


@add_p.register(CrossTable)
def add_p_cross(
    table: CrossTable,
    test: Any = None,
    pvalue_fun: Callable | None = None,
    source_note: bool | None = None,
    config: ConfigManager | None = None,
) -> CrossTable:
    """
    Add the p-value of the row-by-column test to a cross table.

    With ``source_note=True`` the result is reported as a note ("<test>, p=<value>") and the p.value column is hidden.
    """
    config = resolve_config(config)
    with Augmentation("add_p.cross_table") as run:
        source_note = config.get("tests.cross_source_note", False) if source_note is None else bool(source_note)
        pvalue_fun = _check_pvalue_fun(pvalue_fun, config, prepend_p=source_note)
        test = test if test is not None else config.get("tests.cross")
        if test is not None and not (isinstance(test, str) or callable(test)):
            raise ConfigurationError("must be a single test name or function", argument="test")

        run.advance(AugmentationState.RESOLVING)
        tbl_data = table.tbl_data
        assignments = assign_tests(
            tbl_data,
            table.variables,
            table.summary_types,
            table.by,
            overrides=test,
            registry=SUMMARY_TESTS,
            default_rule=default_summary_test,
            config=config,
        )

        run.advance(AugmentationState.EXECUTING)
        results = run_tests(
            tbl_data, assignments, table.summary_types, table.by, table.variables, config=config
        )

        run.advance(AugmentationState.MERGING)
        frame = results_frame(results, assignments)
        test_name = "; ".join(label for label in frame["stat_test_lbl"].dropna().unique())
        new = merge_p_values(
            table,
            frame,
            pvalue_fun,
            CallRecord("add_p", _call_args(test=test, source_note=source_note)),
            config,
            footnote=test_name or None,
        )
        if source_note:
            new = source_note_p_value(new, pvalue_fun)
        else:
            new.list_output.pop("source_note", None)
        run.advance(AugmentationState.DONE)
    return new


# =============================================================================
# SURVEY SUMMARY TABLE
# =============================================================================


@add_p.register(SurveySummaryTable)
def add_p_survey(
    table: SurveySummaryTable,
    test: Any = None,
    pvalue_fun: Callable | None = None,
    include: Any = None,
    config: ConfigManager | None = None,
) -> SurveySummaryTable:
    """
    Add design-based p-values to a survey-weighted summary table.

    Built-in tests are the ``svy.*`` identifiers; custom functions receive the ``SurveyDesign``.
    """
    config = resolve_config(config)
    with Augmentation("add_p.survey_summary_table") as run, logger.track_time("add_p.survey_summary_table"):
        if table.by is None:
            raise ConfigurationError(
                "Cannot add a p-value when no 'by' variable is specified in the summary table", argument="by"
            )
        pvalue_fun = _check_pvalue_fun(pvalue_fun, config)
        test = test if test is not None else config.get("tests.survey")

        included = _included_variables(table, include, None)
        run.advance(AugmentationState.RESOLVING, included=len(included))
        assignments = assign_tests(
            table.design,
            included,
            table.summary_types,
            table.by,
            overrides=test,
            registry=SURVEY_TESTS,
            default_rule=default_survey_test,
            config=config,
        )

        run.advance(AugmentationState.EXECUTING)
        results = run_tests(
            table.design,
            assignments,
            table.summary_types,
            table.by,
            table.variables,
            included=set(included),
            registry=SURVEY_TESTS,
            config=config,
        )

        run.advance(AugmentationState.MERGING)
        new = merge_p_values(
            table,
            results_frame(results, assignments),
            pvalue_fun,
            CallRecord("add_p", _call_args(test=test, include=include)),
            config,
        )
        run.advance(AugmentationState.DONE)
    return new


# =============================================================================
# SURVIVAL TABLE
# =============================================================================


@add_p.register(SurvivalTable)
def add_p_survival(
    table: SurvivalTable,
    test: Any = None,
    test_args: Any = None,
    pvalue_fun: Callable | None = None,
    include: Any = None,
    quiet: bool | None = None,
    config: ConfigManager | None = None,
) -> SurvivalTable:
    """
    Add survival-test p-values to the stratified fits of a survival table.

    Parameters:
        test: ``"logrank"`` (default), ``"survdiff"``, ``"petopeto_gehanwilcoxon"``, ``"coxph_lrt"``, ``"coxph_wald"`` or ``"coxph_score"``; a single name or (selector, name) pairs.
        test_args: Extra keyword arguments for the model call. A plain dict of arguments when `test` is a single name, otherwise (selector, dict) pairs.
        quiet (bool | None): Do not log the model call of the first test.
    """
    config = resolve_config(config)
    with Augmentation("add_p.survival_table") as run, logger.track_time("add_p.survival_table"):
        pvalue_fun = _check_pvalue_fun(pvalue_fun, config)
        quiet = config.get("survival.quiet", False) if quiet is None else bool(quiet)
        test = test if test is not None else config.get("tests.survival", "logrank")

        meta = table.meta_data
        stratified = meta.loc[meta["stratified"].astype(bool)]
        if stratified.empty:
            raise ConfigurationError(
                "add_p() may only be applied to survival tables with a stratifying variable", argument="x"
            )

        variables = table.variables
        arg_pairs = test_args
        if isinstance(test, str) and isinstance(test_args, dict):
            arg_pairs = [(everything(), test_args)]
        tests = resolve_overrides(test, variables, meta, arg_name="test")
        args = resolve_overrides(arg_pairs, variables, meta, arg_name="test_args")

        included = set(resolve(everything() if include is None else include, variables, meta, "include"))
        tested = stratified.loc[stratified["variable"].isin(included)]

        run.advance(AugmentationState.RESOLVING, included=len(tested))
        specs = validate_survival_tests({v: tests.get(v) for v in tested["variable"]}, args)

        run.advance(AugmentationState.EXECUTING)
        results = calculate_survival_pvalues(
            tested, specs, args, quiet=quiet, ties=config.get("survival.ties", "efron"), gate=MessageGate()
        )

        run.advance(AugmentationState.MERGING)
        frame = results_frame(results, {v: specs[v].test_id for v in specs})
        new = merge_p_values(
            table,
            frame,
            pvalue_fun,
            CallRecord("add_p", _call_args(test=test, test_args=test_args, include=include, quiet=quiet)),
            config,
            footnote=survival_footnote(frame),
        )
        run.advance(AugmentationState.DONE)
    return new
