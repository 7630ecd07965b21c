"""
⏳ Survival Tests for Stratified Survival Tables

A closed registry of tests. Each test is bound to a model call built from the
*formula* and *data* of the stored survival fit, plus optional per-variable
extra arguments:

    logrank                  log-rank test (survdiff, rho = 0)
    petopeto_gehanwilcoxon   Peto & Peto modification of Gehan-Wilcoxon (survdiff, rho = 1)
    survdiff                 G-rho family; extra args allowed, no footnote
    coxph_lrt / coxph_wald / coxph_score
                             Cox proportional hazards model, global test

Tests run sequentially. A ``MessageGate`` lets the first call log its model
call and show warnings; later calls run with warnings suppressed.
"""

from __future__ import annotations

import threading
import warnings
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd
from lifelines.statistics import multivariate_logrank_test
from scipy import stats
from statsmodels.duration.hazard_regression import PHReg

from addp.exceptions import AddPError, ConfigurationError, TestExecutionError
from addp.logger import get_logger
from addp.summary import SurvivalFit
from addp.tables import TestResult

logger = get_logger(__name__)


class MessageGate:
    """Thread-safe "first call" flag: ``claim()`` is True exactly once."""

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed = False

    def claim(self) -> bool:
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True


def extract_formula_data_call(fit: SurvivalFit) -> dict:
    """The formula and data arguments of the call that produced `fit`."""
    return {
        "formula": {"duration_col": fit.duration_col, "event_col": fit.event_col, "strata": fit.strata},
        "data": fit.data,
    }


def format_call(fn_name: str, formula: str, args: Mapping[str, Any]) -> str:
    """Readable rendition of a model call; long argument values are shown as ``.``."""
    parts = [formula, "data = ."]
    for key, value in args.items():
        text = repr(value)
        parts.append(f"{key} = {'.' if len(text) > 30 else text}")
    return f"{fn_name}({', '.join(parts)})"


def _model_frame(fit: SurvivalFit) -> pd.DataFrame:
    call = extract_formula_data_call(fit)
    formula = call["formula"]
    cols = [formula["duration_col"], formula["event_col"], formula["strata"]]
    return call["data"][cols].dropna()


def survdiff(fit: SurvivalFit, verbose: bool = False, rho: float = 0, **kwargs) -> float:
    """
    G-rho test of equal survival across strata.

    ``rho=0`` is the log-rank test; other values use Fleming-Harrington weights ``S(t)^rho``.
    """
    if verbose:
        logger.info(f"Calculating p-value with\n  `{format_call('survdiff', fit.formula, {'rho': rho, **kwargs})}`")

    frame = _model_frame(fit)
    options = dict(kwargs)
    if rho != 0:
        options.update({"weightings": "fleming-harrington", "p": rho, "q": 0})
    result = multivariate_logrank_test(
        frame[fit.duration_col], frame[fit.strata], frame[fit.event_col], **options
    )
    return float(result.p_value)


def coxph(fit: SurvivalFit, verbose: bool = False, type: str = "lrt", ties: str = "efron", **kwargs) -> float:
    """
    Global test of a Cox model with the strata variable as a categorical covariate.

    `type` selects the likelihood-ratio (``lrt``), Wald (``wald``) or score (``score``) statistic. A ``strata`` keyword naming a column of the fit's data gives a stratified model.
    """
    if verbose:
        logger.info(f"Calculating p-value with\n  `{format_call('coxph', fit.formula, {'ties': ties, **kwargs})}`")

    extra_cols = [kwargs["strata"]] if isinstance(kwargs.get("strata"), str) else []
    frame = fit.data[[fit.duration_col, fit.event_col, fit.strata, *extra_cols]].dropna()
    if extra_cols:
        kwargs["strata"] = frame[extra_cols[0]].to_numpy()

    exog = pd.get_dummies(frame[fit.strata].astype(str), drop_first=True, dtype=float)
    if exog.shape[1] == 0:
        raise ValueError(f"'{fit.strata}' has a single observed level")

    model = PHReg(
        frame[fit.duration_col].to_numpy(dtype=float),
        exog.to_numpy(),
        status=frame[fit.event_col].to_numpy(dtype=float),
        ties=ties,
        **kwargs,
    )
    result = model.fit()
    params = np.asarray(result.params)
    k = len(params)
    null = np.zeros(k)

    if type == "lrt":
        statistic = 2 * (model.loglike(params) - model.loglike(null))
    elif type == "wald":
        statistic = params @ np.linalg.solve(np.asarray(result.cov_params()), params)
    elif type == "score":
        u = model.score(null)
        statistic = u @ np.linalg.solve(-model.hessian(null), u)
    else:
        raise ValueError(f"unknown Cox test type '{type}'")
    return float(stats.chi2.sf(statistic, k))


@dataclass(frozen=True)
class SurvivalTestSpec:
    test_id: str
    fn: Callable[..., float]
    footnote: str | None
    accepts_args: bool
    model: str = "survdiff"


SURVIVAL_TESTS: Mapping[str, SurvivalTestSpec] = MappingProxyType(
    {
        spec.test_id: spec
        for spec in (
            SurvivalTestSpec("logrank", survdiff, "Log-rank test", False),
            SurvivalTestSpec(
                "petopeto_gehanwilcoxon",
                partial(survdiff, rho=1),
                "Peto & Peto modification of Gehan-Wilcoxon test",
                False,
            ),
            SurvivalTestSpec("coxph_lrt", partial(coxph, type="lrt"), "Cox regression (LRT)", True, "coxph"),
            SurvivalTestSpec("coxph_wald", partial(coxph, type="wald"), "Cox regression (Wald)", True, "coxph"),
            SurvivalTestSpec("coxph_score", partial(coxph, type="score"), "Cox regression (Score)", True, "coxph"),
            SurvivalTestSpec("survdiff", survdiff, None, True),
        )
    }
)


def validate_survival_tests(
    tests: Mapping[str, Any], test_args: Mapping[str, Mapping[str, Any]]
) -> dict[str, SurvivalTestSpec]:
    """
    Look up every variable's survival test before anything is fitted.

    Raises:
        ConfigurationError: Unknown test, or extra arguments for a test that accepts none.
    """
    specs = {}
    for variable, test_id in tests.items():
        if not isinstance(test_id, str) or test_id not in SURVIVAL_TESTS:
            raise ConfigurationError(
                f"No valid test selected for '{variable}'. Choose one of: {', '.join(SURVIVAL_TESTS)}",
                argument="test",
            )
        spec = SURVIVAL_TESTS[test_id]
        args = test_args.get(variable)
        if args and not spec.accepts_args:
            raise ConfigurationError(
                f"additional arguments were passed for '{variable}' but '{test_id}' accepts none",
                argument="test_args",
            )
        if args is not None and not isinstance(args, Mapping):
            raise ConfigurationError(f"arguments for '{variable}' must be a mapping", argument="test_args")
        specs[variable] = spec
    return specs


def calculate_survival_pvalues(
    meta_data: pd.DataFrame,
    specs: Mapping[str, SurvivalTestSpec],
    test_args: Mapping[str, Mapping[str, Any]],
    quiet: bool = False,
    ties: str = "efron",
    gate: MessageGate | None = None,
) -> dict[str, TestResult]:
    """Run each variable's survival test in table order."""
    gate = gate or MessageGate()
    results = {}
    for row in meta_data.itertuples(index=False):
        variable = row.variable
        spec = specs[variable]
        args = dict(test_args.get(variable) or {})
        if spec.model == "coxph":
            args.setdefault("ties", ties)

        first = gate.claim()
        try:
            if first:
                p = spec.fn(row.survfit, verbose=not quiet, **args)
            else:
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore")
                    p = spec.fn(row.survfit, verbose=False, **args)
        except AddPError:
            raise
        except Exception as e:
            raise TestExecutionError(variable, spec.test_id, e) from e
        results[variable] = TestResult(p, spec.footnote)
    return results
