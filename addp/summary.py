"""
📋 Table Builders

Small constructors for the four table kinds that p-values are added to:

- ``summary_table``: one row block per variable, optionally split by `by`
- ``cross_table``: counts of a row variable by a column variable
- ``survey_summary_table``: weighted version of ``summary_table``
- ``survival_table``: survival probabilities from ``fit_survival`` fits

Row blocks use ``row_type`` "label" (one per variable), "level" (one per
category) and "missing" (count of missing values, when any).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np
import pandas as pd
from lifelines import KaplanMeierFitter
from statsmodels.stats.weightstats import DescrStatsW

from addp.design import SurveyDesign
from addp.exceptions import ConfigurationError
from addp.logger import get_logger
from addp.stat_tests import by_levels
from addp.tables import (
    CallRecord,
    CrossTable,
    SummaryTable,
    SurveySummaryTable,
    SurvivalTable,
    new_table_header,
)

logger = get_logger(__name__)

SummaryType = Literal["continuous", "categorical", "dichotomous"]
OVERALL = "..overall.."


# --- 1. Classifier Logic ---
def classify_variable(series: pd.Series, max_cat_unique: int = 10) -> SummaryType:
    """
    Infer the summary type of a variable.

    Parameters:
        series (pd.Series): Input column; missing values are ignored.
        max_cat_unique (int): Maximum number of unique values for a numeric column to be treated as categorical.

    Returns:
        "dichotomous" for exactly two observed levels, "categorical" for non-numeric columns or few unique values, "continuous" otherwise.
    """
    clean_series = series.dropna()
    unique_count = clean_series.nunique()
    if unique_count == 2:
        return "dichotomous"

    is_numeric = pd.api.types.is_numeric_dtype(clean_series) and not pd.api.types.is_bool_dtype(clean_series)
    if (
        not is_numeric
        or isinstance(clean_series.dtype, pd.CategoricalDtype)
        or unique_count <= max_cat_unique
    ):
        return "categorical"
    return "continuous"


def dichotomous_value(series: pd.Series) -> Any:
    """Level reported for a dichotomous variable: 1, True or "Yes" when present, else the last level."""
    levels = by_levels(series)
    for level in levels:
        if str(level).lower() in ("1", "1.0", "true", "yes"):
            return level
    return levels[-1]


# --- 2. Statistics ---
def _continuous_stat(values: pd.Series, weights: np.ndarray | None = None) -> str:
    values = pd.to_numeric(values, errors="coerce")
    keep = values.notna().to_numpy()
    if weights is not None:
        keep &= weights > 0
    x = values.to_numpy(dtype=float)[keep]
    if len(x) == 0:
        return "-"
    if weights is None:
        q1, med, q3 = np.quantile(x, [0.25, 0.5, 0.75])
    else:
        q1, med, q3 = DescrStatsW(x, weights=weights[keep]).quantile([0.25, 0.5, 0.75], return_pandas=False)
    return f"{med:.1f} [{q1:.1f}, {q3:.1f}]"


def _count_stat(n: float, denominator: float, weighted: bool) -> str:
    pct = 100 * n / denominator if denominator > 0 else 0.0
    count = f"{n:,.0f}" if weighted else f"{int(n)}"
    return f"{count} ({pct:.1f}%)"


@dataclass
class _Column:
    name: str
    mask: np.ndarray
    header: str


def _stat_columns(data: pd.DataFrame, by: str | None, weights: np.ndarray) -> list[_Column]:
    if by is None:
        n = weights.sum()
        return [_Column("stat_0", np.ones(len(data), dtype=bool), f"**N = {n:,.0f}**")]
    columns = []
    for i, level in enumerate(by_levels(data[by]), start=1):
        mask = (data[by] == level).to_numpy()
        columns.append(_Column(f"stat_{i}", mask, f"**{level}**, N = {weights[mask].sum():,.0f}"))
    return columns


def _variable_rows(
    data: pd.DataFrame,
    variable: str,
    summary_type: str,
    columns: list[_Column],
    weights: np.ndarray,
    weighted: bool,
) -> list[dict]:
    values = data[variable]
    present = values.notna().to_numpy()
    label_row = {"variable": variable, "row_type": "label", "label": variable}
    rows = [label_row]

    if summary_type == "continuous":
        for col in columns:
            label_row[col.name] = _continuous_stat(values[col.mask], weights[col.mask] if weighted else None)
    elif summary_type == "dichotomous":
        value = dichotomous_value(values)
        hit = (values == value).to_numpy()
        for col in columns:
            label_row[col.name] = _count_stat(
                weights[col.mask & hit].sum(), weights[col.mask & present].sum(), weighted
            )
    else:
        for level in by_levels(values):
            level_row = {"variable": variable, "row_type": "level", "label": str(level)}
            hit = (values == level).to_numpy()
            for col in columns:
                level_row[col.name] = _count_stat(
                    weights[col.mask & hit].sum(), weights[col.mask & present].sum(), weighted
                )
            rows.append(level_row)

    if not present.all():
        missing_row = {"variable": variable, "row_type": "missing", "label": "Unknown"}
        for col in columns:
            n_missing = weights[col.mask & ~present].sum()
            missing_row[col.name] = f"{n_missing:,.0f}" if weighted else str(int(n_missing))
        rows.append(missing_row)
    return rows


def _resolve_types(data: pd.DataFrame, variables: list[str], type: dict | None, max_cat_unique: int) -> dict:
    type = dict(type or {})
    unknown = [v for v in type if v not in variables]
    if unknown:
        raise ConfigurationError(f"unknown variable(s): {', '.join(unknown)}", argument="type")
    for v, t in type.items():
        if t not in ("continuous", "categorical", "dichotomous"):
            raise ConfigurationError(f"'{t}' is not a summary type", argument="type")
    return {v: type.get(v) or classify_variable(data[v], max_cat_unique) for v in variables}


def _summary_parts(data, by, include, type, max_cat_unique, weights, weighted):
    if by is not None and by not in data.columns:
        raise ConfigurationError(f"column '{by}' not found in data", argument="by")
    variables = list(include) if include is not None else [c for c in data.columns if c != by]
    missing = [v for v in variables if v not in data.columns]
    if missing:
        raise ConfigurationError(f"column(s) not found in data: {', '.join(missing)}", argument="include")
    variables = [v for v in variables if v != by]

    types = _resolve_types(data, variables, type, max_cat_unique)
    columns = _stat_columns(data, by, weights)

    rows = []
    for variable in variables:
        rows.extend(_variable_rows(data, variable, types[variable], columns, weights, weighted))

    body_columns = ["variable", "row_type", "label"] + [c.name for c in columns]
    table_body = pd.DataFrame.from_records(rows, columns=body_columns)
    table_header = new_table_header(
        body_columns, labels={"label": "**Characteristic**", **{c.name: c.header for c in columns}}
    )
    meta_data = pd.DataFrame(
        {"variable": variables, "summary_type": [types[v] for v in variables], "var_label": variables}
    )
    return variables, meta_data, table_body, table_header


def summary_table(
    data: pd.DataFrame,
    by: str | None = None,
    include: list[str] | None = None,
    type: dict | None = None,
    max_cat_unique: int = 10,
) -> SummaryTable:
    """
    Summarise `data`: median [Q1, Q3] for continuous variables, n (%) otherwise.

    Parameters:
        data (pd.DataFrame): Source data.
        by (str | None): Grouping column; one statistic column per level.
        include (list[str] | None): Variables to summarise (default: every column except `by`).
        type (dict | None): Summary type overrides, ``{variable: "continuous" | "categorical" | "dichotomous"}``.
    """
    weights = np.ones(len(data))
    variables, meta_data, table_body, table_header = _summary_parts(
        data, by, include, type, max_cat_unique, weights, weighted=False
    )
    logger.debug(f"summary_table: {len(variables)} variable(s), by={by!r}")
    return SummaryTable(
        inputs={"data": data, "by": by, "include": variables, "type": type},
        meta_data=meta_data,
        table_body=table_body,
        table_header=table_header,
        by=by,
        call_list=[CallRecord("summary_table", {"by": by, "include": variables})],
    )


def survey_summary_table(
    design: SurveyDesign,
    by: str | None = None,
    include: list[str] | None = None,
    type: dict | None = None,
    max_cat_unique: int = 10,
) -> SurveySummaryTable:
    """Survey-weighted summary: weighted median [Q1, Q3] and weighted n (%)."""
    if not isinstance(design, SurveyDesign):
        raise ConfigurationError("must be a SurveyDesign", argument="design")
    data = design.variables
    design_cols = {design.weights, design.ids, design.strata} - {None}
    if include is None:
        include = [c for c in data.columns if c != by and c not in design_cols]
    variables, meta_data, table_body, table_header = _summary_parts(
        data, by, include, type, max_cat_unique, design.weight_values, weighted=True
    )
    return SurveySummaryTable(
        inputs={"data": design, "by": by, "include": variables, "type": type},
        meta_data=meta_data,
        table_body=table_body,
        table_header=table_header,
        by=by,
        call_list=[CallRecord("survey_summary_table", {"by": by, "include": variables})],
    )


def cross_table(data: pd.DataFrame, row: str, col: str, missing_text: str = "Unknown") -> CrossTable:
    """
    Cross-tabulate `row` against `col`, with a total column.

    Missing values of either variable are shown as the level `missing_text`; the recoded data is kept in ``inputs["tbl_data"]``.
    """
    for arg, name in (("row", row), ("col", col)):
        if name not in data.columns:
            raise ConfigurationError(f"column '{name}' not found in data", argument=arg)

    tbl_data = data[[row, col]].copy()
    for name in (row, col):
        if tbl_data[name].isna().any():
            tbl_data[name] = tbl_data[name].astype(object).where(tbl_data[name].notna(), missing_text)

    col_levels = by_levels(tbl_data[col])
    row_levels = by_levels(tbl_data[row])
    counts = pd.crosstab(tbl_data[row], tbl_data[col])

    stat_cols = {level: f"stat_{i}" for i, level in enumerate(col_levels, start=1)}
    rows = [{"variable": row, "row_type": "label", "label": row}]
    for level in row_levels:
        record = {"variable": row, "row_type": "level", "label": str(level)}
        for c_level, name in stat_cols.items():
            record[name] = str(int(counts.at[level, c_level]))
        record["stat_0"] = str(int(counts.loc[level].sum()))
        rows.append(record)

    body_columns = ["variable", "row_type", "label", *stat_cols.values(), "stat_0"]
    table_body = pd.DataFrame.from_records(rows, columns=body_columns)
    table_header = new_table_header(
        body_columns,
        labels={
            "label": "",
            **{name: f"**{level}**" for level, name in stat_cols.items()},
            "stat_0": "**Total**",
        },
    )
    meta_data = pd.DataFrame({"variable": [row], "summary_type": ["categorical"], "var_label": [row]})
    return CrossTable(
        inputs={"data": data, "tbl_data": tbl_data, "row": row, "col": col},
        meta_data=meta_data,
        table_body=table_body,
        table_header=table_header,
        by=col,
        call_list=[CallRecord("cross_table", {"row": row, "col": col})],
    )


# --- 3. Survival Curves ---
@dataclass
class SurvivalFit:
    """
    A stored Kaplan-Meier fit: the fitted curves plus the formula and data that produced them.
    """

    data: pd.DataFrame
    duration_col: str
    event_col: str
    strata: str | None = None
    fitters: dict = field(default_factory=dict)

    @property
    def formula(self) -> str:
        return f"Surv({self.duration_col}, {self.event_col}) ~ {self.strata or 1}"

    @property
    def stratified(self) -> bool:
        return self.strata is not None


def fit_survival(data: pd.DataFrame, duration_col: str, event_col: str, strata: str | None = None) -> SurvivalFit:
    """Fit Kaplan-Meier curves overall or per level of `strata`."""
    for arg, name in (("duration_col", duration_col), ("event_col", event_col), ("strata", strata)):
        if name is not None and name not in data.columns:
            raise ConfigurationError(f"column '{name}' not found in data", argument=arg)

    cols = [duration_col, event_col] + ([strata] if strata else [])
    clean = data.dropna(subset=cols)
    fitters = {}
    groups = by_levels(clean[strata]) if strata else [OVERALL]
    for g in groups:
        df_g = clean[clean[strata] == g] if strata else clean
        kmf = KaplanMeierFitter()
        kmf.fit(df_g[duration_col], df_g[event_col], label=str(g))
        fitters[g] = kmf
    return SurvivalFit(data=data, duration_col=duration_col, event_col=event_col, strata=strata, fitters=fitters)


def survival_table(fits: SurvivalFit | list[SurvivalFit], times: list[float]) -> SurvivalTable:
    """
    Survival probability at each of `times`, one row block per fit.

    A stratified fit becomes a variable named after its strata column with one level row per stratum; an unstratified fit becomes the ``..overall..`` variable.
    """
    fits = [fits] if isinstance(fits, SurvivalFit) else list(fits)
    if not fits:
        raise ConfigurationError("at least one survival fit is required", argument="fits")
    times = sorted(float(t) for t in times)
    stat_cols = [f"stat_{i}" for i in range(1, len(times) + 1)]

    rows, meta_records = [], []
    for fit in fits:
        variable = fit.strata or OVERALL
        label_row = {"variable": variable, "row_type": "label", "label": fit.strata or "Overall"}
        if not fit.stratified:
            kmf = fit.fitters[OVERALL]
            label_row.update({c: f"{kmf.predict(t) * 100:.0f}%" for c, t in zip(stat_cols, times)})
        rows.append(label_row)
        if fit.stratified:
            for level, kmf in fit.fitters.items():
                record = {"variable": variable, "row_type": "level", "label": str(level)}
                record.update({c: f"{kmf.predict(t) * 100:.0f}%" for c, t in zip(stat_cols, times)})
                rows.append(record)
        meta_records.append(
            {"variable": variable, "summary_type": "categorical", "stratified": fit.stratified, "survfit": fit}
        )

    body_columns = ["variable", "row_type", "label", *stat_cols]
    table_body = pd.DataFrame.from_records(rows, columns=body_columns)
    table_header = new_table_header(
        body_columns,
        labels={"label": "**Characteristic**", **{c: f"**Time {t:g}**" for c, t in zip(stat_cols, times)}},
    )
    meta_data = pd.DataFrame.from_records(
        meta_records, columns=["variable", "summary_type", "stratified", "survfit"]
    )
    return SurvivalTable(
        inputs={"x": fits, "times": times},
        meta_data=meta_data,
        table_body=table_body,
        table_header=table_header,
        by=None,
        call_list=[CallRecord("survival_table", {"times": times})],
    )

