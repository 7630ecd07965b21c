"""
Table data structures

A table is a tagged variant: ``SummaryTable``, ``CrossTable``,
``SurveySummaryTable`` or ``SurvivalTable``. They share the same storage:

- ``meta_data``: one row per variable (``variable``, ``summary_type`` ...)
- ``table_body``: render-facing rows keyed by ``(variable, row_type)``
- ``table_header``: one row per body column (``column``, ``label``,
  ``hide``, ``fmt_fun``, ``footnote``)
- ``call_list``: append-only audit trail of calls applied to the table
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, NamedTuple

import numpy as np
import pandas as pd

HEADER_COLUMNS = ["column", "label", "hide", "fmt_fun", "footnote"]


class TestResult(NamedTuple):
    """Normalized outcome of one test: p-value (nan when missing) and display label."""

    __test__ = False  # not a pytest test class

    p: float
    label: str | None

    @classmethod
    def missing(cls) -> "TestResult":
        return cls(np.nan, None)


@dataclass(frozen=True)
class CallRecord:
    """Audit entry for one call applied to a table."""

    name: str
    args: Mapping[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.args.items())
        return f"{self.name}({args})"


@dataclass
class GTTable:
    """Storage shared by every table kind."""

    inputs: dict
    meta_data: pd.DataFrame
    table_body: pd.DataFrame
    table_header: pd.DataFrame
    by: str | None = None
    call_list: list = field(default_factory=list)
    list_output: dict = field(default_factory=dict)

    def copy(self):
        """Return an independent copy; the input dataset itself is shared read-only."""
        return dataclasses.replace(
            self,
            inputs=dict(self.inputs),
            meta_data=self.meta_data.copy(),
            table_body=self.table_body.copy(),
            table_header=self.table_header.copy(),
            call_list=list(self.call_list),
            list_output=dict(self.list_output),
        )

    @property
    def variables(self) -> list[str]:
        return self.meta_data["variable"].tolist()

    @property
    def summary_types(self) -> dict[str, str]:
        return dict(zip(self.meta_data["variable"], self.meta_data["summary_type"]))

    def as_data_frame(self) -> pd.DataFrame:
        """
        Render the visible columns with their formatters and header labels.

        Markdown emphasis (``**bold**``) is stripped from labels.
        """
        header = self.table_header.set_index("column")
        visible = [c for c in self.table_body.columns if c in header.index and not header.at[c, "hide"]]
        out = pd.DataFrame(index=self.table_body.index)
        for col in visible:
            fmt = header.at[col, "fmt_fun"]
            values = self.table_body[col]
            if callable(fmt):
                values = values.map(lambda v, f=fmt: None if _is_missing(v) else f(v))
            out[re.sub(r"\*\*(.*?)\*\*", r"\1", str(header.at[col, "label"]))] = values
        return out.reset_index(drop=True)


@dataclass
class SummaryTable(GTTable):
    """Summary of variables, optionally split by a grouping (`by`) column."""

    @property
    def data(self) -> pd.DataFrame:
        return self.inputs["data"]


@dataclass
class CrossTable(GTTable):
    """Cross-tabulation of a row variable against a column (`by`) variable."""

    @property
    def data(self) -> pd.DataFrame:
        return self.inputs["data"]

    @property
    def tbl_data(self) -> pd.DataFrame:
        """Input data with missing values recoded to an observed level."""
        return self.inputs["tbl_data"]


@dataclass
class SurveySummaryTable(GTTable):
    """Survey-weighted summary; the input is a design object, not a flat frame."""

    @property
    def design(self):
        return self.inputs["data"]

    @property
    def data(self) -> pd.DataFrame:
        return self.design.variables


@dataclass
class SurvivalTable(GTTable):
    """Survival probabilities from one or more stored survival-curve fits."""


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


# =============================================================================
# TABLE HEADER HELPERS
# =============================================================================


def new_table_header(
    columns: list[str],
    labels: Mapping[str, str] | None = None,
    hidden: tuple[str, ...] = ("variable", "row_type"),
) -> pd.DataFrame:
    """Create a header with one record per column."""
    labels = labels or {}
    return pd.DataFrame(
        {
            "column": list(columns),
            "label": [labels.get(c, c) for c in columns],
            "hide": [c in hidden for c in columns],
            "fmt_fun": pd.Series([None] * len(columns), dtype=object),
            "footnote": pd.Series([None] * len(columns), dtype=object),
        },
        columns=HEADER_COLUMNS,
    )


def table_header_fill_missing(table_header: pd.DataFrame, table_body: pd.DataFrame) -> pd.DataFrame:
    """
    Align the header with the body: one record per body column, in body order.

    Existing records are kept unchanged. Columns new to the header get the defaults: the column name as label, hidden, no formatter and no footnote.
    """
    existing = {row["column"]: row for row in table_header.to_dict("records")}
    records = []
    for col in table_body.columns:
        if col in existing:
            records.append(existing[col])
        else:
            records.append({"column": col, "label": col, "hide": True, "fmt_fun": None, "footnote": None})
    header = pd.DataFrame.from_records(records, columns=HEADER_COLUMNS)
    header["fmt_fun"] = header["fmt_fun"].astype(object)
    header["footnote"] = header["footnote"].astype(object)
    return header


def _set_header_values(table_header: pd.DataFrame, field_name: str, values: Mapping[str, Any]) -> pd.DataFrame:
    header = table_header.copy()
    for column, value in values.items():
        mask = header["column"] == column
        if not mask.any():
            raise KeyError(f"Column '{column}' is not in the table header")
        idx = header.index[mask][0]
        header.at[idx, field_name] = value
    return header


def table_header_fmt_fun(table_header: pd.DataFrame, fmt_funs: Mapping[str, Callable]) -> pd.DataFrame:
    """Set the formatting function of the named columns."""
    return _set_header_values(table_header, "fmt_fun", fmt_funs)


def modify_header(table_header: pd.DataFrame, labels: Mapping[str, str]) -> pd.DataFrame:
    """Set the display label of the named columns and unhide them."""
    header = _set_header_values(table_header, "label", labels)
    return _set_header_values(header, "hide", {column: False for column in labels})


def modify_footnote(table_header: pd.DataFrame, footnotes: Mapping[str, str | None]) -> pd.DataFrame:
    """Set the footnote text of the named columns."""
    return _set_header_values(table_header, "footnote", footnotes)
