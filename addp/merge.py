"""
Result Merge Engine

Folds per-variable test results into a copy of the table. Only the
``p.value`` column, its header record and its footnote change; every other
column and the row order of the body are left as they were.
"""

from __future__ import annotations

from typing import Any, Callable

import pandas as pd

from addp.config import ConfigManager
from addp.tables import (
    CallRecord,
    GTTable,
    modify_footnote,
    modify_header,
    table_header_fill_missing,
    table_header_fmt_fun,
)

RESULT_COLUMNS = ["stat_test", "p.value", "stat_test_lbl"]


def _unique_labels(labels) -> list[str]:
    seen = []
    for label in labels:
        if isinstance(label, str) and label and label not in seen:
            seen.append(label)
    return seen


def footnote_add_p(meta_data: pd.DataFrame, prefix: str = "Statistical tests performed") -> str | None:
    """Footnote naming every test that was run, in table order; None when no test ran."""
    if "stat_test_lbl" not in meta_data.columns:
        return None
    labels = _unique_labels(meta_data["stat_test_lbl"])
    if not labels:
        return None
    return f"{prefix}: {'; '.join(labels)}"


def merge_meta_data(meta_data: pd.DataFrame, results: pd.DataFrame) -> pd.DataFrame:
    """Left-join results onto meta data, replacing result columns from an earlier call."""
    keep = meta_data.drop(columns=[c for c in RESULT_COLUMNS if c in meta_data.columns])
    return keep.merge(results, on="variable", how="left", validate="many_to_one")


def merge_body_p_values(table_body: pd.DataFrame, meta_data: pd.DataFrame) -> pd.DataFrame:
    """
    Left-join ``(variable, p.value)`` onto the label rows of the body.

    An existing ``p.value`` column is replaced. Row order and index are preserved.
    """
    projection = meta_data.loc[:, ["variable", "p.value"]].drop_duplicates("variable").copy()
    projection["row_type"] = "label"

    body = table_body.drop(columns=["p.value"], errors="ignore")
    merged = body.merge(projection, on=["variable", "row_type"], how="left", validate="many_to_one")
    merged.index = table_body.index
    return merged


def merge_p_values(
    table: GTTable,
    results: pd.DataFrame,
    pvalue_fun: Callable[[Any], str | None],
    call: CallRecord,
    config: ConfigManager,
    footnote: str | None | bool = True,
) -> GTTable:
    """
    Return a copy of `table` with p-values merged in.

    Parameters:
        table: Table to augment; it is not modified.
        results (pd.DataFrame): ``variable``, ``stat_test``, ``p.value``, ``stat_test_lbl``.
        pvalue_fun: Formatter for the ``p.value`` column.
        call (CallRecord): Audit entry appended to the copy's call list.
        footnote: True builds the standard "tests performed" footnote; a string is used as is; None/False leaves the footnote unset.
    """
    new = table.copy()
    new.meta_data = merge_meta_data(table.meta_data, results)
    new.table_body = merge_body_p_values(table.table_body, new.meta_data)

    header = table_header_fill_missing(table.table_header, new.table_body)
    header = table_header_fmt_fun(header, {"p.value": pvalue_fun})
    header = modify_header(header, {"p.value": config.get("pvalue.header", "**p-value**")})

    if footnote is True:
        footnote = footnote_add_p(new.meta_data, config.get("pvalue.footnote_prefix", "Statistical tests performed"))
    if footnote:
        header = modify_footnote(header, {"p.value": footnote})
    new.table_header = header

    new.call_list = [*table.call_list, call]
    return new


def source_note_p_value(table: GTTable, pvalue_fun: Callable[[Any], str | None]) -> GTTable:
    """
    Report the single test of a cross table as a source note instead of a column.

    The note reads ``"<test label>, <formatted p>"``. The ``p.value`` column is hidden, not dropped, and its footnote cleared.
    """
    new = table.copy()
    results = new.meta_data.dropna(subset=["p.value"])
    label = "; ".join(_unique_labels(results["stat_test_lbl"]))
    p_text = ", ".join(str(pvalue_fun(p)) for p in results["p.value"])

    header = new.table_header.copy()
    mask = header["column"] == "p.value"
    header.loc[mask, "hide"] = True
    header.loc[mask, "footnote"] = None
    new.table_header = header

    new.list_output = {**new.list_output, "source_note": f"{label}, {p_text}"}
    return new


def survival_footnote(results: pd.DataFrame) -> str | None:
    """
    Footnote of a survival table: the unique test labels joined with "; ".

    Set only when every tested variable has a label (``survdiff`` has none).
    """
    labels = results["stat_test_lbl"]
    if labels.empty or labels.isna().any():
        return None
    return "; ".join(_unique_labels(labels))
