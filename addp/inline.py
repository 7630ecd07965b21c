"""Inline reporting of a table's p-values in running text."""

from __future__ import annotations

from typing import Any, Callable

import pandas as pd

from addp.config import ConfigManager, resolve_config
from addp.exceptions import ConfigurationError
from addp.formatting import get_pvalue_fun
from addp.tables import GTTable


def inline_pvalue(
    table: GTTable,
    variable: str,
    pvalue_fun: Callable[[Any], str | None] | None = None,
    config: ConfigManager | None = None,
) -> str | None:
    """
    Formatted p-value of `variable`, e.g. ``"p=0.012"`` or ``"p<0.001"``.

    Returns None when the variable was not tested.

    Raises:
        ConfigurationError: The table has no p-values, or `variable` is not in the table.
    """
    meta = table.meta_data
    if "p.value" not in meta.columns:
        raise ConfigurationError("the table has no p-values; call add_p() first", argument="x")
    rows = meta.loc[meta["variable"] == variable]
    if rows.empty:
        raise ConfigurationError(
            f"'{variable}' is not one of: {', '.join(map(str, meta['variable']))}", argument="variable"
        )

    if pvalue_fun is None:
        pvalue_fun = get_pvalue_fun(resolve_config(config), prepend_p=True)
    p = rows["p.value"].iloc[0]
    if pd.isna(p):
        return None
    return pvalue_fun(p)
