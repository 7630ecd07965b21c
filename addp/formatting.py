"""
P-value Formatting Utilities

Rounding rules follow common medical-journal practice; the number of
significant digits is driven by the ``pvalue.digits`` setting of a
ConfigManager.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Any, Callable

import numpy as np
import pandas as pd

from addp.config import ConfigManager


def _round_half_up(x: float, digits: int) -> float:
    return float(Decimal(repr(float(x))).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP))


def _fmt(x: float, digits: int) -> str:
    return f"{_round_half_up(x, digits):.{digits}f}"


def style_pvalue(x: Any, digits: int = 1, prepend_p: bool = False) -> str | None:
    """
    Format a p-value for display.

    digits=1: ">0.9", 1 decimal when the value rounds to >= 0.2, 2 decimals
    when it rounds to >= 0.1, 3 decimals down to 0.001, then "<0.001".
    digits=2: ">0.99", 2 decimals from 0.1, then 3 decimals, then "<0.001".
    digits=3: ">0.999", 3 decimals, then "<0.001".

    Returns None for missing values and values outside [0, 1].
    """
    if x is None:
        return None
    try:
        p = float(x)
    except (TypeError, ValueError):
        return None
    if pd.isna(p) or not np.isfinite(p) or p < 0 or p > 1:
        return None

    if digits == 2:
        if p > 0.99:
            p_text = ">0.99"
        elif _round_half_up(p, 2) >= 0.1:
            p_text = _fmt(p, 2)
        elif p >= 0.001:
            p_text = _fmt(p, 3)
        else:
            p_text = "<0.001"
    elif digits == 3:
        if p > 0.999:
            p_text = ">0.999"
        elif p >= 0.001:
            p_text = _fmt(p, 3)
        else:
            p_text = "<0.001"
    else:
        if p > 0.9:
            p_text = ">0.9"
        elif _round_half_up(p, 1) >= 0.2:
            p_text = _fmt(p, 1)
        elif _round_half_up(p, 2) >= 0.1:
            p_text = _fmt(p, 2)
        elif p >= 0.001:
            p_text = _fmt(p, 3)
        else:
            p_text = "<0.001"

    if prepend_p:
        if p_text[0] in "<>":
            return f"p{p_text}"
        return f"p={p_text}"
    return p_text


def get_pvalue_fun(config: ConfigManager, prepend_p: bool = False) -> Callable[[Any], str | None]:
    """
    Build the default p-value formatter for `config`.

    The ``prepend_p`` variant is used when the result is surfaced as a note rather than a column.
    """
    return partial(style_pvalue, digits=config.get("pvalue.digits", 1), prepend_p=prepend_p)
