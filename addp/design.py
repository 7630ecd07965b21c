"""
📐 Survey Design Object

A dataset bundled with sampling weights, primary sampling units (PSUs) and
strata. Design-based tests use it for two things:

- weighted point estimates (via the per-row ``weights``)
- Taylor-linearisation variances of weighted totals (``total_variance``)

Domain estimation (e.g. dropping rows with a missing value) never removes
rows from the design. Rows outside the domain get zero weight instead, so
the number of PSUs and strata (and therefore the design degrees of freedom)
is unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from addp.exceptions import ConfigurationError
from addp.logger import get_logger

logger = get_logger(__name__)


@dataclass(eq=False)
class SurveyDesign:
    """
    Survey design: data plus weights, clusters (`ids`) and `strata`.

    Parameters:
        data (pd.DataFrame): Variables of the survey.
        weights (str | None): Column of sampling weights. Missing means weight 1.
        ids (str | None): Column identifying PSUs. Missing means each row is its own PSU.
        strata (str | None): Column identifying strata. Missing means a single stratum.
    """

    data: pd.DataFrame
    weights: str | None = None
    ids: str | None = None
    strata: str | None = None
    _weight_values: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.data, pd.DataFrame):
            raise ConfigurationError("must be a pandas DataFrame", argument="data")
        for arg in ("weights", "ids", "strata"):
            col = getattr(self, arg)
            if col is not None and col not in self.data.columns:
                raise ConfigurationError(f"column '{col}' not found in data", argument=arg)

        if self.weights is None:
            w = np.ones(len(self.data), dtype=float)
        else:
            w = pd.to_numeric(self.data[self.weights], errors="coerce").to_numpy(dtype=float)
            if np.isnan(w).any() or (w < 0).any():
                raise ConfigurationError("weights must be non-missing and non-negative", argument="weights")
        self._weight_values = w

        for arg in ("ids", "strata"):
            col = getattr(self, arg)
            if col is not None and self.data[col].isna().any():
                raise ConfigurationError(f"column '{col}' contains missing values", argument=arg)

    @property
    def variables(self) -> pd.DataFrame:
        return self.data

    @property
    def weight_values(self) -> np.ndarray:
        return self._weight_values

    @property
    def psu(self) -> np.ndarray:
        if self.ids is None:
            return np.arange(len(self.data))
        return pd.factorize(self.data[self.ids])[0]

    @property
    def stratum(self) -> np.ndarray:
        if self.strata is None:
            return np.zeros(len(self.data), dtype=int)
        return pd.factorize(self.data[self.strata])[0]

    @property
    def degf(self) -> int:
        """Design degrees of freedom: number of PSUs minus number of strata."""
        pairs = pd.DataFrame({"h": self.stratum, "psu": self.psu}).drop_duplicates()
        return int(len(pairs) - pairs["h"].nunique())

    def __len__(self) -> int:
        return len(self.data)

    def subset(self, mask) -> "SurveyDesign":
        """
        Restrict estimation to a domain.

        Rows where `mask` is False keep their place in the design with weight 0.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self.data),):
            raise ValueError("mask must have one entry per row of the design")
        new = SurveyDesign.__new__(SurveyDesign)
        new.data = self.data
        new.weights = self.weights
        new.ids = self.ids
        new.strata = self.strata
        new._weight_values = np.where(mask, self._weight_values, 0.0)
        return new

    def total_variance(self, scores) -> np.ndarray:
        """
        Linearisation variance of the totals of `scores`.

        Parameters:
            scores (array-like): n x k matrix of weighted influence values (one row per observation).

        Returns:
            np.ndarray: k x k covariance matrix. PSU totals are centred within each stratum and scaled by n_h / (n_h - 1). Strata with a single PSU contribute zero.
        """
        scores = np.asarray(scores, dtype=float)
        if scores.ndim == 1:
            scores = scores[:, None]
        k = scores.shape[1]

        frame = pd.DataFrame(scores)
        frame["_h"] = self.stratum
        frame["_psu"] = self.psu
        psu_totals = frame.groupby(["_h", "_psu"], sort=False).sum()

        variance = np.zeros((k, k))
        lonely = 0
        for _, z in psu_totals.groupby(level="_h", sort=False):
            n_h = len(z)
            if n_h < 2:
                lonely += 1
                continue
            centred = z.to_numpy() - z.to_numpy().mean(axis=0)
            variance += n_h / (n_h - 1) * centred.T @ centred

        if lonely:
            logger.debug(f"{lonely} stratum/strata with a single PSU contribute no variance")
        return variance
