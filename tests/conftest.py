"""
🧪 Pytest Configuration for addp Tests

Shared fixtures:
- ``trial``: a seeded clinical-trial-like data set (treatment arms, continuous
  and categorical characteristics, survival outcome, cluster/survey columns)
- ``config``: a default ConfigManager with console logging switched off
"""

import numpy as np
import pandas as pd
import pytest

from addp.config import ConfigManager
from addp.logger import LoggerFactory


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


@pytest.fixture(scope="session", autouse=True)
def quiet_logging():
    """Keep test output clean: the package logger gets no console handler."""
    cfg = ConfigManager(load_env=False)
    cfg.update("logging.console_enabled", False)
    LoggerFactory.configure(cfg, force=True)
    yield


@pytest.fixture
def config():
    return ConfigManager(load_env=False)


@pytest.fixture
def trial():
    """
    200 patients randomised 1:1 to "Drug A" / "Drug B".

    Columns: trt, age (10 missing), marker, stage (T1-T4), grade (I-III),
    response (0/1, 7 missing), ttdeath/death (censored at 24 months),
    site (20 clusters), weight/psu/stratum (survey design).
    """
    rng = np.random.default_rng(42)
    n = 200
    trt = np.where(np.arange(n) % 2 == 0, "Drug A", "Drug B")

    age = rng.normal(47, 14, n).round()
    age[rng.choice(n, 10, replace=False)] = np.nan

    response = (rng.random(n) < np.where(trt == "Drug A", 0.3, 0.45)).astype(float)
    response[rng.choice(n, 7, replace=False)] = np.nan

    raw_time = rng.exponential(np.where(trt == "Drug A", 20.0, 30.0))
    psu = np.arange(n) // 5

    return pd.DataFrame(
        {
            "trt": trt,
            "age": age,
            "marker": rng.lognormal(0, 0.8, n).round(3),
            "stage": rng.choice(["T1", "T2", "T3", "T4"], n),
            "grade": rng.choice(["I", "II", "III"], n),
            "response": response,
            "ttdeath": np.minimum(raw_time, 24).round(2) + 0.01,
            "death": (raw_time < 24).astype(int),
            "site": [f"site_{i:02d}" for i in rng.integers(1, 21, n)],
            "weight": rng.uniform(0.5, 3.0, n).round(3),
            "psu": psu,
            "stratum": np.where(psu < 20, "north", "south"),
        }
    )


@pytest.fixture
def counts_frame():
    """Expand a contingency table of counts (rows = x levels, cols = g levels) into records."""

    def _build(counts, var="x", by="g") -> pd.DataFrame:
        records = []
        for i, row in enumerate(counts):
            for j, n in enumerate(row):
                records.extend([{var: f"x{i}", by: f"g{j}"}] * n)
        return pd.DataFrame.from_records(records, columns=[var, by])

    return _build
