"""
🧪 Unit Tests for Table Structures and Builders
File: tests/unit/test_tables.py

Tests addp/tables.py and addp/summary.py:
- Variable classification
- Summary, cross and survival table construction
- Header helpers and copy semantics

Run with: pytest tests/unit/test_tables.py -v
"""

import numpy as np
import pandas as pd
import pytest

from addp.exceptions import ConfigurationError
from addp.summary import (
    OVERALL,
    classify_variable,
    cross_table,
    fit_survival,
    summary_table,
    survival_table,
)
from addp.tables import (
    CallRecord,
    modify_footnote,
    modify_header,
    new_table_header,
    table_header_fill_missing,
    table_header_fmt_fun,
)

pytestmark = pytest.mark.unit


class TestClassifyVariable:
    def test_continuous(self):
        assert classify_variable(pd.Series(np.linspace(0, 1, 50))) == "continuous"

    def test_dichotomous(self):
        assert classify_variable(pd.Series([0, 1, 1, np.nan])) == "dichotomous"
        assert classify_variable(pd.Series(["Yes", "No", "No"])) == "dichotomous"

    def test_categorical(self):
        assert classify_variable(pd.Series(["a", "b", "c"])) == "categorical"
        assert classify_variable(pd.Series([1, 2, 3, 4, 1, 2])) == "categorical"

    def test_max_cat_unique(self):
        series = pd.Series(range(8))
        assert classify_variable(series, max_cat_unique=5) == "continuous"


class TestSummaryTable:
    def test_structure(self, trial):
        tbl = summary_table(trial, by="trt", include=["age", "stage", "response"])

        assert tbl.by == "trt"
        assert tbl.variables == ["age", "stage", "response"]
        assert tbl.summary_types == {"age": "continuous", "stage": "categorical", "response": "dichotomous"}
        assert list(tbl.table_body.columns) == ["variable", "row_type", "label", "stat_1", "stat_2"]

        labels = tbl.table_body.query("row_type == 'label'")
        assert labels["variable"].tolist() == ["age", "stage", "response"]
        assert (tbl.table_body["variable"] == "stage").sum() == 5  # label + 4 levels

    def test_missing_rows(self, trial):
        tbl = summary_table(trial, by="trt", include=["age"])
        missing = tbl.table_body.query("row_type == 'missing'")
        assert len(missing) == 1
        assert int(missing["stat_1"].iloc[0]) + int(missing["stat_2"].iloc[0]) == 10

    def test_header(self, trial):
        tbl = summary_table(trial, by="trt", include=["age"])
        header = tbl.table_header.set_index("column")
        assert header.at["variable", "hide"]
        assert not header.at["stat_1", "hide"]
        assert header.at["stat_1", "label"] == "**Drug A**, N = 100"

    def test_no_by(self, trial):
        tbl = summary_table(trial, include=["age"])
        assert tbl.by is None
        assert "stat_0" in tbl.table_body.columns

    def test_type_override(self, trial):
        tbl = summary_table(trial, by="trt", include=["response"], type={"response": "categorical"})
        assert tbl.summary_types == {"response": "categorical"}

    def test_bad_arguments(self, trial):
        with pytest.raises(ConfigurationError):
            summary_table(trial, by="arm")
        with pytest.raises(ConfigurationError):
            summary_table(trial, by="trt", include=["height"])
        with pytest.raises(ConfigurationError):
            summary_table(trial, by="trt", include=["age"], type={"age": "ordinal"})

    def test_as_data_frame_strips_markdown(self, trial):
        out = summary_table(trial, by="trt", include=["age"]).as_data_frame()
        assert list(out.columns) == ["Characteristic", "Drug A, N = 100", "Drug B, N = 100"]


class TestCrossTable:
    def test_structure(self, trial):
        tbl = cross_table(trial, row="stage", col="trt")
        assert tbl.by == "trt"
        assert tbl.variables == ["stage"]
        assert list(tbl.table_body.columns) == ["variable", "row_type", "label", "stat_1", "stat_2", "stat_0"]
        totals = tbl.table_body.query("row_type == 'level'")["stat_0"].astype(int)
        assert totals.sum() == len(trial)

    def test_missing_recoded(self, trial):
        tbl = cross_table(trial, row="response", col="trt")
        assert tbl.tbl_data["response"].isna().sum() == 0
        assert "Unknown" in tbl.table_body["label"].tolist()
        assert trial["response"].isna().sum() == 7


class TestSurvivalTable:
    def test_stratified_and_overall(self, trial):
        fits = [
            fit_survival(trial, "ttdeath", "death", strata="trt"),
            fit_survival(trial, "ttdeath", "death"),
        ]
        tbl = survival_table(fits, times=[12, 24])

        assert tbl.variables == ["trt", OVERALL]
        assert tbl.meta_data["stratified"].tolist() == [True, False]
        assert fits[0].formula == "Surv(ttdeath, death) ~ trt"
        assert fits[1].formula == "Surv(ttdeath, death) ~ 1"
        assert list(tbl.table_body.columns) == ["variable", "row_type", "label", "stat_1", "stat_2"]

    def test_bad_column(self, trial):
        with pytest.raises(ConfigurationError):
            fit_survival(trial, "time", "death")


class TestHeaderHelpers:
    @pytest.fixture
    def header(self):
        return new_table_header(["variable", "row_type", "label", "stat_1"], labels={"label": "**Characteristic**"})

    def test_new_header(self, header):
        assert header["hide"].tolist() == [True, True, False, False]
        assert header["label"].tolist() == ["variable", "row_type", "**Characteristic**", "stat_1"]

    def test_fill_missing(self, header):
        body = pd.DataFrame(columns=["variable", "row_type", "label", "stat_1", "p.value"])
        filled = table_header_fill_missing(header, body)
        assert filled["column"].tolist() == list(body.columns)
        new_record = filled.set_index("column").loc["p.value"]
        assert new_record["hide"]
        assert new_record["label"] == "p.value"
        kept = ["column", "label", "hide"]
        assert filled.iloc[:4][kept].values.tolist() == header[kept].values.tolist()

    def test_setters(self, header):
        updated = modify_header(header, {"row_type": "Row"})
        updated = table_header_fmt_fun(updated, {"stat_1": str})
        updated = modify_footnote(updated, {"stat_1": "note"})
        record = updated.set_index("column")
        assert record.at["row_type", "label"] == "Row"
        assert not record.at["row_type", "hide"]
        assert record.at["stat_1", "fmt_fun"] is str
        assert record.at["stat_1", "footnote"] == "note"
        assert header.set_index("column").at["row_type", "hide"]

    def test_unknown_column(self, header):
        with pytest.raises(KeyError):
            modify_header(header, {"p.value": "**p-value**"})


class TestCopySemantics:
    def test_copy_is_independent(self, trial):
        tbl = summary_table(trial, by="trt", include=["age"])
        clone = tbl.copy()
        clone.table_body.loc[:, "label"] = "changed"
        clone.call_list.append(CallRecord("other"))
        assert tbl.table_body["label"].iloc[0] == "age"
        assert len(tbl.call_list) == 1
        assert clone.data is tbl.data

    def test_call_record_text(self):
        assert str(CallRecord("add_p", {"test": "t.test"})) == "add_p(test='t.test')"
