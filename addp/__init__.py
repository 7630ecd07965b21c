"""
addp: add hypothesis-test p-values to summary, cross, survey and survival tables.
"""

from addp.add_p import add_p
from addp.config import ConfigManager, theme_journal
from addp.design import SurveyDesign
from addp.exceptions import AddPError, ConfigurationError, TestContractError, TestExecutionError
from addp.formatting import style_pvalue
from addp.inline import inline_pvalue
from addp.selectors import all_categorical, all_continuous, all_dichotomous, everything, vars
from addp.summary import cross_table, fit_survival, summary_table, survey_summary_table, survival_table
from addp.tables import CrossTable, SummaryTable, SurveySummaryTable, SurvivalTable, TestResult

__version__ = "0.1.0"
