"""
Ordinary-least-squares fitting for candidate popularity models.

This module defines the Formula value type the selectors manipulate and the
FittedModel wrapper around a statsmodels OLS fit. Every fit includes an
intercept, stored under "const" in the coefficient vector.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Any, Iterable, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm

from src.exceptions import FitError, SchemaMismatchError

# Module-level logger
logger = logging.getLogger(__name__)

INTERCEPT = "const"


@dataclass(frozen=True)
class Formula:
    """Response plus an ordered tuple of predictor names. Order only affects display."""

    response: str
    predictors: Tuple[str, ...] = ()

    def with_predictors(self, predictors: Iterable[str]) -> "Formula":
        return Formula(self.response, tuple(predictors))

    def __str__(self) -> str:
        rhs = " + ".join(self.predictors) if self.predictors else "1"
        return f"{self.response} ~ {rhs}"


def validate_modeling_config(config: Dict[str, Any]) -> None:
    """Validate the presence of essential keys in the modeling configuration."""
    logger.info("Validating modeling configuration.")
    required_top_keys = ["data_split", "selection", "features"]
    for key in required_top_keys:
        if key not in config:
            raise KeyError(f"Missing required top-level config key: '{key}'")

    split_cfg = config["data_split"]
    if "seed" not in split_cfg:
        raise KeyError("Missing 'seed' in 'data_split' config.")
    criterion = config["selection"].get("criterion", "aic")
    if criterion not in ("aic", "bic"):
        raise KeyError(f"Unsupported 'selection.criterion': '{criterion}'. Expected 'aic' or 'bic'.")
    if not config["selection"].get("policies"):
        raise KeyError("Missing 'policies' in 'selection' config.")
    nvmax = config["selection"].get("nvmax")
    if nvmax is not None and (not isinstance(nvmax, int) or isinstance(nvmax, bool) or nvmax < 1):
        raise KeyError(f"Unsupported 'selection.nvmax': {nvmax!r}. Expected a positive integer or null.")
    logger.info("Modeling configuration validation successful.")


def design_matrix(df: pd.DataFrame, predictors: Iterable[str]) -> pd.DataFrame:
    """Float predictor columns with a leading constant column."""
    predictors = list(predictors)
    missing = [p for p in predictors if p not in df.columns]
    if missing:
        raise SchemaMismatchError(f"Columns required by the model are missing: {missing}")
    X = df.loc[:, predictors].astype(float)
    X.insert(0, INTERCEPT, 1.0)
    return X


@dataclass(frozen=True, eq=False)
class FittedModel:
    formula: Formula
    results: Any  # statsmodels RegressionResultsWrapper
    coefs: pd.Series

    @property
    def nobs(self) -> int:
        return int(self.results.nobs)

    @property
    def df_resid(self) -> int:
        return int(round(self.results.df_resid))

    @property
    def rss(self) -> float:
        return float(self.results.ssr)

    @property
    def rse(self) -> float:
        if self.df_resid == 0:
            return np.nan
        return float(np.sqrt(self.rss / self.df_resid))

    @property
    def r2(self) -> float:
        return float(self.results.rsquared)

    @property
    def adj_r2(self) -> float:
        if self.df_resid == 0:
            return np.nan
        return 1.0 - (1.0 - self.r2) * (self.nobs - 1) / self.df_resid

    @property
    def aic(self) -> float:
        return float(self.results.aic)

    @property
    def bic(self) -> float:
        return float(self.results.bic)

    def predict(self, df: pd.DataFrame) -> pd.Series:
        """Linear predictor from the stored coefficients. Raises SchemaMismatchError on missing columns."""
        X = design_matrix(df, self.formula.predictors)
        return X.dot(self.coefs.loc[X.columns]).rename(f"predicted_{self.formula.response}")

    def summary_dict(self) -> Dict[str, Any]:
        return {
            "formula": str(self.formula),
            "coefficients": {k: float(v) for k, v in self.coefs.items()},
            "rse": self.rse,
            "df_resid": self.df_resid,
            "r2": self.r2,
            "adj_r2": self.adj_r2,
            "aic": self.aic,
            "bic": self.bic,
            "nobs": self.nobs,
        }


def fit_ols(formula: Formula, train_df: pd.DataFrame) -> FittedModel:
    """
    Fit `formula` by OLS with an intercept on `train_df`.

    Raises FitError when a column is missing, there are fewer rows than
    coefficients, a predictor is constant, or the design matrix is rank-deficient.
    """
    required = [formula.response] + list(formula.predictors)
    missing = [col for col in required if col not in train_df.columns]
    if missing:
        raise FitError(f"Cannot fit '{formula}': columns missing from training data: {missing}")

    if len(set(formula.predictors)) != len(formula.predictors):
        raise FitError(f"Cannot fit '{formula}': duplicated predictors.")

    n = len(train_df)
    p = len(formula.predictors)
    if n < p + 1:
        raise FitError(f"Cannot fit '{formula}': {n} rows for {p + 1} coefficients.")

    X = design_matrix(train_df, formula.predictors)
    y = train_df[formula.response].astype(float)
    if X.isna().any().any() or y.isna().any():
        raise FitError(f"Cannot fit '{formula}': training data contains missing values.")

    constant = [col for col in formula.predictors if X[col].nunique() <= 1]
    if constant:
        raise FitError(f"Cannot fit '{formula}': zero-variance predictors {constant}.")

    rank = np.linalg.matrix_rank(X.to_numpy())
    if rank < X.shape[1]:
        raise FitError(f"Cannot fit '{formula}': design matrix is rank-deficient (rank {rank} < {X.shape[1]}).")

    results = sm.OLS(y, X).fit()
    fitted = FittedModel(formula=formula, results=results, coefs=results.params.copy())
    logger.debug(f"Fitted '{formula}' on {n} rows: adj_r2={fitted.adj_r2:.4f}, aic={fitted.aic:.2f}")
    return fitted
