"""
Proportional-Hazards Fitting Primitive

Single entry point, fit_coxph, used by every estimator, the population
benchmark and the sensitivity engine. Wraps lifelines.CoxPHFitter and turns
every kind of failed fit into a CoxFitError instead of returning garbage.
"""

from typing import List, Optional, Tuple
from dataclasses import dataclass
import logging
import warnings
import numpy as np
import pandas as pd
from scipy import stats
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning

from .exceptions import CoxFitError, EmptyStratumError

logger = logging.getLogger(__name__)


@dataclass
class CoxFit:
    """Coefficients and covariance of one proportional-hazards fit"""
    params: pd.Series
    variance_matrix: pd.DataFrame
    log_likelihood: float
    n: int
    n_events: int
    robust: bool = False
    converged: bool = True
    label: Optional[str] = None

    @property
    def standard_errors(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.variance_matrix.values)), index=self.params.index)

    def coef(self, name: str) -> float:
        return float(self.params[name])

    def variance(self, name: str) -> float:
        return float(self.variance_matrix.loc[name, name])

    def se(self, name: str) -> float:
        return float(np.sqrt(self.variance(name)))

    def hazard_ratio(self, name: str) -> float:
        return float(np.exp(self.coef(name)))

    def confidence_interval(self, name: str, z_value: float = 1.96) -> Tuple[float, float]:
        """Hazard-ratio scale interval exp(coef -/+ z * se)"""
        coef, se = self.coef(name), self.se(name)
        return float(np.exp(coef - z_value * se)), float(np.exp(coef + z_value * se))

    def p_value(self, name: str) -> float:
        """Two-sided Wald test of coef = 0"""
        return wald_p_value(self.coef(name), self.se(name))


def wald_p_value(coef: float, se: float) -> float:
    return float(2.0 * stats.norm.sf(abs(coef / se)))


def fit_coxph(
    frame: pd.DataFrame,
    covariates: List[str],
    duration_col: str = "time",
    event_col: str = "event",
    weights_col: Optional[str] = None,
    robust: bool = False,
    label: Optional[str] = None
) -> CoxFit:
    """
    Fit a Cox model and return its coefficients and covariance

    Args:
        frame: Data containing durations, events, covariates and weights
        covariates: Columns entering the linear predictor
        duration_col: Observed time column
        event_col: Event indicator column (1 event, 0 censored)
        weights_col: Optional case-weight column
        robust: Use the sandwich variance (recommended with non-integer weights)
        label: Description of the subset, carried into errors and logs

    Returns:
        CoxFit

    Raises:
        EmptyStratumError: No rows or no events in frame
        CoxFitError: Constant covariate, non-convergence, convergence warning,
            or non-finite estimates
    """
    columns = [duration_col, event_col] + list(covariates)
    if weights_col is not None:
        columns.append(weights_col)
    data = frame[columns].astype(float)

    if len(data) == 0:
        raise EmptyStratumError("Cannot fit a Cox model on an empty subset", label=label)

    n_events = int(data[event_col].sum())
    if n_events == 0:
        raise EmptyStratumError(f"No events among {len(data)} subjects", label=label)

    for name in covariates:
        if data[name].nunique() < 2:
            raise CoxFitError(
                f"Covariate '{name}' is constant in this subset",
                reason="degenerate_covariate",
                label=label
            )

    cph = CoxPHFitter()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            cph.fit(
                data,
                duration_col=duration_col,
                event_col=event_col,
                weights_col=weights_col,
                robust=robust
            )
        except (ConvergenceError, np.linalg.LinAlgError) as e:
            raise CoxFitError(f"Cox model did not converge: {e}", label=label) from e

    convergence_warnings = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
    for w in caught:
        if not issubclass(w.category, ConvergenceWarning):
            warnings.warn(w.message, w.category, stacklevel=2)
    if convergence_warnings:
        raise CoxFitError(
            f"Cox model reported a convergence problem: {convergence_warnings[0].message}",
            label=label
        )

    params = cph.params_.copy()
    variance_matrix = cph.variance_matrix_.copy()
    if not (np.all(np.isfinite(params.values)) and np.all(np.isfinite(variance_matrix.values))):
        raise CoxFitError("Non-finite coefficients or variances", reason="non_finite", label=label)

    fit = CoxFit(
        params=params,
        variance_matrix=variance_matrix,
        log_likelihood=float(cph.log_likelihood_),
        n=len(data),
        n_events=n_events,
        robust=robust,
        label=label
    )
    logger.debug(f"Cox fit {label or ''}: {dict(params.round(4))}, n={fit.n}, events={n_events}")
    return fit
