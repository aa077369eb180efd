"""
ADA Propensity Model

Logistic regression of the observed S1 on X among treated subjects. It is
fitted once per trial and shared by the weighting and multiple-imputation
estimators.
"""

from typing import Optional
import logging
import warnings
import numpy as np
import pandas as pd
from scipy.special import expit
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression

from ..core.exceptions import PropensityModelError
from ..core.simulation import treated_arm

logger = logging.getLogger(__name__)


class PropensityModel:
    """
    P(S1 = 1 | X) estimated on the treated arm

    Attributes (after fit):
        coefficients: Array [intercept, slope]
        covariance: 2x2 inverse observed Fisher information
        n_treated: Treated subjects used in the fit
        n_ada: Treated subjects with S1 = 1
    """

    def __init__(self, max_iter: int = 1000, tol: float = 1e-10):
        self.max_iter = max_iter
        self.tol = tol
        self.coefficients: Optional[np.ndarray] = None
        self.covariance: Optional[np.ndarray] = None
        self.n_treated = 0
        self.n_ada = 0

    @property
    def is_fitted(self) -> bool:
        return self.coefficients is not None

    def fit(self, trial: pd.DataFrame) -> "PropensityModel":
        treated = treated_arm(trial)
        x = treated["x"].to_numpy(dtype=float)
        s1 = treated["s1"].to_numpy(dtype=float, na_value=np.nan)

        if len(s1) == 0:
            raise PropensityModelError("No treated subjects to fit the ADA model")
        if np.isnan(s1).any():
            raise PropensityModelError("Treated subjects must all have an observed S1")
        if s1.min() == s1.max():
            raise PropensityModelError(
                f"All {len(s1)} treated subjects have S1 = {int(s1[0])}; "
                f"the ADA model is not identifiable"
            )
        if x.min() == x.max():
            raise PropensityModelError("Covariate X is constant on the treated arm")

        # With one covariate the MLE is infinite iff the S1 groups do not overlap in X
        if x[s1 == 0].max() <= x[s1 == 1].min() or x[s1 == 1].max() <= x[s1 == 0].min():
            raise PropensityModelError(
                "X separates S1 on the treated arm; the ADA model has no finite estimate"
            )

        # Unpenalised maximum likelihood (C=inf)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            try:
                model = LogisticRegression(
                    C=np.inf,
                    solver='lbfgs',
                    max_iter=self.max_iter,
                    tol=self.tol,
                )
                model.fit(x.reshape(-1, 1), s1.astype(int))
            except ValueError as e:
                raise PropensityModelError(f"ADA model fit failed: {e}") from e

        convergence_warnings = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
        for w in caught:
            if not issubclass(w.category, ConvergenceWarning):
                warnings.warn(w.message, w.category, stacklevel=2)
        if convergence_warnings:
            raise PropensityModelError(
                f"ADA model did not converge: {convergence_warnings[0].message}"
            )

        coefficients = np.array([model.intercept_[0], model.coef_[0, 0]])
        if not np.all(np.isfinite(coefficients)):
            raise PropensityModelError("ADA model returned non-finite coefficients")

        design = np.column_stack([np.ones_like(x), x])
        p = expit(design @ coefficients)
        information = design.T @ (design * (p * (1.0 - p))[:, None])
        try:
            covariance = np.linalg.inv(information)
        except np.linalg.LinAlgError as e:
            raise PropensityModelError(f"Singular information matrix: {e}") from e

        self.coefficients = coefficients
        self.covariance = covariance

        self.n_treated = len(s1)
        self.n_ada = int(s1.sum())

        se = np.sqrt(np.diag(self.covariance))
        logger.info(
            f"ADA model on {self.n_treated} treated ({self.n_ada} with S1=1): "
            f"intercept {self.coefficients[0]:.4f} (se {se[0]:.4f}), "
            f"slope {self.coefficients[1]:.4f} (se {se[1]:.4f})"
        )
        return self

    def _check_fitted(self):
        if not self.is_fitted:
            raise PropensityModelError("PropensityModel.fit() must be called first")

    def predict(self, x) -> np.ndarray:
        """Fitted P(S1 = 1 | X = x)"""
        self._check_fitted()
        return self.predict_with(self.coefficients, x)

    @staticmethod
    def predict_with(coefficients: np.ndarray, x) -> np.ndarray:
        """P(S1 = 1 | X = x) for an arbitrary coefficient vector"""
        x = np.asarray(x, dtype=float)
        return expit(coefficients[0] + coefficients[1] * x)

    def sample_coefficients(self, rng: np.random.Generator) -> np.ndarray:
        """Draw from the asymptotic normal sampling distribution of the coefficients"""
        self._check_fitted()
        return rng.multivariate_normal(self.coefficients, self.covariance)
