"""
Principal Stratum Estimators

Four estimators of the treatment log hazard ratio within the principal
stratum defined by the ADA indicator under treatment:

1. Naive: treated with observed S1 = s against all controls
2. Regression adjustment: as naive, with X added to the Cox model
3. Weighting: controls weighted by their predicted stratum probability
4. Multiple imputation: control S1 imputed from the posterior of the ADA
   model, Cox fits combined across draws

Estimators 2-4 rely on principal ignorability: given X, S1 is independent
of the potential outcome under control.
"""

from typing import List, Dict, Tuple, Any, Union
from dataclasses import dataclass, field
import logging
import numpy as np
import pandas as pd

from ..core.coxph import CoxFit, fit_coxph, wald_p_value
from ..core.exceptions import CoxFitError, ImputationFailureError
from ..core.simulation import ada_equals, complete_ada, control_arm, treated_arm
from .propensity import PropensityModel

logger = logging.getLogger(__name__)

STRATA = (1, 0)


# ============================================================================
# RESULT CONTAINERS
# ============================================================================

@dataclass
class StratumEstimate:
    """Treatment log-HR estimate for one principal stratum"""
    method: str
    stratum: int
    coef: float
    se: float
    z_value: float = 1.96
    n: int = 0
    n_events: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def hazard_ratio(self) -> float:
        return float(np.exp(self.coef))

    @property
    def ci_lower(self) -> float:
        return float(np.exp(self.coef - self.z_value * self.se))

    @property
    def ci_upper(self) -> float:
        return float(np.exp(self.coef + self.z_value * self.se))

    @property
    def p_value(self) -> float:
        return wald_p_value(self.coef, self.se)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "stratum": self.stratum,
            "coef": self.coef,
            "se": self.se,
            "hazard_ratio": self.hazard_ratio,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "p_value": self.p_value,
            "n": self.n,
            "n_events": self.n_events,
        }

    @classmethod
    def from_fit(cls, method: str, stratum: int, fit: CoxFit, z_value: float = 1.96,
                 covariate: str = "z", **details) -> "StratumEstimate":
        return cls(
            method=method,
            stratum=stratum,
            coef=fit.coef(covariate),
            se=fit.se(covariate),
            z_value=z_value,
            n=fit.n,
            n_events=fit.n_events,
            details=details,
        )


@dataclass
class CombinedEstimate:
    """Pooled multiple-imputation estimate and its variance components"""
    estimate: float
    within_variance: float  # mean of per-draw variances
    between_variance: float  # sample variance of per-draw estimates
    total_variance: float
    n_draws: int

    @property
    def se(self) -> float:
        return float(np.sqrt(self.total_variance))


@dataclass
class MultipleImputationResult:
    """Pooled estimates for both strata plus the per-draw record"""
    estimates: Dict[int, StratumEstimate]
    combined: Dict[int, CombinedEstimate]
    draws: pd.DataFrame
    n_imputations: int

    def n_failed(self, stratum: int) -> int:
        rows = self.draws[self.draws["stratum"] == stratum]
        return int((rows["status"] != "ok").sum())


# ============================================================================
# ESTIMATORS
# ============================================================================

def _comparison_set(trial: pd.DataFrame, stratum: int) -> pd.DataFrame:
    """Treated subjects with observed S1 = stratum plus every control"""
    keep = (trial["z"] == 0).to_numpy() | (
        (trial["z"] == 1).to_numpy() & ada_equals(trial["s1"], stratum)
    )
    return trial.loc[keep]


def naive_estimate(trial: pd.DataFrame, stratum: int = 1, z_value: float = 1.96) -> StratumEstimate:
    """
    Cox model of time on treatment, treated S1 = stratum against all controls

    Ignores that the controls are not restricted to the same stratum, so it
    is biased whenever X drives both S1 and the outcome.
    """
    subset = _comparison_set(trial, stratum)
    fit = fit_coxph(subset, ["z"], label=f"naive S1={stratum}")
    return StratumEstimate.from_fit("naive", stratum, fit, z_value)


def regression_adjusted_estimate(
    trial: pd.DataFrame,
    stratum: int = 1,
    z_value: float = 1.96
) -> StratumEstimate:
    """Naive comparison set with X entered linearly in the Cox model"""
    subset = _comparison_set(trial, stratum)
    fit = fit_coxph(subset, ["z", "x"], label=f"regression S1={stratum}")
    return StratumEstimate.from_fit(
        "regression_adjusted", stratum, fit, z_value, covariate_coef=fit.coef("x")
    )


def weighting_pseudo_population(
    trial: pd.DataFrame,
    propensity: PropensityModel,
    stratum: int = 1
) -> pd.DataFrame:
    """
    Treated subjects with S1 = stratum (weight 1) plus all controls weighted
    by their predicted probability of belonging to the stratum
    """
    treated = treated_arm(trial, stratum)[["time", "event", "z", "x"]].copy()
    treated["weight"] = 1.0

    controls = control_arm(trial)[["time", "event", "z", "x"]].copy()
    p = propensity.predict(controls["x"].to_numpy())
    controls["weight"] = p if stratum == 1 else 1.0 - p

    return pd.concat([treated, controls], ignore_index=True)


def weighting_estimate(
    trial: pd.DataFrame,
    propensity: PropensityModel,
    stratum: int = 1,
    z_value: float = 1.96
) -> StratumEstimate:
    """
    Weighted Cox model of time on treatment in the pseudo-population

    The propensity score is treated as known; the robust sandwich variance
    accounts for the non-integer weights only.
    """
    pseudo = weighting_pseudo_population(trial, propensity, stratum)
    fit = fit_coxph(
        pseudo, ["z"], weights_col="weight", robust=True, label=f"weighting S1={stratum}"
    )
    control_weight = float(pseudo.loc[pseudo["z"] == 0, "weight"].sum())
    return StratumEstimate.from_fit(
        "weighting", stratum, fit, z_value, effective_controls=control_weight
    )


def combine_imputations(coefs, variances) -> CombinedEstimate:
    """
    Pool per-draw estimates: total variance = mean within-draw variance
    plus the sample variance (ddof=1) of the per-draw estimates
    """
    coefs = np.asarray(coefs, dtype=float)
    variances = np.asarray(variances, dtype=float)
    if coefs.shape != variances.shape:
        raise ValueError("coefs and variances must have the same length")
    if len(coefs) < 2:
        raise ValueError(f"Need at least 2 draws to pool, got {len(coefs)}")

    within = float(np.mean(variances))
    between = float(np.var(coefs, ddof=1))
    return CombinedEstimate(
        estimate=float(np.mean(coefs)),
        within_variance=within,
        between_variance=between,
        total_variance=within + between,
        n_draws=len(coefs),
    )


def impute_control_ada(
    trial: pd.DataFrame,
    coefficients: np.ndarray,
    rng: np.random.Generator
) -> pd.DataFrame:
    """Bernoulli draw of S1 for every control given ADA-model coefficients"""
    x_control = control_arm(trial)["x"].to_numpy(dtype=float)
    p = PropensityModel.predict_with(coefficients, x_control)
    return complete_ada(trial, rng.binomial(1, p))


def fit_strata(completed: pd.DataFrame, label: str) -> Dict[int, Union[CoxFit, CoxFitError]]:
    """
    Cox model of time on treatment within S1 = 1 and S1 = 0 separately

    A stratum whose fit fails maps to the CoxFitError instead of a CoxFit,
    so the caller decides whether to skip or abort.
    """
    fits = {}
    for stratum in STRATA:
        subset = completed.loc[completed["s1"] == stratum]
        try:
            fits[stratum] = fit_coxph(subset, ["z"], label=f"{label} S1={stratum}")
        except CoxFitError as e:
            fits[stratum] = e
    return fits


def check_failures(n_failed: int, n_total: int, max_failure_fraction: float, what: str,
                   min_successes: int = 1):
    """Raise ImputationFailureError when too many draws failed"""
    too_few = n_total - n_failed < min_successes
    if too_few or n_failed > max_failure_fraction * n_total:
        raise ImputationFailureError(
            f"{what}: {n_failed} of {n_total} draws failed "
            f"(tolerance {max_failure_fraction:.0%})",
            n_failed=n_failed,
            n_total=n_total
        )


def multiple_imputation_estimate(
    trial: pd.DataFrame,
    propensity: PropensityModel,
    rng: np.random.Generator,
    n_imputations: int = 200,
    z_value: float = 1.96,
    max_failure_fraction: float = 0.1
) -> MultipleImputationResult:
    """
    Multiple imputation of the control-arm S1

    Each draw samples ADA-model coefficients from their asymptotic normal
    distribution, imputes S1 for every control, and fits the treatment
    effect within both strata. Draws whose fit fails for a stratum are
    logged, recorded and left out of that stratum's pooling.

    Raises:
        ImputationFailureError: Failed share above max_failure_fraction
    """
    if n_imputations < 2:
        raise ValueError("n_imputations must be at least 2")

    logger.info(f"Multiple imputation: {n_imputations} draws")
    records: List[Dict[str, Any]] = []

    for draw in range(n_imputations):
        coefficients = propensity.sample_coefficients(rng)
        completed = impute_control_ada(trial, coefficients, rng)

        for stratum, fit in fit_strata(completed, f"imputation {draw}").items():
            record = {"draw": draw, "stratum": stratum, "coef": np.nan,
                      "variance": np.nan, "status": "ok", "error": None}
            if isinstance(fit, CoxFitError):
                logger.warning(f"Imputation draw {draw} skipped for S1={stratum}: {fit}")
                record["status"] = fit.reason
                record["error"] = str(fit)
            else:
                record["coef"] = fit.coef("z")
                record["variance"] = fit.variance("z")
            records.append(record)

    draws = pd.DataFrame(records)

    estimates = {}
    combined = {}
    for stratum in STRATA:
        rows = draws[draws["stratum"] == stratum]
        ok = rows[rows["status"] == "ok"]
        check_failures(
            len(rows) - len(ok), len(rows), max_failure_fraction,
            f"Multiple imputation S1={stratum}", min_successes=2
        )
        pooled = combine_imputations(ok["coef"], ok["variance"])
        combined[stratum] = pooled
        estimates[stratum] = StratumEstimate(
            method="multiple_imputation",
            stratum=stratum,
            coef=pooled.estimate,
            se=pooled.se,
            z_value=z_value,
            details={
                "within_variance": pooled.within_variance,
                "between_variance": pooled.between_variance,
                "n_draws": pooled.n_draws,
                "n_failed": len(rows) - len(ok),
            },
        )
        logger.info(
            f"Multiple imputation S1={stratum}: log-HR {pooled.estimate:.4f}, "
            f"se {pooled.se:.4f} (within {pooled.within_variance:.5f}, "
            f"between {pooled.between_variance:.5f}), {len(ok)}/{len(rows)} draws"
        )

    return MultipleImputationResult(
        estimates=estimates,
        combined=combined,
        draws=draws,
        n_imputations=n_imputations,
    )


def unconditional_estimate(trial: pd.DataFrame, z_value: float = 1.96) -> StratumEstimate:
    """Unstratified treatment effect on the whole trial (stratum = -1)"""
    fit = fit_coxph(trial, ["z"], label="unconditional")
    return StratumEstimate.from_fit("unconditional", -1, fit, z_value)


def run_estimators(
    trial: pd.DataFrame,
    propensity: PropensityModel,
    rng: np.random.Generator,
    n_imputations: int = 200,
    z_value: float = 1.96,
    max_failure_fraction: float = 0.1,
    strata: Tuple[int, ...] = STRATA
) -> Tuple[List[StratumEstimate], MultipleImputationResult]:
    """
    Run every estimator on one trial

    Returns:
        (list of StratumEstimate for naive, regression and weighting in each
        stratum followed by both multiple-imputation estimates,
        the full MultipleImputationResult)
    """
    estimates = []
    for stratum in strata:
        estimates.append(naive_estimate(trial, stratum, z_value))
        estimates.append(regression_adjusted_estimate(trial, stratum, z_value))
        estimates.append(weighting_estimate(trial, propensity, stratum, z_value))

    mi = multiple_imputation_estimate(
        trial, propensity, rng,
        n_imputations=n_imputations,
        z_value=z_value,
        max_failure_fraction=max_failure_fraction,
    )
    estimates.extend(mi.estimates[stratum] for stratum in strata)
    return estimates, mi
