"""
Sensitivity Analysis Engine

Principal ignorability cannot be checked from the data: nothing observed
tells us how the (unobservable) control-arm S1 relates to the control
outcome. The engine imputes control S1 under many allocations, from
"unrelated to outcome" to "concentrated among the longest or shortest
times", and recomputes the stratum-specific treatment effect each time.

Per draw:
1. Control prevalence p ~ Beta(successes + a, failures + a) from the
   treated arm (a = 1/3 by default)
2. Normalized ranks r = rank(time) / (n_c + 1) among controls
3. Direction (favor long or short times) and exponent e ~ U[0, max_exponent]
4. round(p * n_c) controls drawn without replacement with probability
   proportional to r**e (or (1 - r)**e); they get S1 = 1
5. Assumption axis: log-HR of S1 on the control outcome
6. Treatment log-HR within S1 = 1 and S1 = 0
"""

from typing import List, Dict, Optional, Any, Tuple
from dataclasses import dataclass, field, asdict
import logging
import numpy as np
import pandas as pd
from scipy import stats

from ..core.config import AnalysisConfig
from ..core.coxph import fit_coxph
from ..core.exceptions import CoxFitError
from ..core.simulation import complete_ada, control_arm, treated_arm
from ..estimation.estimators import STRATA, check_failures, fit_strata, unconditional_estimate

logger = logging.getLogger(__name__)

FAVOR_LONG = "long"
FAVOR_SHORT = "short"


@dataclass
class SensitivityConfig:
    """Configuration for the sensitivity sweep"""
    n_draws: int = 500
    max_exponent: float = 5.0
    prevalence_prior: float = 1.0 / 3.0
    max_failure_fraction: float = 0.1

    def __post_init__(self):
        if self.n_draws < 1:
            raise ValueError(f"n_draws must be positive, got {self.n_draws}")
        if self.max_exponent < 0:
            raise ValueError(f"max_exponent must be non-negative, got {self.max_exponent}")
        if self.prevalence_prior <= 0:
            raise ValueError(f"prevalence_prior must be positive, got {self.prevalence_prior}")
        if not 0 <= self.max_failure_fraction <= 1:
            raise ValueError("max_failure_fraction must be in [0, 1]")

    @classmethod
    def from_analysis(cls, analysis: AnalysisConfig) -> "SensitivityConfig":
        return cls(
            n_draws=analysis.n_sensitivity_draws,
            max_exponent=analysis.max_exponent,
            prevalence_prior=analysis.prevalence_prior,
            max_failure_fraction=analysis.max_failure_fraction,
        )


@dataclass
class SensitivityDraw:
    """Allocation and outcome of a single draw"""
    draw: int
    prevalence: float
    direction: str
    exponent: float
    n_selected: int
    assumption_log_hr: float = np.nan
    log_hr_s1: float = np.nan
    log_hr_s0: float = np.nan
    status: str = "ok"
    error: Optional[str] = None


@dataclass
class SensitivityResults:
    """Per-draw triples and the reference lines of the scatter plot"""
    draws: pd.DataFrame
    unconditional_log_hr: float
    n_control: int
    observed_ada: Tuple[int, int]  # (successes, failures) on the treated arm
    config: SensitivityConfig = field(default_factory=SensitivityConfig)

    @property
    def successful(self) -> pd.DataFrame:
        return self.draws[self.draws["status"] == "ok"]

    @property
    def n_failed(self) -> int:
        return int((self.draws["status"] != "ok").sum())

    def scatter_points(self, stratum: int = 1) -> pd.DataFrame:
        """(assumption axis, treatment log-HR) coordinates for one stratum"""
        column = "log_hr_s1" if stratum == 1 else "log_hr_s0"
        points = self.successful[["assumption_log_hr", column]]
        return points.rename(columns={column: "treatment_log_hr"}).reset_index(drop=True)

    def reference_lines(self) -> Dict[str, float]:
        return {"no_effect": 0.0, "unconditional": self.unconditional_log_hr}

    def summary(self) -> Dict[str, Any]:
        ok = self.successful
        summary = {
            "n_draws": len(self.draws),
            "n_failed": self.n_failed,
            "unconditional_log_hr": self.unconditional_log_hr,
        }
        for stratum, column in ((1, "log_hr_s1"), (0, "log_hr_s0")):
            values = ok[column]
            summary[f"stratum_{stratum}"] = {
                "median": float(values.median()) if len(values) else np.nan,
                "q025": float(values.quantile(0.025)) if len(values) else np.nan,
                "q975": float(values.quantile(0.975)) if len(values) else np.nan,
                "share_below_zero": float((values < 0).mean()) if len(values) else np.nan,
                "correlation_with_assumption": self._correlation(ok["assumption_log_hr"], values),
            }
        return summary

    @staticmethod
    def _correlation(x: pd.Series, y: pd.Series) -> float:
        if len(x) < 3 or x.nunique() < 2 or y.nunique() < 2:
            return np.nan
        return float(stats.spearmanr(x, y)[0])


def normalized_ranks(times: np.ndarray) -> np.ndarray:
    """rank / (n + 1), strictly inside (0, 1); ties get their average rank"""
    times = np.asarray(times, dtype=float)
    return stats.rankdata(times) / (len(times) + 1.0)


def selection_weights(ranks: np.ndarray, exponent: float, favor_long: bool = True) -> np.ndarray:
    """
    Unnormalized selection weights from normalized ranks

    An exponent of 0 gives equal weights (plain random allocation); larger
    exponents concentrate selection at the long (or short) end of follow-up.
    """
    ranks = np.asarray(ranks, dtype=float)
    base = ranks if favor_long else 1.0 - ranks
    if exponent == 0:
        return np.ones_like(base)
    return base ** exponent


def allocate_ada(
    ranks: np.ndarray,
    n_selected: int,
    exponent: float,
    favor_long: bool,
    rng: np.random.Generator
) -> np.ndarray:
    """0/1 S1 allocation with exactly n_selected ones"""
    n = len(ranks)
    allocation = np.zeros(n, dtype=int)
    if n_selected <= 0:
        return allocation
    if n_selected >= n:
        allocation[:] = 1
        return allocation
    weights = selection_weights(ranks, exponent, favor_long)
    chosen = rng.choice(n, size=n_selected, replace=False, p=weights / weights.sum())
    allocation[chosen] = 1
    return allocation


class SensitivityEngine:
    """
    Monte Carlo sweep over control-arm S1 allocations

    Usage:
        engine = SensitivityEngine(SensitivityConfig(n_draws=500))
        results = engine.run(trial, np.random.default_rng(1))
        points = results.scatter_points(stratum=1)
    """

    def __init__(self, config: Optional[SensitivityConfig] = None):
        self.config = config or SensitivityConfig()
        self.results: Optional[SensitivityResults] = None

    def run(self, trial: pd.DataFrame, rng: np.random.Generator) -> SensitivityResults:
        """
        Run the sweep on a trial with S1 masked on the control arm

        Raises:
            ImputationFailureError: Failed share above max_failure_fraction
        """
        treated_s1 = treated_arm(trial)["s1"].to_numpy(dtype=float, na_value=np.nan)
        successes = int(np.nansum(treated_s1))
        failures = int(np.sum(treated_s1 == 0))

        controls = control_arm(trial)
        ranks = normalized_ranks(controls["time"].to_numpy())
        n_control = len(controls)

        unconditional = unconditional_estimate(trial).coef

        logger.info(
            f"Sensitivity analysis: {self.config.n_draws} draws, {n_control} controls, "
            f"treated ADA {successes}/{successes + failures}"
        )

        records: List[Dict[str, Any]] = []
        for draw in range(self.config.n_draws):
            record = self._run_draw(draw, trial, controls, ranks, successes, failures, rng)
            records.append(asdict(record))

        draws = pd.DataFrame(records)
        n_failed = int((draws["status"] != "ok").sum())
        check_failures(
            n_failed, len(draws), self.config.max_failure_fraction, "Sensitivity analysis"
        )

        self.results = SensitivityResults(
            draws=draws,
            unconditional_log_hr=unconditional,
            n_control=n_control,
            observed_ada=(successes, failures),
            config=self.config,
        )
        logger.info(f"Sensitivity analysis complete: {len(draws) - n_failed}/{len(draws)} draws used")
        return self.results

    def _run_draw(
        self,
        draw: int,
        trial: pd.DataFrame,
        controls: pd.DataFrame,
        ranks: np.ndarray,
        successes: int,
        failures: int,
        rng: np.random.Generator
    ) -> SensitivityDraw:
        a = self.config.prevalence_prior
        prevalence = float(rng.beta(successes + a, failures + a))
        favor_long = bool(rng.random() < 0.5)
        exponent = float(rng.uniform(0.0, self.config.max_exponent))
        n_selected = int(np.round(prevalence * len(controls)))

        allocation = allocate_ada(ranks, n_selected, exponent, favor_long, rng)

        record = SensitivityDraw(
            draw=draw,
            prevalence=prevalence,
            direction=FAVOR_LONG if favor_long else FAVOR_SHORT,
            exponent=exponent,
            n_selected=n_selected,
        )

        # Association of the imputed S1 with the control outcome
        imputed_controls = controls[["time", "event"]].assign(s1=allocation)
        try:
            record.assumption_log_hr = fit_coxph(
                imputed_controls, ["s1"], label=f"sensitivity {draw} controls"
            ).coef("s1")
        except CoxFitError as e:
            return self._failed(record, e)

        completed = complete_ada(trial, allocation)
        fits = fit_strata(completed, f"sensitivity {draw}")
        for stratum in STRATA:
            if isinstance(fits[stratum], CoxFitError):
                return self._failed(record, fits[stratum])
        record.log_hr_s1 = fits[1].coef("z")
        record.log_hr_s0 = fits[0].coef("z")

        logger.debug(
            f"Draw {draw}: p={prevalence:.3f}, {record.direction}, e={exponent:.2f}, "
            f"axis={record.assumption_log_hr:.3f}, S1=1 {record.log_hr_s1:.3f}, "
            f"S1=0 {record.log_hr_s0:.3f}"
        )
        return record

    @staticmethod
    def _failed(record: SensitivityDraw, error: CoxFitError) -> SensitivityDraw:
        logger.warning(f"Sensitivity draw {record.draw} skipped: {error}")
        record.status = error.reason
        record.error = str(error)
        return record
