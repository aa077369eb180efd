"""
Principal Stratum Analysis Pipeline

Runs the whole analysis from one seed:

    population simulation -> benchmark Cox fits
    trial sampling -> ADA model -> estimators -> sensitivity sweep

A single numpy Generator is created from the seed and passed through
every step in that order, so the same configuration always reproduces the
same numbers.
"""

from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
import logging
import numpy as np
import pandas as pd

from .core.config import PipelineConfig
from .core.coxph import CoxFit
from .core.exceptions import InvalidConfigurationError
from .core.simulation import (
    population_benchmark,
    sample_trial,
    simulate_population,
    true_stratum_effects,
)
from .core.survival import kaplan_meier_curves
from .estimation.estimators import (
    MultipleImputationResult,
    StratumEstimate,
    run_estimators,
    unconditional_estimate,
)
from .estimation.propensity import PropensityModel
from .sensitivity.engine import SensitivityConfig, SensitivityEngine, SensitivityResults

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResults:
    """Every numeric output of one pipeline run"""
    config: PipelineConfig
    trial: pd.DataFrame
    propensity: PropensityModel
    estimates: List[StratumEstimate]
    unconditional: StratumEstimate
    multiple_imputation: MultipleImputationResult
    sensitivity: Optional[SensitivityResults]
    survival_curves: Dict[str, pd.DataFrame]
    benchmark: Dict[int, CoxFit] = field(default_factory=dict)
    run_time_seconds: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def estimate(self, method: str, stratum: int = 1) -> StratumEstimate:
        for est in self.estimates:
            if est.method == method and est.stratum == stratum:
                return est
        raise KeyError(f"No estimate for method={method!r}, stratum={stratum}")

    def estimates_table(self) -> pd.DataFrame:
        """One row per (method, stratum): coef, se, HR, CI, p-value"""
        rows = [est.to_dict() for est in self.estimates + [self.unconditional]]
        table = pd.DataFrame(rows)
        if self.benchmark:
            truth = {s: fit.coef("z") for s, fit in self.benchmark.items()}
            table["benchmark_coef"] = table["stratum"].map(truth)
            table["bias"] = table["coef"] - table["benchmark_coef"]
        return table

    def benchmark_table(self) -> pd.DataFrame:
        z_value = self.config.analysis.z_value
        rows = []
        for stratum, fit in self.benchmark.items():
            lower, upper = fit.confidence_interval("z", z_value)
            rows.append({
                "stratum": stratum,
                "coef": fit.coef("z"),
                "se": fit.se("z"),
                "hazard_ratio": fit.hazard_ratio("z"),
                "ci_lower": lower,
                "ci_upper": upper,
                "n": fit.n,
            })
        return pd.DataFrame(rows)

    def summary(self) -> Dict[str, Any]:
        """Generate summary statistics"""
        return {
            "seed": self.config.seed,
            "n_trial": len(self.trial),
            "treated_ada": (self.propensity.n_ada, self.propensity.n_treated),
            "ada_model": {
                "coefficients": self.propensity.coefficients.tolist(),
                "se": np.sqrt(np.diag(self.propensity.covariance)).tolist(),
            },
            "benchmark": {s: fit.coef("z") for s, fit in self.benchmark.items()},
            "estimates": {f"{e.method}[S1={e.stratum}]": e.coef for e in self.estimates},
            "unconditional": self.unconditional.coef,
            "sensitivity": self.sensitivity.summary() if self.sensitivity is not None else None,
            "run_time": f"{self.run_time_seconds:.2f} seconds",
        }

    def generate_report(self) -> str:
        """Plain-text report of the estimates"""
        report = []
        report.append("="*80)
        report.append("PRINCIPAL STRATUM ANALYSIS")
        report.append("="*80)
        report.append(f"\nSeed {self.config.seed}, trial n = {len(self.trial)}, "
                      f"treated with ADA: {self.propensity.n_ada}/{self.propensity.n_treated}")

        report.append("\nGenerative model (conditional log-HR of treatment):")
        for stratum, log_hr in true_stratum_effects(self.config.model).items():
            report.append(f"  S1={stratum}: {log_hr:+.4f} (HR {np.exp(log_hr):.3f})")

        if self.benchmark:
            report.append("\nPopulation benchmark (log-HR of treatment):")
            for stratum, fit in self.benchmark.items():
                report.append(f"  S1={stratum}: {fit.coef('z'):+.4f} (HR {fit.hazard_ratio('z'):.3f})")

        report.append(f"\n{'Method':<22} {'S1':>3} {'log-HR':>9} {'SE':>8} {'HR':>7} {'95% CI':>17} {'p':>8}")
        report.append("-"*80)
        for est in self.estimates + [self.unconditional]:
            stratum = "-" if est.stratum < 0 else str(est.stratum)
            ci = f"{est.ci_lower:.3f}-{est.ci_upper:.3f}"
            report.append(
                f"{est.method:<22} {stratum:>3} {est.coef:>+9.4f} {est.se:>8.4f} "
                f"{est.hazard_ratio:>7.3f} {ci:>17} {est.p_value:>8.4f}"
            )

        if self.sensitivity is not None:
            sens = self.sensitivity.summary()
            report.append(f"\nSensitivity analysis: {sens['n_draws'] - sens['n_failed']}"
                          f"/{sens['n_draws']} draws used")
            for stratum in (1, 0):
                s = sens[f"stratum_{stratum}"]
                report.append(
                    f"  S1={stratum}: median log-HR {s['median']:+.4f} "
                    f"[{s['q025']:+.4f}, {s['q975']:+.4f}], "
                    f"share < 0: {s['share_below_zero']:.2f}"
                )

        report.append(f"\n{'='*80}")
        return "\n".join(report)


class PrincipalStratumAnalysis:
    """
    End-to-end principal stratum analysis

    Usage:
        analysis = PrincipalStratumAnalysis(PipelineConfig(seed=42))
        results = analysis.run()
        print(results.generate_report())
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.results: Optional[AnalysisResults] = None

        for name in ("population", "trial"):
            if getattr(self.config, name).censoring_probability >= 1.0:
                raise InvalidConfigurationError(
                    f"{name} censoring_probability of 1 leaves no events to analyse"
                )
        if self.config.model.n_categories < 2:
            raise InvalidConfigurationError(
                "n_categories must be at least 2: with a constant X the ADA model "
                "and the regression adjustment cannot be fitted"
            )

    def run(self, run_sensitivity: bool = True) -> AnalysisResults:
        start_time = datetime.now()
        config = self.config
        z_value = config.analysis.z_value
        rng = np.random.default_rng(config.seed)

        benchmark = {}
        if config.run_population_benchmark:
            logger.info(f"Phase 1: Population benchmark ({2 * config.population.n_per_arm} subjects)")
            population = simulate_population(config.model, config.population, rng)
            benchmark = population_benchmark(population, z_value=z_value)
            del population

        logger.info(f"Phase 2: Trial sample ({config.trial.n_per_arm} per arm)")
        trial = sample_trial(config.model, config.trial, rng)

        logger.info("Phase 3: Estimators")
        propensity = PropensityModel().fit(trial)
        estimates, mi = run_estimators(
            trial,
            propensity,
            rng,
            n_imputations=config.analysis.n_imputations,
            z_value=z_value,
            max_failure_fraction=config.analysis.max_failure_fraction,
        )
        unconditional = unconditional_estimate(trial, z_value)

        sensitivity = None
        if run_sensitivity:
            logger.info("Phase 4: Sensitivity analysis")
            engine = SensitivityEngine(SensitivityConfig.from_analysis(config.analysis))
            sensitivity = engine.run(trial, rng)

        curves = kaplan_meier_curves(trial, alpha=1.0 - config.analysis.confidence_level)

        run_time = (datetime.now() - start_time).total_seconds()
        logger.info(f"Analysis complete in {run_time:.2f} seconds")

        self.results = AnalysisResults(
            config=config,
            trial=trial,
            propensity=propensity,
            estimates=estimates,
            unconditional=unconditional,
            multiple_imputation=mi,
            sensitivity=sensitivity,
            survival_curves=curves,
            benchmark=benchmark,
            run_time_seconds=run_time,
        )
        return self.results
