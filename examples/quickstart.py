"""
PRINSTRAT Quick Start Example

Simulates a trial with ADA observed on the treated arm only, runs the four
principal stratum estimators, and plots the sensitivity analysis.
"""

import logging
import numpy as np
import matplotlib.pyplot as plt

from prinstrat import (
    # Configuration
    GenerativeModel,
    SimulationConfig,
    AnalysisConfig,
    PipelineConfig,

    # Building blocks
    sample_trial,
    PropensityModel,
    naive_estimate,
    regression_adjusted_estimate,
    SensitivityConfig,
    SensitivityEngine,
    TrialDataValidator,

    # Pipeline
    PrincipalStratumAnalysis,
)
from prinstrat.plotting import plot_sensitivity, plot_survival_curves


def example_1_simulate_trial():
    """Example 1: Simulate and validate one trial"""

    print("="*80)
    print("EXAMPLE 1: Simulated Trial")
    print("="*80)

    model = GenerativeModel()
    rng = np.random.default_rng(1)
    trial = sample_trial(model, SimulationConfig(n_per_arm=450), rng)

    validator = TrialDataValidator()
    results = validator.validate(trial, model)
    print(validator.generate_validation_report(results))

    return trial


def example_2_estimators(trial):
    """Example 2: Naive versus regression-adjusted estimate"""

    print("\n" + "="*80)
    print("EXAMPLE 2: Confounding by X")
    print("="*80)

    naive = naive_estimate(trial, stratum=1)
    adjusted = regression_adjusted_estimate(trial, stratum=1)

    print(f"  Naive:      log-HR {naive.coef:+.4f} (se {naive.se:.4f})")
    print(f"  Regression: log-HR {adjusted.coef:+.4f} (se {adjusted.se:.4f})")
    print(f"  True conditional log-HR in S1=1: {GenerativeModel().stratum_log_hr(1):+.4f}")

    propensity = PropensityModel().fit(trial)
    print(f"\n  ADA model coefficients: {np.round(propensity.coefficients, 4)}")


def example_3_sensitivity(trial):
    """Example 3: Sensitivity sweep over control-arm ADA allocations"""

    print("\n" + "="*80)
    print("EXAMPLE 3: Sensitivity Analysis")
    print("="*80)

    engine = SensitivityEngine(SensitivityConfig(n_draws=200))
    results = engine.run(trial, np.random.default_rng(7))
    summary = results.summary()
    print(f"  {summary['n_draws'] - summary['n_failed']} draws used")
    print(f"  Median S1=1 log-HR: {summary['stratum_1']['median']:+.4f}")

    fig, axes = plt.subplots(1, 2, figsize=(12, 5), sharey=True)
    plot_sensitivity(results, stratum=1, ax=axes[0])
    plot_sensitivity(results, stratum=0, ax=axes[1])
    fig.tight_layout()
    fig.savefig("sensitivity.png", dpi=120)
    print("  Saved sensitivity.png")


def example_4_full_pipeline():
    """Example 4: Complete analysis from one seed"""

    print("\n" + "="*80)
    print("EXAMPLE 4: Full Pipeline")
    print("="*80)

    config = PipelineConfig(
        population=SimulationConfig(n_per_arm=100_000, censoring_probability=0.2),
        trial=SimulationConfig(n_per_arm=450, censoring_probability=0.2),
        analysis=AnalysisConfig(n_imputations=200, n_sensitivity_draws=500),
        seed=2023,
    )
    results = PrincipalStratumAnalysis(config).run()
    print(results.generate_report())

    fig, ax = plt.subplots(figsize=(7, 5))
    plot_survival_curves(results.survival_curves, ax=ax)
    fig.savefig("survival_curves.png", dpi=120)
    print("Saved survival_curves.png")

    return results


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    trial = example_1_simulate_trial()
    example_2_estimators(trial)
    example_3_sensitivity(trial)
    example_4_full_pipeline()
