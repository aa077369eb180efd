"""
PRINSTRAT: PRINcipal STRATum effects for time-to-event trials

Simulation, estimation and sensitivity analysis of treatment effects within
principal strata defined by an intercurrent event (anti-drug antibodies)
that is only observable on the treated arm.

Plotting helpers for the survival curves and the sensitivity scatter live in
prinstrat.plotting, which is imported separately so the core package does
not load matplotlib.
"""

from .core.config import (
    GenerativeModel,
    SimulationConfig,
    AnalysisConfig,
    PipelineConfig,
)

from .core.exceptions import (
    PrinstratError,
    InvalidConfigurationError,
    CoxFitError,
    EmptyStratumError,
    PropensityModelError,
    ImputationFailureError,
)

from .core.coxph import CoxFit, fit_coxph

from .core.simulation import (
    simulate_population,
    sample_trial,
    mask_control_ada,
    population_benchmark,
)

from .core.survival import kaplan_meier_curves

from .estimation.propensity import PropensityModel

from .estimation.estimators import (
    StratumEstimate,
    CombinedEstimate,
    MultipleImputationResult,
    naive_estimate,
    regression_adjusted_estimate,
    weighting_estimate,
    multiple_imputation_estimate,
    combine_imputations,
    unconditional_estimate,
)

from .sensitivity.engine import (
    SensitivityConfig,
    SensitivityEngine,
    SensitivityResults,
    selection_weights,
)

from .pipeline import PrincipalStratumAnalysis, AnalysisResults

from .utils.validation import TrialDataValidator

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "GenerativeModel",
    "SimulationConfig",
    "AnalysisConfig",
    "PipelineConfig",

    # Errors
    "PrinstratError",
    "InvalidConfigurationError",
    "CoxFitError",
    "EmptyStratumError",
    "PropensityModelError",
    "ImputationFailureError",

    # Simulation
    "simulate_population",
    "sample_trial",
    "mask_control_ada",
    "population_benchmark",
    "kaplan_meier_curves",

    # Estimation
    "CoxFit",
    "fit_coxph",
    "PropensityModel",
    "StratumEstimate",
    "CombinedEstimate",
    "MultipleImputationResult",
    "naive_estimate",
    "regression_adjusted_estimate",
    "weighting_estimate",
    "multiple_imputation_estimate",
    "combine_imputations",
    "unconditional_estimate",

    # Sensitivity
    "SensitivityConfig",
    "SensitivityEngine",
    "SensitivityResults",
    "selection_weights",

    # Pipeline
    "PrincipalStratumAnalysis",
    "AnalysisResults",
    "TrialDataValidator",
]
