"""
Configuration Models

Pydantic models for the generative model, the simulation sizes and the
analysis settings. Invalid values are rejected when the objects are built,
before any random number is drawn.
"""

from typing import Dict, Any, Union
from pydantic import BaseModel, Field, ConfigDict, field_validator
import numpy as np
from scipy import stats
from scipy.special import expit


ArrayLike = Union[np.ndarray, float, int]


# ============================================================================
# GENERATIVE MODEL
# ============================================================================

class GenerativeModel(BaseModel):
    """
    Causal model used to simulate potential outcomes

    X is uniform on 1..n_categories. The potential ADA indicator under
    treatment follows a logistic model in X. Latent event times are
    exponential with log-rate linear in X; under treatment the log-rate is
    shifted by treatment_log_hr, plus ada_treatment_log_hr for subjects with
    S1 = 1. ADA cannot occur without treatment.
    """
    model_config = ConfigDict(frozen=True)

    n_categories: int = Field(default=4, ge=1, description="Number of ordered covariate levels")

    # ADA model: logit P(S1=1 | X) = ada_intercept + ada_covariate * X
    ada_intercept: float = -1.25
    ada_covariate: float = 0.5

    # Outcome model (log-hazard scale)
    log_baseline_hazard: float = -2.0
    covariate_log_hr: float = 0.2
    treatment_log_hr: float = -0.6
    ada_treatment_log_hr: float = 0.5

    @property
    def levels(self) -> np.ndarray:
        return np.arange(1, self.n_categories + 1)

    def ada_probability(self, x: ArrayLike) -> ArrayLike:
        """P(S1 = 1 | X = x) under treatment"""
        return expit(self.ada_intercept + self.ada_covariate * np.asarray(x, dtype=float))

    def control_rate(self, x: ArrayLike) -> ArrayLike:
        """Exponential rate of the latent control time Y0"""
        return np.exp(self.log_baseline_hazard + self.covariate_log_hr * np.asarray(x, dtype=float))

    def treated_rate(self, x: ArrayLike, s1: ArrayLike) -> ArrayLike:
        """Exponential rate of the latent treated time Y1"""
        shift = self.treatment_log_hr + self.ada_treatment_log_hr * np.asarray(s1, dtype=float)
        return self.control_rate(x) * np.exp(shift)

    def ada_prevalence(self) -> float:
        """Analytic P(S1 = 1) among treated subjects when X is uniform"""
        return float(np.mean(self.ada_probability(self.levels)))

    def stratum_log_hr(self, stratum: int) -> float:
        """Conditional treatment log-HR within a principal stratum"""
        return self.treatment_log_hr + self.ada_treatment_log_hr * stratum


# ============================================================================
# SIMULATION AND ANALYSIS SETTINGS
# ============================================================================

class SimulationConfig(BaseModel):
    """Size and censoring of one simulated dataset"""
    model_config = ConfigDict(frozen=True)

    n_per_arm: int = Field(gt=0, description="Subjects per arm; total size is twice this")
    censoring_probability: float = Field(default=0.2, ge=0.0, le=1.0)


class AnalysisConfig(BaseModel):
    """Settings for the estimators and the Monte Carlo procedures"""
    model_config = ConfigDict(frozen=True)

    n_imputations: int = Field(default=200, ge=2, description="Multiple-imputation draws")
    n_sensitivity_draws: int = Field(default=500, ge=1)
    max_exponent: float = Field(default=5.0, ge=0.0, description="Upper bound of the rank exponent")
    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)
    prevalence_prior: float = Field(
        default=1.0 / 3.0,
        gt=0.0,
        description="Pseudo-count added to both Beta shape parameters"
    )
    max_failure_fraction: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Largest tolerated share of failed Monte Carlo draws"
    )

    @property
    def z_value(self) -> float:
        return float(stats.norm.ppf(0.5 + self.confidence_level / 2.0))


class PipelineConfig(BaseModel):
    """Complete configuration of one analysis run"""
    model_config = ConfigDict(frozen=True)

    model: GenerativeModel = Field(default_factory=GenerativeModel)
    population: SimulationConfig = Field(
        default_factory=lambda: SimulationConfig(n_per_arm=500_000, censoring_probability=0.2)
    )
    trial: SimulationConfig = Field(
        default_factory=lambda: SimulationConfig(n_per_arm=450, censoring_probability=0.2)
    )
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    seed: int = Field(default=2023, ge=0)
    run_population_benchmark: bool = True

    @field_validator('trial')
    def validate_trial_size(cls, v):
        if v.n_per_arm < 2:
            raise ValueError("Trial needs at least 2 subjects per arm")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Load from dictionary"""
        return cls.model_validate(data)
