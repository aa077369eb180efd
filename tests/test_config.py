"""
Tests for configuration validation.

Invalid sizes, probabilities and draw counts must be rejected when the
config objects are built.
"""

import numpy as np
import pytest
from pydantic import ValidationError

from prinstrat import (
    AnalysisConfig,
    GenerativeModel,
    InvalidConfigurationError,
    PipelineConfig,
    PrincipalStratumAnalysis,
    SimulationConfig,
)


class TestSimulationConfig:
    """Sample size and censoring probability bounds."""

    def test_zero_sample_size_rejected(self):
        with pytest.raises(ValidationError):
            SimulationConfig(n_per_arm=0)

    def test_negative_sample_size_rejected(self):
        with pytest.raises(ValidationError):
            SimulationConfig(n_per_arm=-10)

    @pytest.mark.parametrize("p", [-0.1, 1.5])
    def test_censoring_probability_outside_unit_interval(self, p):
        with pytest.raises(ValidationError):
            SimulationConfig(n_per_arm=100, censoring_probability=p)

    def test_boundary_censoring_accepted(self):
        assert SimulationConfig(n_per_arm=10, censoring_probability=0.0).censoring_probability == 0.0


class TestGenerativeModel:
    """Generative model helpers and bounds."""

    def test_zero_categories_rejected(self):
        with pytest.raises(ValidationError):
            GenerativeModel(n_categories=0)

    def test_analytic_prevalence(self):
        model = GenerativeModel(n_categories=2, ada_intercept=0.0, ada_covariate=0.0)
        assert model.ada_prevalence() == pytest.approx(0.5)

    def test_stratum_log_hr(self):
        model = GenerativeModel(treatment_log_hr=-0.6, ada_treatment_log_hr=0.5)
        assert model.stratum_log_hr(0) == pytest.approx(-0.6)
        assert model.stratum_log_hr(1) == pytest.approx(-0.1)

    def test_treated_rate_shift(self):
        model = GenerativeModel()
        ratio = model.treated_rate(2, 0) / model.control_rate(2)
        assert ratio == pytest.approx(np.exp(model.treatment_log_hr))


class TestAnalysisConfig:
    """Monte Carlo and inference settings."""

    def test_single_imputation_rejected(self):
        with pytest.raises(ValidationError):
            AnalysisConfig(n_imputations=1)

    def test_zero_sensitivity_draws_rejected(self):
        with pytest.raises(ValidationError):
            AnalysisConfig(n_sensitivity_draws=0)

    @pytest.mark.parametrize("level", [0.0, 1.0])
    def test_confidence_level_bounds(self, level):
        with pytest.raises(ValidationError):
            AnalysisConfig(confidence_level=level)

    def test_z_value_for_95_percent(self):
        assert AnalysisConfig().z_value == pytest.approx(1.959964, abs=1e-6)

    def test_failure_fraction_bounds(self):
        with pytest.raises(ValidationError):
            AnalysisConfig(max_failure_fraction=1.2)


class TestPipelineConfig:
    """Composite configuration."""

    def test_dict_round_trip(self):
        config = PipelineConfig(seed=7, trial=SimulationConfig(n_per_arm=100))
        assert PipelineConfig.from_dict(config.to_dict()) == config

    def test_tiny_trial_rejected(self):
        with pytest.raises(ValidationError):
            PipelineConfig(trial=SimulationConfig(n_per_arm=1))

    def test_single_covariate_level_rejected_at_setup(self, monkeypatch):
        config = PipelineConfig(
            model=GenerativeModel(n_categories=1),
            trial=SimulationConfig(n_per_arm=100),
        )

        def no_simulation(*args, **kwargs):
            raise AssertionError("simulation must not start")

        monkeypatch.setattr("prinstrat.pipeline.simulate_population", no_simulation)
        monkeypatch.setattr("prinstrat.pipeline.sample_trial", no_simulation)
        with pytest.raises(InvalidConfigurationError, match="n_categories"):
            PrincipalStratumAnalysis(config).run()

    def test_single_covariate_level_still_simulates(self):
        assert GenerativeModel(n_categories=1).ada_prevalence() == pytest.approx(
            GenerativeModel().ada_probability(1)
        )

    def test_full_censoring_rejected_at_setup(self):
        config = PipelineConfig(trial=SimulationConfig(n_per_arm=100, censoring_probability=1.0))
        with pytest.raises(InvalidConfigurationError):
            PrincipalStratumAnalysis(config)
