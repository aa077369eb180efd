"""
Pytest configuration file providing shared fixtures.
"""
import numpy as np
import pytest

from prinstrat import GenerativeModel, SimulationConfig, PropensityModel, sample_trial


@pytest.fixture(scope="session")
def model():
    """Default generative model (4 covariate levels, ADA slope 0.5)."""
    return GenerativeModel()


@pytest.fixture(scope="session")
def trial(model):
    """
    Trial of 450 subjects per arm with 20% censoring.

    Session-scoped; tests must not modify it in place.
    """
    config = SimulationConfig(n_per_arm=450, censoring_probability=0.2)
    return sample_trial(model, config, np.random.default_rng(2023))


@pytest.fixture(scope="session")
def small_trial(model):
    """Trial of 150 subjects per arm for Monte Carlo tests."""
    config = SimulationConfig(n_per_arm=150, censoring_probability=0.2)
    return sample_trial(model, config, np.random.default_rng(11))


@pytest.fixture(scope="session")
def propensity(trial):
    """ADA model fitted on the treated arm of the shared trial."""
    return PropensityModel().fit(trial)
