"""
Population Simulator and Trial Sampler

Draws subjects from a GenerativeModel. The population frame keeps every
potential outcome and the true S1 on both arms and serves as a benchmark;
the trial frame keeps only what a real trial would observe, with S1 masked
on the control arm.

All randomness comes from the numpy Generator passed in by the caller.
"""

from typing import Dict, Optional
import logging
import numpy as np
import pandas as pd

from .config import GenerativeModel, SimulationConfig
from .coxph import CoxFit, fit_coxph

logger = logging.getLogger(__name__)

TRIAL_COLUMNS = ["x", "z", "s1", "time", "event"]


def assign_treatment(n_per_arm: int, rng: np.random.Generator) -> np.ndarray:
    """Exactly balanced arm indicator in random order"""
    return rng.permutation(np.repeat(np.array([0, 1]), n_per_arm))


def simulate_population(
    model: GenerativeModel,
    config: SimulationConfig,
    rng: np.random.Generator
) -> pd.DataFrame:
    """
    Simulate potential outcomes and the observed data derived from them

    Args:
        model: Generative model coefficients
        config: Subjects per arm and censoring probability
        rng: Random generator; draws are taken in a fixed order

    Returns:
        DataFrame with columns x, z, y0, y1, s1, time, event
    """
    n = 2 * config.n_per_arm

    x = rng.integers(1, model.n_categories + 1, size=n)
    z = assign_treatment(config.n_per_arm, rng)
    s1 = rng.binomial(1, model.ada_probability(x))

    y0 = rng.exponential(1.0 / model.control_rate(x))
    y1 = rng.exponential(1.0 / model.treated_rate(x, s1))

    latent = np.where(z == 1, y1, y0)
    event = rng.binomial(1, 1.0 - config.censoring_probability, size=n)

    # Censored times are redrawn in (0, latent]
    u = rng.random(size=n)
    time = np.where(event == 1, latent, latent * (1.0 - u))

    frame = pd.DataFrame({
        "x": x,
        "z": z,
        "y0": y0,
        "y1": y1,
        "s1": s1,
        "time": time,
        "event": event,
    })

    logger.info(
        f"Simulated {n} subjects ({config.n_per_arm} per arm), "
        f"{int(event.sum())} events, treated ADA rate {s1[z == 1].mean():.3f}"
    )
    return frame


def mask_control_ada(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy with S1 set to missing on the control arm

    S1 becomes a nullable integer column so treated values stay 0/1.
    """
    masked = frame.copy()
    masked["s1"] = masked["s1"].astype("Int64").mask(masked["z"] == 0)
    return masked


def ada_equals(s1: pd.Series, stratum: int) -> np.ndarray:
    """Boolean mask of S1 == stratum with missing values counted as False"""
    return s1.eq(stratum).fillna(False).to_numpy(dtype=bool)


def sample_trial(
    model: GenerativeModel,
    config: SimulationConfig,
    rng: np.random.Generator
) -> pd.DataFrame:
    """
    Simulate the observed data of a two-arm trial

    Same generative process as simulate_population, then the latent
    columns are dropped and S1 is masked on the control arm.

    Returns:
        DataFrame with columns x, z, s1 (Int64, <NA> on control), time, event
    """
    population = simulate_population(model, config, rng)
    trial = mask_control_ada(population[TRIAL_COLUMNS])
    return trial.reset_index(drop=True)


def population_benchmark(
    population: pd.DataFrame,
    strata: tuple = (1, 0),
    z_value: float = 1.96
) -> Dict[int, CoxFit]:
    """
    Reference treatment effects within each principal stratum

    Fits time ~ z separately among subjects with true S1 = 1 and S1 = 0.

    Returns:
        Dict mapping stratum to its CoxFit
    """
    benchmark = {}
    for stratum in strata:
        subset = population.loc[ada_equals(population["s1"], stratum), ["time", "event", "z"]]
        fit = fit_coxph(subset, ["z"], label=f"population S1={stratum}")
        lower, upper = fit.confidence_interval("z", z_value)
        logger.info(
            f"Population benchmark S1={stratum}: log-HR {fit.coef('z'):.4f} "
            f"(HR {np.exp(fit.coef('z')):.3f}, {lower:.3f}-{upper:.3f}), n={fit.n}"
        )
        benchmark[stratum] = fit
    return benchmark


def true_stratum_effects(model: GenerativeModel) -> Dict[int, float]:
    """Conditional log-HRs implied by the generative model"""
    return {stratum: model.stratum_log_hr(stratum) for stratum in (1, 0)}


def complete_ada(trial: pd.DataFrame, control_s1: np.ndarray) -> pd.DataFrame:
    """
    New frame with imputed S1 on the control arm

    Args:
        trial: Trial frame with S1 masked on the control arm
        control_s1: 0/1 values for the control rows, in their frame order

    Returns:
        Copy of trial whose s1 column is fully observed (int)
    """
    is_control = (trial["z"] == 0).to_numpy()
    control_s1 = np.asarray(control_s1)
    if len(control_s1) != is_control.sum():
        raise ValueError(
            f"Expected {is_control.sum()} imputed values, got {len(control_s1)}"
        )
    completed = trial.copy()
    s1 = completed["s1"].to_numpy(dtype=float, na_value=np.nan)
    s1[is_control] = control_s1
    completed["s1"] = s1.astype(int)
    return completed


def control_arm(trial: pd.DataFrame) -> pd.DataFrame:
    return trial.loc[trial["z"] == 0]


def treated_arm(trial: pd.DataFrame, stratum: Optional[int] = None) -> pd.DataFrame:
    treated = trial.loc[trial["z"] == 1]
    if stratum is not None:
        treated = treated.loc[ada_equals(treated["s1"], stratum)]
    return treated
