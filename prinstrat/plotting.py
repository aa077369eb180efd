"""
Plotting helpers

Thin matplotlib/seaborn consumers of the numeric results. Nothing here
feeds back into the analysis.
"""

from typing import Dict, Optional
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .sensitivity.engine import SensitivityResults


def plot_survival_curves(
    curves: Dict[str, pd.DataFrame],
    ax: Optional[plt.Axes] = None,
    show_ci: bool = True
) -> plt.Axes:
    """Kaplan-Meier step functions, one line per group"""
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 5))
    for label, curve in curves.items():
        line, = ax.step(curve["time"], curve["survival"], where="post", label=label)
        if show_ci:
            ax.fill_between(
                curve["time"], curve["ci_lower"], curve["ci_upper"],
                step="post", alpha=0.15, color=line.get_color()
            )
    ax.set_xlabel("Time")
    ax.set_ylabel("Survival probability")
    ax.set_ylim(0, 1.02)
    ax.legend()
    return ax


def plot_sensitivity(
    results: SensitivityResults,
    stratum: int = 1,
    ax: Optional[plt.Axes] = None
) -> plt.Axes:
    """
    Treatment log-HR against the assumption axis, with reference lines at
    zero effect and at the unconditional effect
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 5))
    points = results.scatter_points(stratum)
    sns.scatterplot(data=points, x="assumption_log_hr", y="treatment_log_hr",
                    s=12, alpha=0.5, ax=ax)
    lines = results.reference_lines()
    ax.axhline(lines["no_effect"], color="black", linewidth=1)
    ax.axhline(lines["unconditional"], color="tab:red", linestyle="--", linewidth=1,
               label="unconditional effect")
    ax.axvline(0.0, color="grey", linewidth=0.5)
    ax.set_xlabel("log-HR of S1 on control outcome (unverifiable)")
    ax.set_ylabel(f"Treatment log-HR in stratum S1={stratum}")
    ax.legend()
    return ax
