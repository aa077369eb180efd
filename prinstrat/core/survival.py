"""
Kaplan-Meier step functions

Numeric survival curves for the presentation layer: by arm, and by
observed ADA status on the treated arm.
"""

from typing import Dict
import numpy as np
import pandas as pd
from lifelines import KaplanMeierFitter

from .simulation import control_arm, treated_arm


def kaplan_meier_curve(frame: pd.DataFrame, label: str, alpha: float = 0.05) -> pd.DataFrame:
    """
    Kaplan-Meier estimate as a step function

    Returns:
        DataFrame with columns time, survival, ci_lower, ci_upper, at_risk
    """
    kmf = KaplanMeierFitter(alpha=alpha)
    kmf.fit(
        frame["time"].to_numpy(dtype=float),
        event_observed=frame["event"].to_numpy(dtype=int),
        label=label
    )
    ci = kmf.confidence_interval_survival_function_
    curve = pd.DataFrame({
        "time": kmf.survival_function_.index.to_numpy(),
        "survival": kmf.survival_function_[label].to_numpy(),
        "ci_lower": ci.iloc[:, 0].to_numpy(),
        "ci_upper": ci.iloc[:, 1].to_numpy(),
    })
    curve["at_risk"] = kmf.event_table["at_risk"].reindex(curve["time"]).to_numpy()
    return curve


def kaplan_meier_curves(trial: pd.DataFrame, alpha: float = 0.05) -> Dict[str, pd.DataFrame]:
    """Curves for control, treated, and treated split by observed S1"""
    groups = {
        "control": control_arm(trial),
        "treated": treated_arm(trial),
        "treated S1=1": treated_arm(trial, 1),
        "treated S1=0": treated_arm(trial, 0),
    }
    return {
        label: kaplan_meier_curve(frame, label, alpha)
        for label, frame in groups.items()
        if len(frame) > 0
    }


def median_survival(curve: pd.DataFrame) -> float:
    """First time the step function reaches 0.5 or below; inf if never"""
    below = curve.loc[curve["survival"] <= 0.5, "time"]
    return float(below.iloc[0]) if len(below) else np.inf
