"""
Validation Utilities for PRINSTRAT

Checks simulated datasets against the structural invariants of the
simulation and produces a readable diagnostic report.
"""

from typing import Dict, Any, Optional
import numpy as np
import pandas as pd
import logging

from ..core.config import GenerativeModel

logger = logging.getLogger(__name__)


class TrialDataValidator:
    """
    Validation suite for simulated trial and population frames

    Checks:
    1. Exact arm balance
    2. ADA masking (missing on control, 0/1 on treated)
    3. Observed times strictly positive, events coded 0/1
    4. Treated-arm ADA prevalence close to the analytic value
    """

    def __init__(self, tolerance: float = 0.02):
        """
        Args:
            tolerance: Absolute tolerance for the prevalence check
        """
        self.tolerance = tolerance
        self.validation_results = {}

    def validate(
        self,
        frame: pd.DataFrame,
        model: Optional[GenerativeModel] = None,
        masked: bool = True
    ) -> Dict[str, Any]:
        """
        Run every check on a simulated frame

        Args:
            frame: Trial (masked=True) or population (masked=False) frame
            model: Generative model for the prevalence check; skipped if None
            masked: Whether control S1 is expected to be missing

        Returns:
            Dict with one entry per check and an overall_pass flag
        """
        results = {
            'balance': self.check_balance(frame),
            'masking': self.check_masking(frame) if masked else self.check_complete_ada(frame),
            'outcomes': self.check_outcomes(frame),
        }
        if model is not None:
            results['prevalence'] = self.check_prevalence(frame, model)

        results['overall_pass'] = all(r['passed'] for r in results.values())
        self.validation_results = results

        if not results['overall_pass']:
            failed = [name for name, r in results.items() if isinstance(r, dict) and not r['passed']]
            logger.warning(f"Validation failed: {failed}")

        return results

    def check_balance(self, frame: pd.DataFrame) -> Dict[str, Any]:
        n_treated = int((frame["z"] == 1).sum())
        n_control = int((frame["z"] == 0).sum())
        return {
            'n_treated': n_treated,
            'n_control': n_control,
            'passed': n_treated == n_control and n_treated + n_control == len(frame),
        }

    def check_masking(self, frame: pd.DataFrame) -> Dict[str, Any]:
        s1 = frame["s1"]
        treated = frame["z"] == 1
        control_missing = int(s1[~treated].isna().sum())
        treated_values = s1[treated]
        treated_binary = bool(treated_values.notna().all() and treated_values.isin([0, 1]).all())
        return {
            'control_missing': control_missing,
            'n_control': int((~treated).sum()),
            'treated_binary': treated_binary,
            'passed': control_missing == int((~treated).sum()) and treated_binary,
        }

    def check_complete_ada(self, frame: pd.DataFrame) -> Dict[str, Any]:
        s1 = frame["s1"]
        return {
            'n_missing': int(s1.isna().sum()),
            'passed': bool(s1.notna().all() and s1.isin([0, 1]).all()),
        }

    def check_outcomes(self, frame: pd.DataFrame) -> Dict[str, Any]:
        time = frame["time"].to_numpy(dtype=float)
        event = frame["event"]
        positive = bool(np.all(np.isfinite(time)) and np.all(time > 0))
        binary = bool(event.isin([0, 1]).all())
        result = {
            'min_time': float(time.min()) if len(time) else np.nan,
            'event_rate': float(event.mean()) if len(event) else np.nan,
            'times_positive': positive,
            'events_binary': binary,
            'passed': positive and binary,
        }
        # Observed time never exceeds the latent time on population frames
        if {"y0", "y1"}.issubset(frame.columns):
            latent = np.where(frame["z"] == 1, frame["y1"], frame["y0"])
            result['within_latent'] = bool(np.all(time <= latent))
            result['passed'] = result['passed'] and result['within_latent']
        return result

    def check_prevalence(self, frame: pd.DataFrame, model: GenerativeModel) -> Dict[str, Any]:
        treated = frame.loc[frame["z"] == 1, "s1"].astype(float)
        empirical = float(treated.mean())
        target = model.ada_prevalence()
        error = abs(empirical - target)
        return {
            'target': target,
            'empirical': empirical,
            'absolute_error': error,
            'passed': error < self.tolerance,
        }

    def generate_validation_report(self, results: Optional[Dict[str, Any]] = None) -> str:
        """Generate human-readable validation report"""
        results = results if results is not None else self.validation_results
        report = []

        report.append("="*80)
        report.append("SIMULATED DATA VALIDATION REPORT")
        report.append("="*80)

        if 'balance' in results:
            bal = results['balance']
            report.append(f"\nArm balance: {bal['n_treated']} treated / {bal['n_control']} control")
            report.append(f" Exactly balanced: {'YES' if bal['passed'] else 'NO'}")

        if 'masking' in results:
            mask = results['masking']
            if 'control_missing' in mask:
                report.append(f"\nADA masking: {mask['control_missing']}/{mask['n_control']} controls missing")
                report.append(f" Treated S1 binary: {'YES' if mask['treated_binary'] else 'NO'}")
            else:
                report.append(f"\nADA complete: {'YES' if mask['passed'] else 'NO'}")

        if 'outcomes' in results:
            out = results['outcomes']
            report.append(f"\nOutcomes: event rate {out['event_rate']:.2%}, min time {out['min_time']:.4g}")
            report.append(f" Times positive: {'YES' if out['times_positive'] else 'NO'}")

        if 'prevalence' in results:
            prev = results['prevalence']
            report.append(
                f"\nTreated ADA prevalence: {prev['empirical']:.4f} "
                f"(analytic {prev['target']:.4f}, error {prev['absolute_error']:.4f})"
            )

        overall = results.get('overall_pass', False)
        report.append(f"\n{'='*80}")
        report.append(f"OVERALL: {'PASS' if overall else 'FAIL'}")
        report.append(f"{'='*80}")

        return "\n".join(report)
