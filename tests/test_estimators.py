"""
Tests for the ADA propensity model and the four principal stratum estimators.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from prinstrat import (
    CoxFitError,
    ImputationFailureError,
    PropensityModel,
    PropensityModelError,
    SimulationConfig,
    combine_imputations,
    multiple_imputation_estimate,
    naive_estimate,
    regression_adjusted_estimate,
    sample_trial,
    unconditional_estimate,
    weighting_estimate,
)
from prinstrat.estimation import estimators
from prinstrat.estimation.estimators import StratumEstimate, weighting_pseudo_population


class TestPropensityModel:
    """Logistic model of S1 on X among treated subjects."""

    def test_recovers_coefficients(self, model):
        trial = sample_trial(model, SimulationConfig(n_per_arm=20000), np.random.default_rng(1))
        fitted = PropensityModel().fit(trial)
        np.testing.assert_allclose(
            fitted.coefficients, [model.ada_intercept, model.ada_covariate], atol=0.15
        )
        assert fitted.n_treated == 20000

    def test_covariance_positive_definite(self, propensity):
        assert propensity.covariance.shape == (2, 2)
        assert np.all(np.linalg.eigvalsh(propensity.covariance) > 0)
        np.testing.assert_allclose(propensity.covariance, propensity.covariance.T)

    def test_predict_matches_predict_with(self, propensity):
        x = np.array([1, 2, 3, 4])
        np.testing.assert_allclose(
            propensity.predict(x), PropensityModel.predict_with(propensity.coefficients, x)
        )
        assert np.all(np.diff(propensity.predict(x)) > 0)

    def test_degenerate_ada_rejected(self, trial):
        degenerate = trial.copy()
        degenerate.loc[degenerate["z"] == 1, "s1"] = 0
        with pytest.raises(PropensityModelError):
            PropensityModel().fit(degenerate)

    @staticmethod
    def _treated_arm(x, s1):
        n = len(x)
        return pd.DataFrame({
            "x": np.concatenate([x, x]),
            "z": np.repeat([1, 0], n),
            "s1": pd.array(list(s1) + [None] * n, dtype="Int64"),
            "time": np.linspace(1.0, 2.0, 2 * n),
            "event": 1,
        })

    def test_separated_ada_rejected(self):
        separated = self._treated_arm(np.repeat([1, 2], 20), np.repeat([0, 1], 20))
        model = PropensityModel()
        with pytest.raises(PropensityModelError, match="separates"):
            model.fit(separated)
        assert not model.is_fitted

    def test_quasi_separated_ada_rejected(self):
        # Both S1 values only at x=2
        x = np.array([1] * 10 + [2] * 10 + [3] * 10)
        s1 = np.array([0] * 10 + [0, 1] * 5 + [1] * 10)
        with pytest.raises(PropensityModelError):
            PropensityModel().fit(self._treated_arm(x, s1))

    def test_non_convergence_rejected(self, trial):
        model = PropensityModel(max_iter=1)
        with pytest.raises(PropensityModelError, match="did not converge"):
            model.fit(trial)
        assert not model.is_fitted

    def test_unpenalised_fit_without_deprecation_warning(self, trial):
        with warnings.catch_warnings():
            warnings.simplefilter("error", FutureWarning)
            fitted = PropensityModel().fit(trial)
        assert fitted.is_fitted

    def test_predict_before_fit(self):
        with pytest.raises(PropensityModelError):
            PropensityModel().predict([1, 2])

    def test_coefficient_draws_centered(self, propensity):
        rng = np.random.default_rng(2)
        draws = np.array([propensity.sample_coefficients(rng) for _ in range(4000)])
        np.testing.assert_allclose(draws.mean(axis=0), propensity.coefficients, atol=0.05)


class TestStratumEstimate:
    """Derived quantities of an estimate."""

    def test_interval_and_hazard_ratio(self):
        est = StratumEstimate(method="naive", stratum=1, coef=-0.5, se=0.1, z_value=1.96)
        assert est.hazard_ratio == pytest.approx(np.exp(-0.5))
        assert est.ci_lower == pytest.approx(np.exp(-0.5 - 0.196))
        assert est.ci_upper == pytest.approx(np.exp(-0.5 + 0.196))
        assert est.p_value == pytest.approx(5.733e-7, rel=1e-2)
        assert set(est.to_dict()) >= {"coef", "se", "hazard_ratio", "ci_lower", "ci_upper", "p_value"}


class TestNaiveAndRegression:
    """Complete-case comparisons."""

    def test_naive_comparison_set(self, trial):
        est = naive_estimate(trial, stratum=1)
        n_expected = int((trial["z"] == 0).sum() + ((trial["z"] == 1) & (trial["s1"] == 1)).sum())
        assert est.n == n_expected
        assert est.method == "naive"

    def test_regression_uses_same_subjects(self, trial):
        naive = naive_estimate(trial, stratum=1)
        adjusted = regression_adjusted_estimate(trial, stratum=1)
        assert adjusted.n == naive.n
        assert "covariate_coef" in adjusted.details

    def test_adjustment_moves_estimate(self, trial):
        naive = naive_estimate(trial, stratum=1)
        adjusted = regression_adjusted_estimate(trial, stratum=1)
        assert abs(naive.coef - adjusted.coef) > 0.01

    def test_complement_stratum(self, trial):
        est = naive_estimate(trial, stratum=0)
        assert est.stratum == 0
        assert np.isfinite(est.coef)


class TestWeighting:
    """Propensity-weighted pseudo-population."""

    def test_pseudo_population_weights(self, trial, propensity):
        pseudo = weighting_pseudo_population(trial, propensity, stratum=1)
        treated = pseudo[pseudo["z"] == 1]
        controls = pseudo[pseudo["z"] == 0]
        assert (treated["weight"] == 1.0).all()
        assert len(treated) == int(((trial["z"] == 1) & (trial["s1"] == 1)).sum())
        np.testing.assert_allclose(controls["weight"], propensity.predict(controls["x"]))

    def test_complement_weights(self, trial, propensity):
        one = weighting_pseudo_population(trial, propensity, stratum=1)
        zero = weighting_pseudo_population(trial, propensity, stratum=0)
        np.testing.assert_allclose(
            one.loc[one["z"] == 0, "weight"].to_numpy() + zero.loc[zero["z"] == 0, "weight"].to_numpy(),
            1.0
        )

    def test_weighting_estimate(self, trial, propensity):
        est = weighting_estimate(trial, propensity, stratum=1)
        assert est.method == "weighting"
        assert np.isfinite(est.coef) and est.se > 0


class TestCombineImputations:
    """Combined variance = mean within-draw variance + between-draw variance."""

    def test_known_values(self):
        pooled = combine_imputations([0.1, 0.3, 0.2, 0.4], [0.01, 0.02, 0.03, 0.04])
        assert pooled.estimate == pytest.approx(0.25)
        assert pooled.within_variance == pytest.approx(0.025)
        assert pooled.between_variance == pytest.approx(0.05 / 3)
        assert pooled.total_variance == pytest.approx(0.025 + 0.05 / 3)
        assert pooled.se == pytest.approx(np.sqrt(0.025 + 0.05 / 3))
        assert pooled.n_draws == 4

    def test_identical_draws_have_no_between_variance(self):
        pooled = combine_imputations([0.5] * 5, [0.02] * 5)
        assert pooled.between_variance == 0.0
        assert pooled.total_variance == pytest.approx(0.02)

    def test_random_draws(self):
        rng = np.random.default_rng(3)
        coefs = rng.normal(-0.2, 0.1, 50)
        variances = rng.uniform(0.01, 0.02, 50)
        pooled = combine_imputations(coefs, variances)
        assert pooled.total_variance == pytest.approx(variances.mean() + coefs.var(ddof=1))

    def test_too_few_draws(self):
        with pytest.raises(ValueError):
            combine_imputations([0.1], [0.01])

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            combine_imputations([0.1, 0.2], [0.01])


class TestMultipleImputation:
    """Posterior imputation of the control-arm ADA status."""

    def test_both_strata_pooled(self, small_trial):
        propensity = PropensityModel().fit(small_trial)
        result = multiple_imputation_estimate(
            small_trial, propensity, np.random.default_rng(4), n_imputations=10
        )
        assert set(result.estimates) == {0, 1}
        assert len(result.draws) == 20
        for stratum in (0, 1):
            rows = result.draws[result.draws["stratum"] == stratum]
            pooled = result.combined[stratum]
            assert pooled.total_variance == pytest.approx(
                rows["variance"].mean() + rows["coef"].var(ddof=1)
            )
            assert result.estimates[stratum].se == pytest.approx(pooled.se)
            assert result.n_failed(stratum) == 0

    def test_trial_not_mutated(self, small_trial):
        before = small_trial.copy()
        propensity = PropensityModel().fit(small_trial)
        multiple_imputation_estimate(small_trial, propensity, np.random.default_rng(5), n_imputations=3)
        pd.testing.assert_frame_equal(small_trial, before)

    def test_reproducible(self, small_trial):
        propensity = PropensityModel().fit(small_trial)
        first = multiple_imputation_estimate(small_trial, propensity, np.random.default_rng(6), n_imputations=5)
        second = multiple_imputation_estimate(small_trial, propensity, np.random.default_rng(6), n_imputations=5)
        pd.testing.assert_frame_equal(first.draws, second.draws)

    def test_failed_draw_skipped_and_recorded(self, small_trial, monkeypatch):
        original = estimators.fit_coxph

        def flaky_fit(frame, covariates, **kwargs):
            if kwargs.get("label", "").startswith("imputation 0 "):
                raise CoxFitError("simulated failure", label=kwargs["label"])
            return original(frame, covariates, **kwargs)

        monkeypatch.setattr(estimators, "fit_coxph", flaky_fit)
        propensity = PropensityModel().fit(small_trial)
        result = multiple_imputation_estimate(
            small_trial, propensity, np.random.default_rng(7), n_imputations=20
        )
        assert result.n_failed(1) == 1
        assert result.combined[1].n_draws == 19
        failed = result.draws[result.draws["status"] != "ok"]
        assert set(failed["draw"]) == {0}
        assert failed["error"].str.contains("simulated failure").all()

    def test_too_many_failures_abort(self, small_trial, monkeypatch):
        def failing_fit(frame, covariates, **kwargs):
            raise CoxFitError("always fails")

        monkeypatch.setattr(estimators, "fit_coxph", failing_fit)
        propensity = PropensityModel().fit(small_trial)
        with pytest.raises(ImputationFailureError) as excinfo:
            multiple_imputation_estimate(small_trial, propensity, np.random.default_rng(8), n_imputations=4)
        assert excinfo.value.n_failed == 4


class TestUnconditional:
    """Unstratified treatment effect."""

    def test_uses_whole_trial(self, trial):
        est = unconditional_estimate(trial)
        assert est.n == len(trial)
        assert est.stratum == -1
