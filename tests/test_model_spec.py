"""Tests for the regression model specification dataclasses.

Verifies frozen immutability, describe() output, the registered Normal and
Student-t models, validate() failures, and build() dispatch with mocked PyMC.

Run: uv run pytest tests/test_model_spec.py -v
"""

from unittest.mock import MagicMock, patch

import pytest

from predcheck.model_spec import (
    MODELS,
    NORMAL_MODEL,
    STUDENT_T_MODEL,
    LikelihoodSpec,
    PriorSpec,
    RegressionModelSpec,
    get_model_spec,
)

# ── Frozen Immutability ──────────────────────────────────────────────────────


class TestFrozenImmutability:
    def test_cannot_set_distribution(self):
        spec = PriorSpec("normal", {"mu": 0, "sigma": 1})
        with pytest.raises(AttributeError):
            spec.distribution = "gamma"  # type: ignore[misc]

    def test_cannot_set_likelihood(self):
        with pytest.raises(AttributeError):
            NORMAL_MODEL.likelihood = LikelihoodSpec("student_t_mixture")  # type: ignore[misc]


# ── describe() ───────────────────────────────────────────────────────────────


class TestDescribe:
    def test_normal(self):
        assert PriorSpec("normal", {"mu": 0, "sigma": 100}).describe() == "Normal(mu=0, sigma=100)"

    def test_gamma(self):
        spec = PriorSpec("gamma", {"alpha": 0.01, "beta": 0.01})
        assert spec.describe() == "Gamma(alpha=0.01, beta=0.01)"

    def test_uniform(self):
        spec = PriorSpec("uniform", {"lower": 1.1, "upper": 10})
        assert spec.describe() == "Uniform(lower=1.1, upper=10)"

    def test_halfnormal(self):
        assert PriorSpec("halfnormal", {"sigma": 1}).describe() == "HalfNormal(sigma=1)"

    def test_normal_likelihood(self):
        assert LikelihoodSpec("normal").describe() == "y[i] ~ Normal(mu[i], tau)"

    def test_mixture_likelihood_mentions_weights(self):
        text = LikelihoodSpec("student_t_mixture").describe()
        assert "tau * w[i]" in text
        assert "Gamma(nu/2, nu/2)" in text

    def test_model_describe_one_line_per_prior_plus_likelihood(self):
        lines = STUDENT_T_MODEL.describe()
        assert len(lines) == 4
        assert lines[0].startswith("beta ~ Normal(")
        assert lines[2] == "nu ~ Uniform(lower=1.1, upper=10.0)"


# ── Registered models ────────────────────────────────────────────────────────


class TestRegisteredModels:
    def test_normal_priors(self):
        assert NORMAL_MODEL.priors["beta"] == PriorSpec("normal", {"mu": 0, "sigma": 100.0})
        assert NORMAL_MODEL.priors["tau"] == PriorSpec("gamma", {"alpha": 0.01, "beta": 0.01})
        assert "nu" not in NORMAL_MODEL.priors

    def test_student_t_priors(self):
        assert STUDENT_T_MODEL.priors["nu"] == PriorSpec("uniform", {"lower": 1.1, "upper": 10.0})
        assert STUDENT_T_MODEL.family == "student_t_mixture"
        assert STUDENT_T_MODEL.likelihood.needs_df

    def test_student_t_retains_weights(self):
        assert "w" in STUDENT_T_MODEL.retain
        assert "w" not in NORMAL_MODEL.retain

    def test_both_retain_mean_and_residuals(self):
        for spec in MODELS.values():
            assert {"beta", "tau", "sigma", "mu", "resid"} <= set(spec.retain)

    def test_registered_models_validate(self):
        for spec in MODELS.values():
            spec.validate()

    def test_get_model_spec(self):
        assert get_model_spec("normal") is NORMAL_MODEL
        assert get_model_spec("student_t") is STUDENT_T_MODEL

    def test_get_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model: 'probit'"):
            get_model_spec("probit")


# ── validate() ───────────────────────────────────────────────────────────────


class TestValidate:
    def test_unknown_family(self):
        spec = RegressionModelSpec(
            name="bad",
            label="Bad",
            priors=dict(NORMAL_MODEL.priors),
            likelihood=LikelihoodSpec("laplace"),
        )
        with pytest.raises(ValueError, match="Unknown likelihood family: 'laplace'"):
            spec.validate()

    def test_missing_tau(self):
        spec = RegressionModelSpec(
            name="no_tau",
            label="No tau",
            priors={"beta": NORMAL_MODEL.priors["beta"]},
        )
        with pytest.raises(ValueError, match="missing priors for: tau"):
            spec.validate()

    def test_student_t_requires_nu(self):
        spec = RegressionModelSpec(
            name="t_no_nu",
            label="t without nu",
            priors=dict(NORMAL_MODEL.priors),
            likelihood=LikelihoodSpec("student_t_mixture"),
        )
        with pytest.raises(ValueError, match="nu"):
            spec.validate()


# ── build() dispatch ─────────────────────────────────────────────────────────


class TestBuild:
    """build() dispatches to the correct PyMC distribution."""

    def test_build_normal_with_dims(self):
        spec = PriorSpec("normal", {"mu": 0, "sigma": 100})
        mock_pm = MagicMock()
        mock_pm.Normal.return_value = "beta_var"
        with patch.dict("sys.modules", {"pymc": mock_pm}):
            result = spec.build("beta", dims="coef")
        mock_pm.Normal.assert_called_once_with("beta", mu=0, sigma=100, dims="coef")
        assert result == "beta_var"

    def test_build_gamma_scalar(self):
        spec = PriorSpec("gamma", {"alpha": 0.01, "beta": 0.01})
        mock_pm = MagicMock()
        with patch.dict("sys.modules", {"pymc": mock_pm}):
            spec.build("tau")
        mock_pm.Gamma.assert_called_once_with("tau", alpha=0.01, beta=0.01)

    def test_build_uniform(self):
        spec = PriorSpec("uniform", {"lower": 1.1, "upper": 10})
        mock_pm = MagicMock()
        with patch.dict("sys.modules", {"pymc": mock_pm}):
            spec.build("nu")
        mock_pm.Uniform.assert_called_once_with("nu", lower=1.1, upper=10)

    def test_build_exponential(self):
        spec = PriorSpec("exponential", {"lam": 1.0})
        mock_pm = MagicMock()
        with patch.dict("sys.modules", {"pymc": mock_pm}):
            spec.build("scale")
        mock_pm.Exponential.assert_called_once_with("scale", lam=1.0)

    def test_build_unknown_distribution(self):
        spec = PriorSpec("cauchy", {"alpha": 0, "beta": 1})
        mock_pm = MagicMock()
        with patch.dict("sys.modules", {"pymc": mock_pm}):
            with pytest.raises(ValueError, match="Unknown prior distribution: 'cauchy'"):
                spec.build("beta")
