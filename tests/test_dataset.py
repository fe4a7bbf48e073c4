"""
Tests for the synthetic regression generator in predcheck/dataset.py.

Covers seed determinism, shapes and covariate supports, the two noise
families, frame round-tripping, and input validation.

Run: uv run pytest tests/test_dataset.py -v
"""

import numpy as np
import polars as pl
import pytest

from predcheck.config import COEF_NAMES, X2_TRIALS
from predcheck.dataset import (
    RegressionDataset,
    TrueParameters,
    describe_dataset,
    simulate_dataset,
)

# ── Determinism ──────────────────────────────────────────────────────────────


class TestDeterminism:
    """Identical seeds reproduce identical datasets."""

    def test_same_seed_bit_identical(self):
        a = simulate_dataset(500, np.random.default_rng(7))
        b = simulate_dataset(500, np.random.default_rng(7))
        np.testing.assert_array_equal(a.y, b.y)
        np.testing.assert_array_equal(a.x1, b.x1)
        np.testing.assert_array_equal(a.x2, b.x2)

    def test_different_seed_differs(self):
        a = simulate_dataset(500, np.random.default_rng(7))
        b = simulate_dataset(500, np.random.default_rng(8))
        assert not np.array_equal(a.y, b.y)

    def test_covariates_shared_across_noise_families(self):
        """x1 and x2 are drawn before the noise, so the family does not change them."""
        t = simulate_dataset(300, np.random.default_rng(3), noise="student_t")
        n = simulate_dataset(300, np.random.default_rng(3), noise="normal")
        np.testing.assert_array_equal(t.x1, n.x1)
        np.testing.assert_array_equal(t.x2, n.x2)


# ── Shapes and supports ──────────────────────────────────────────────────────


class TestShapes:
    def test_lengths(self, t_dataset):
        assert t_dataset.n_obs == 200
        assert t_dataset.y.shape == (200,)
        assert t_dataset.x1.shape == (200,)
        assert t_dataset.x2.shape == (200,)

    def test_design_matrix(self, t_dataset):
        X = t_dataset.covariates
        assert X.shape == (200, 3)
        np.testing.assert_array_equal(X[:, 0], 1.0)
        np.testing.assert_array_equal(X[:, 1], t_dataset.x1)
        np.testing.assert_array_equal(X[:, 2], t_dataset.x2)

    def test_x2_is_binomial_count(self, t_dataset):
        assert np.all(t_dataset.x2 == np.round(t_dataset.x2))
        assert t_dataset.x2.min() >= 0
        assert t_dataset.x2.max() <= X2_TRIALS

    def test_single_observation(self):
        ds = simulate_dataset(1, np.random.default_rng(0))
        assert ds.n_obs == 1

    def test_coef_names(self, t_dataset):
        assert t_dataset.coef_names == COEF_NAMES


# ── Noise families ───────────────────────────────────────────────────────────


class TestNoise:
    def test_normal_noise_residual_sd(self):
        ds = simulate_dataset(20_000, np.random.default_rng(1), noise="normal")
        eps = ds.y - ds.covariates @ np.asarray(ds.truth.coefficients)
        assert abs(eps.std() - ds.truth.sigma) < 0.05

    def test_student_t_heavier_tails(self):
        """t_3 noise has a far larger 99.9th percentile than Normal noise of the same scale."""
        t = simulate_dataset(20_000, np.random.default_rng(1), noise="student_t")
        n = simulate_dataset(20_000, np.random.default_rng(1), noise="normal")
        eps_t = np.abs(t.y - t.covariates @ np.asarray(t.truth.coefficients))
        eps_n = np.abs(n.y - n.covariates @ np.asarray(n.truth.coefficients))
        assert np.quantile(eps_t, 0.999) > 2 * np.quantile(eps_n, 0.999)

    def test_custom_truth(self):
        truth = TrueParameters(coefficients=(0.0, 0.0, 0.0), sigma=1.0, nu=5.0)
        ds = simulate_dataset(10_000, np.random.default_rng(2), noise="normal", truth=truth)
        assert abs(ds.y.mean()) < 0.05
        assert ds.truth is truth


# ── Validation ───────────────────────────────────────────────────────────────


class TestValidation:
    def test_zero_n_raises(self):
        with pytest.raises(ValueError, match="positive"):
            simulate_dataset(0, np.random.default_rng(0))

    def test_unknown_noise_raises(self):
        with pytest.raises(ValueError, match="Unknown noise family"):
            simulate_dataset(10, np.random.default_rng(0), noise="cauchy")

    def test_nonpositive_sigma_raises(self):
        with pytest.raises(ValueError, match="sigma"):
            simulate_dataset(10, np.random.default_rng(0), truth=TrueParameters(sigma=0.0))

    def test_wrong_coefficient_count_raises(self):
        with pytest.raises(ValueError, match="coefficients"):
            simulate_dataset(
                10, np.random.default_rng(0), truth=TrueParameters(coefficients=(1.0, 2.0))
            )

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError, match="mismatch"):
            RegressionDataset(y=np.zeros(3), x1=np.zeros(3), x2=np.zeros(2))


# ── Frames and summaries ─────────────────────────────────────────────────────


class TestFrames:
    def test_to_frame_columns(self, t_dataset):
        df = t_dataset.to_frame()
        assert df.columns == ["obs_id", "y", "x1", "x2"]
        assert df.height == t_dataset.n_obs

    def test_from_frame_restores_values(self, t_dataset):
        restored = RegressionDataset.from_frame(t_dataset.to_frame(), noise="student_t")
        np.testing.assert_array_equal(restored.y, t_dataset.y)
        np.testing.assert_array_equal(restored.x2, t_dataset.x2)

    def test_from_frame_missing_column(self):
        with pytest.raises(ValueError, match="missing columns"):
            RegressionDataset.from_frame(pl.DataFrame({"y": [1.0], "x1": [0.0]}))

    def test_truth_dict_keys_by_coefficient(self):
        d = TrueParameters().to_dict()
        assert d["coefficients"] == {"intercept": 3.0, "x1": 1.0, "x2": 2.0}
        assert TrueParameters.from_dict(d) == TrueParameters()

    def test_truth_from_list(self):
        truth = TrueParameters.from_dict({"coefficients": [1, 2, 3], "sigma": 1, "nu": 4})
        assert truth.coefficients == (1.0, 2.0, 3.0)

    def test_describe_dataset(self, normal_dataset):
        summary = describe_dataset(normal_dataset)
        assert summary["n_obs"] == 200
        assert summary["y_min"] <= summary["y_mean"] <= summary["y_max"]
        assert summary["x2_max"] <= X2_TRIALS
