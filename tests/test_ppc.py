"""
Tests for posterior predictive check computations in analysis/03_ppc/ppc_data.py.

Uses synthetic InferenceData fixtures (conftest.make_idata) and hand-built
replicate matrices to verify the comparison frame, residual tail check,
summary battery, log-likelihood and LOO wrappers.

Run: uv run pytest tests/test_ppc.py -v
"""

import sys
from pathlib import Path

import numpy as np
import polars as pl
import pytest
from scipy import stats

sys.path.insert(0, str(Path(__file__).parent.parent))

import arviz as az
from analysis.ppc_data import (
    BATTERY_STATS,
    OBSERVED,
    SIMULATED,
    add_log_likelihood_to_idata,
    battery_table,
    build_comparison_frame,
    compare_models,
    compute_log_likelihood,
    compute_loo,
    compute_residuals,
    compute_tail_check,
    run_ppc_battery,
    summarize_pareto_k,
)
from conftest import make_idata

from predcheck.dataset import simulate_dataset
from predcheck.draws import PosteriorDraws
from predcheck.model_spec import NORMAL_MODEL, STUDENT_T_MODEL
from predcheck.predictive import simulate_replicates

# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def small_matrix() -> tuple[np.ndarray, np.ndarray]:
    """Observed 0..3 and three replicates shifted by -1, 0 and +1."""
    observed = np.array([0.0, 1.0, 2.0, 3.0])
    replicates = np.column_stack([observed - 1.0, observed, observed + 1.0])
    return observed, replicates


@pytest.fixture(scope="module")
def tail_case():
    """A 2000-observation t_3 dataset with near-truth posteriors for both models."""
    dataset = simulate_dataset(2000, np.random.default_rng(42), noise="student_t")
    normal = make_idata(dataset, family="normal", n_draws=50, seed=2)
    student = make_idata(dataset, family="student_t_mixture", n_draws=50, seed=3)
    return (
        dataset,
        PosteriorDraws.from_idata(normal, NORMAL_MODEL),
        PosteriorDraws.from_idata(student, STUDENT_T_MODEL),
    )


@pytest.fixture
def normal_ll_idata(t_dataset, normal_idata) -> az.InferenceData:
    draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
    return add_log_likelihood_to_idata(normal_idata, compute_log_likelihood(draws, t_dataset))


@pytest.fixture
def t_ll_idata(t_dataset, t_idata) -> az.InferenceData:
    draws = PosteriorDraws.from_idata(t_idata, STUDENT_T_MODEL)
    return add_log_likelihood_to_idata(t_idata, compute_log_likelihood(draws, t_dataset))


# ── Comparison Frame ────────────────────────────────────────────────────────


class TestComparisonFrame:
    def test_columns_and_height(self, small_matrix):
        observed, replicates = small_matrix
        df = build_comparison_frame(observed, replicates)
        assert df.columns == ["source", "replicate", "value"]
        assert df.height == 4 + 12
        assert df["replicate"].dtype == pl.Int64

    def test_observed_rows_have_null_replicate(self, small_matrix):
        observed, replicates = small_matrix
        df = build_comparison_frame(observed, replicates)
        obs = df.filter(pl.col("source") == OBSERVED)
        assert obs.height == 4
        assert obs["replicate"].null_count() == 4
        np.testing.assert_array_equal(obs["value"].to_numpy(), observed)

    def test_replicates_stay_contiguous(self, small_matrix):
        observed, replicates = small_matrix
        df = build_comparison_frame(observed, replicates)
        rep1 = df.filter((pl.col("source") == SIMULATED) & (pl.col("replicate") == 1))
        np.testing.assert_array_equal(rep1["value"].to_numpy(), replicates[:, 1])

    def test_no_replicates_gives_observed_only(self, small_matrix):
        observed, _ = small_matrix
        df = build_comparison_frame(observed, np.empty((4, 0)))
        assert df.height == 4
        assert df["source"].unique().to_list() == [OBSERVED]

    def test_value_range_drops_extremes(self):
        observed = np.array([1.0, -150.0, 2.0])
        replicates = np.array([[0.0], [99.0], [101.0]])
        df = build_comparison_frame(observed, replicates, value_range=100.0)
        assert df.height == 4
        assert df["value"].abs().max() <= 100.0

    def test_value_range_none_keeps_all(self):
        observed = np.array([1.0, -150.0, 2.0])
        df = build_comparison_frame(observed, np.zeros((3, 2)), value_range=None)
        assert df.height == 9

    def test_nonpositive_value_range_raises(self, small_matrix):
        observed, replicates = small_matrix
        with pytest.raises(ValueError, match="value_range"):
            build_comparison_frame(observed, replicates, value_range=0.0)

    def test_row_mismatch_raises(self, small_matrix):
        observed, _ = small_matrix
        with pytest.raises(ValueError, match="rows but the observed"):
            build_comparison_frame(observed, np.zeros((5, 2)))

    def test_one_dimensional_replicates_raise(self, small_matrix):
        observed, _ = small_matrix
        with pytest.raises(ValueError, match="2-D"):
            build_comparison_frame(observed, np.zeros(4))

    def test_accepts_predictive_replicates(self, t_dataset, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        reps = simulate_replicates(draws, t_dataset, 5, np.random.default_rng(0))
        df = build_comparison_frame(t_dataset.y, reps, value_range=None)
        assert df.height == t_dataset.n_obs * 6


# ── Residuals ───────────────────────────────────────────────────────────────


class TestResiduals:
    def test_difference(self):
        np.testing.assert_allclose(compute_residuals([3.0, 1.0], [1.0, 1.5]), [2.0, -0.5])

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="shape"):
            compute_residuals(np.zeros(3), np.zeros(4))


# ── Tail Check ──────────────────────────────────────────────────────────────


class TestTailCheck:
    def test_normal_model_underpredicts_tails(self, tail_case):
        dataset, normal_draws, _ = tail_case
        reps = simulate_replicates(normal_draws, dataset, 50, np.random.default_rng(0))
        result = compute_tail_check(dataset, normal_draws, reps)
        assert result["ratio"] > 1.3
        assert result["bayesian_p"] < 0.05
        assert result["gap"] > 0

    def test_student_t_model_matches_tails(self, tail_case):
        dataset, normal_draws, t_draws = tail_case
        rng = np.random.default_rng(1)
        n_result = compute_tail_check(
            dataset, normal_draws, simulate_replicates(normal_draws, dataset, 50, rng)
        )
        t_result = compute_tail_check(
            dataset, t_draws, simulate_replicates(t_draws, dataset, 50, rng)
        )
        assert abs(t_result["ratio"] - 1.0) < 0.3
        assert abs(t_result["gap"]) < abs(n_result["gap"])

    def test_result_fields(self, tail_case):
        dataset, normal_draws, _ = tail_case
        reps = simulate_replicates(normal_draws, dataset, 10, np.random.default_rng(0))
        result = compute_tail_check(dataset, normal_draws, reps, q=0.95)
        assert result["quantile"] == 0.95
        assert result["n_replicates"] == 10
        assert result["replicated_q"].shape == (10,)
        assert result["replicated_q_mean"] == pytest.approx(result["replicated_q"].mean())
        assert 0.0 <= result["bayesian_p"] <= 1.0

    def test_no_replicates_gives_nan(self, t_dataset, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        reps = simulate_replicates(draws, t_dataset, 0, np.random.default_rng(0))
        result = compute_tail_check(t_dataset, draws, reps)
        assert np.isfinite(result["observed_q"])
        assert np.isnan(result["ratio"])
        assert np.isnan(result["bayesian_p"])
        assert result["n_replicates"] == 0

    @pytest.mark.parametrize("q", [0.0, 1.0, 1.5])
    def test_invalid_quantile_raises(self, t_dataset, normal_idata, q):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        reps = simulate_replicates(draws, t_dataset, 2, np.random.default_rng(0))
        with pytest.raises(ValueError, match="Quantile"):
            compute_tail_check(t_dataset, draws, reps, q=q)

    def test_dataset_mismatch_raises(self, t_dataset, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        reps = simulate_replicates(draws, t_dataset, 2, np.random.default_rng(0))
        small = simulate_dataset(50, np.random.default_rng(0))
        with pytest.raises(ValueError, match="rows but the dataset"):
            compute_tail_check(small, draws, reps)


# ── PPC Battery ─────────────────────────────────────────────────────────────


class TestPPCBattery:
    def test_returns_all_keys(self, small_matrix):
        observed, replicates = small_matrix
        result = run_ppc_battery(observed, replicates)
        assert result["n_replicates"] == 3
        assert result["n_obs"] == 4
        for name in BATTERY_STATS:
            for key in (
                f"observed_{name}",
                f"replicated_{name}",
                f"replicated_{name}_mean",
                f"replicated_{name}_sd",
                f"bayesian_p_{name}",
            ):
                assert key in result

    def test_known_values(self, small_matrix):
        observed, replicates = small_matrix
        result = run_ppc_battery(observed, replicates)
        assert result["observed_mean"] == pytest.approx(1.5)
        np.testing.assert_allclose(result["replicated_mean"], [0.5, 1.5, 2.5])
        assert result["replicated_mean_mean"] == pytest.approx(1.5)
        # Shifted copies: 2 of 3 replicate means are >= the observed mean
        assert result["bayesian_p_mean"] == pytest.approx(2 / 3)
        # SD is shift-invariant, so every replicate ties the observed SD
        assert result["bayesian_p_sd"] == pytest.approx(1.0)

    def test_no_replicates_gives_nan(self, small_matrix):
        observed, _ = small_matrix
        result = run_ppc_battery(observed, np.empty((4, 0)))
        assert result["n_replicates"] == 0
        assert result["observed_max"] == 3.0
        assert np.isnan(result["bayesian_p_max"])
        assert result["replicated_max"].shape == (0,)

    def test_row_mismatch_raises(self, small_matrix):
        observed, _ = small_matrix
        with pytest.raises(ValueError, match="rows"):
            run_ppc_battery(observed, np.zeros((3, 2)))

    def test_table(self, small_matrix):
        observed, replicates = small_matrix
        table = battery_table(run_ppc_battery(observed, replicates))
        assert table.height == len(BATTERY_STATS)
        assert table["statistic"].to_list() == list(BATTERY_STATS)
        assert table.columns == [
            "statistic", "observed", "replicated_mean", "replicated_sd", "bayesian_p"
        ]


# ── Log-Likelihood ──────────────────────────────────────────────────────────


class TestLogLikelihood:
    def test_shape(self, t_dataset, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        ds = compute_log_likelihood(draws, t_dataset)
        assert ds["y"].dims == ("chain", "draw", "obs")
        assert ds["y"].shape == (2, 100, t_dataset.n_obs)

    def test_normal_matches_scipy(self, t_dataset, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        ds = compute_log_likelihood(draws, t_dataset)
        r = 130  # chain 1, draw 30
        expected = stats.norm.logpdf(t_dataset.y, loc=draws.mu[r], scale=draws.sigma[r])
        np.testing.assert_allclose(ds["y"].values[1, 30], expected)

    def test_student_t_matches_scipy(self, t_dataset, t_idata):
        draws = PosteriorDraws.from_idata(t_idata, STUDENT_T_MODEL)
        ds = compute_log_likelihood(draws, t_dataset)
        expected = stats.t.logpdf(
            t_dataset.y, df=draws.nu[7], loc=draws.mu[7], scale=draws.sigma[7]
        )
        np.testing.assert_allclose(ds["y"].values[0, 7], expected)

    def test_rebuilds_mean_without_mu(self, t_dataset):
        idata = make_idata(t_dataset, with_mu=False)
        draws = PosteriorDraws.from_idata(idata, NORMAL_MODEL)
        ds = compute_log_likelihood(draws, t_dataset)
        assert np.all(np.isfinite(ds["y"].values))

    def test_dataset_mismatch_raises(self, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        small = simulate_dataset(50, np.random.default_rng(0))
        with pytest.raises(ValueError, match="Stored mean vectors"):
            compute_log_likelihood(draws, small)


class TestAddLogLikelihood:
    def test_group_added(self, normal_ll_idata):
        assert hasattr(normal_ll_idata, "log_likelihood")
        assert "y" in normal_ll_idata.log_likelihood

    def test_original_unchanged(self, t_dataset, normal_idata):
        draws = PosteriorDraws.from_idata(normal_idata, NORMAL_MODEL)
        add_log_likelihood_to_idata(normal_idata, compute_log_likelihood(draws, t_dataset))
        assert not hasattr(normal_idata, "log_likelihood")

    def test_posterior_preserved(self, normal_ll_idata, normal_idata):
        np.testing.assert_array_equal(
            normal_ll_idata.posterior["beta"].values, normal_idata.posterior["beta"].values
        )


# ── LOO ─────────────────────────────────────────────────────────────────────


class TestLOO:
    def test_loo_smoke(self, normal_ll_idata):
        loo_result = compute_loo(normal_ll_idata)
        assert hasattr(loo_result, "elpd_loo")
        assert loo_result.elpd_loo < 0

    def test_pareto_summary(self, t_dataset, normal_ll_idata):
        summary = summarize_pareto_k(compute_loo(normal_ll_idata))
        total = summary["good"] + summary["ok"] + summary["bad"] + summary["very_bad"]
        assert total == summary["total"] == t_dataset.n_obs
        assert summary["max_k"] >= summary["mean_k"]

    def test_compare_prefers_student_t_on_t_data(self, normal_ll_idata, t_ll_idata):
        comparison, loo_results = compare_models(
            {"normal": normal_ll_idata, "student_t": t_ll_idata}
        )
        assert set(loo_results) == {"normal", "student_t"}
        assert comparison.index[0] == "student_t"
        assert comparison.loc["normal", "elpd_diff"] > 0
