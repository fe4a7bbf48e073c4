"""
Tests for posterior summaries in analysis/02_fit/fit_data.py.

Run: uv run pytest tests/test_fit_data.py -v
"""

import sys
from pathlib import Path

import arviz as az
import numpy as np
import polars as pl
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.fit_data import compare_to_truth, summarize_posterior, true_values
from conftest import make_idata

from predcheck.config import COEF_NAMES
from predcheck.dataset import TrueParameters

# ── summarize_posterior() ────────────────────────────────────────────────────


class TestSummarizePosterior:
    def test_rows_normal(self, normal_idata):
        df = summarize_posterior(normal_idata)
        assert df["parameter"].to_list() == [
            "beta[intercept]",
            "beta[x1]",
            "beta[x2]",
            "sigma",
            "tau",
        ]

    def test_rows_student_t_include_nu(self, t_idata):
        df = summarize_posterior(t_idata)
        assert "nu" in df["parameter"].to_list()
        assert "w" not in " ".join(df["parameter"].to_list())

    def test_columns(self, normal_idata):
        df = summarize_posterior(normal_idata)
        assert df.columns == ["parameter", "mean", "sd", "hdi_lo", "hdi_hi", "rhat", "ess_bulk"]

    def test_mean_and_interval(self, normal_idata):
        df = summarize_posterior(normal_idata)
        row = df.filter(pl.col("parameter") == "beta[x1]").row(0, named=True)
        expected = float(normal_idata.posterior["beta"].sel(coef="x1").mean())
        assert row["mean"] == pytest.approx(expected)
        assert row["hdi_lo"] < row["mean"] < row["hdi_hi"]

    def test_var_names_subset(self, normal_idata):
        df = summarize_posterior(normal_idata, var_names=["sigma", "nu"])
        assert df["parameter"].to_list() == ["sigma"]

    def test_single_chain_rhat_nan(self, t_dataset):
        idata = make_idata(t_dataset, n_chains=1)
        df = summarize_posterior(idata, var_names=["sigma"])
        assert np.isnan(df["rhat"][0])

    def test_matrix_parameter_raises(self, normal_idata):
        posterior = normal_idata.posterior.assign(
            m=normal_idata.posterior["mu"].expand_dims({"extra": 2}, axis=-1)
        )
        with pytest.raises(ValueError, match="scalars and vectors only"):
            summarize_posterior(az.InferenceData(posterior=posterior), var_names=["m"])


# ── true_values() / compare_to_truth() ───────────────────────────────────────


class TestTruth:
    def test_true_values_student_t(self):
        values = true_values(TrueParameters(), COEF_NAMES, noise="student_t")
        assert values["beta[intercept]"] == 3.0
        assert values["sigma"] == 2.0
        assert values["tau"] == pytest.approx(0.25)
        assert values["nu"] == 3.0

    def test_true_values_normal_has_no_nu(self):
        values = true_values(TrueParameters(), COEF_NAMES, noise="normal")
        assert "nu" not in values

    def test_compare_covers_truth(self, normal_idata):
        summary = summarize_posterior(normal_idata)
        df = compare_to_truth(summary, true_values(TrueParameters(), COEF_NAMES))
        assert df["covered"].all()
        assert df["error"].abs().max() < 0.2

    def test_compare_flags_miss(self, t_dataset):
        idata = make_idata(t_dataset, sigma=3.5)
        summary = summarize_posterior(idata, var_names=["sigma"])
        df = compare_to_truth(summary, true_values(TrueParameters(), COEF_NAMES))
        assert df["covered"].to_list() == [False]
        assert df["error"][0] == pytest.approx(1.5, abs=0.1)

    def test_unknown_parameter_keeps_null(self, t_idata):
        summary = summarize_posterior(t_idata, var_names=["nu"])
        df = compare_to_truth(summary, true_values(TrueParameters(), COEF_NAMES, noise="normal"))
        assert df["truth"].null_count() == 1
        assert df["covered"].null_count() == 1
