"""Shared fixtures for predcheck tests.

Provides a small simulated dataset for each noise family and synthetic
InferenceData posteriors (built directly with xarray, no sampling) for the
Normal and Student-t regression models.
"""

import sys
from pathlib import Path

import arviz as az
import numpy as np
import pytest
import xarray as xr

sys.path.insert(0, str(Path(__file__).parent.parent))

from predcheck.config import COEF_NAMES, TRUE_COEFFICIENTS, TRUE_NU, TRUE_SIGMA
from predcheck.dataset import RegressionDataset, simulate_dataset

N_SMALL = 200


def make_idata(
    dataset: RegressionDataset,
    *,
    family: str = "normal",
    n_chains: int = 2,
    n_draws: int = 100,
    seed: int = 0,
    sigma: float = TRUE_SIGMA,
    with_mu: bool = True,
) -> az.InferenceData:
    """Posterior centred on the generating values, with small jitter per draw."""
    rng = np.random.default_rng(seed)
    shape = (n_chains, n_draws)
    beta = np.asarray(TRUE_COEFFICIENTS) + rng.normal(0, 0.05, size=(*shape, len(COEF_NAMES)))
    sigma_draws = sigma * np.exp(rng.normal(0, 0.02, size=shape))
    tau = 1.0 / sigma_draws**2

    coords = {
        "chain": np.arange(n_chains),
        "draw": np.arange(n_draws),
        "coef": list(COEF_NAMES),
        "obs_id": np.arange(dataset.n_obs),
    }
    data_vars = {
        "beta": (["chain", "draw", "coef"], beta),
        "tau": (["chain", "draw"], tau),
        "sigma": (["chain", "draw"], sigma_draws),
    }
    if with_mu:
        mu = np.einsum("cdk,nk->cdn", beta, dataset.covariates)
        data_vars["mu"] = (["chain", "draw", "obs_id"], mu)
        data_vars["resid"] = (["chain", "draw", "obs_id"], dataset.y - mu)
    if family == "student_t_mixture":
        nu = np.clip(TRUE_NU + rng.normal(0, 0.2, size=shape), 1.2, 9.9)
        data_vars["nu"] = (["chain", "draw"], nu)
        data_vars["w"] = (
            ["chain", "draw", "obs_id"],
            rng.gamma(2.0, 0.5, size=(*shape, dataset.n_obs)),
        )

    posterior = xr.Dataset(data_vars, coords=coords)
    sample_stats = xr.Dataset(
        {
            "diverging": (["chain", "draw"], np.zeros(shape, dtype=bool)),
            "energy": (["chain", "draw"], rng.normal(0, 1, size=shape)),
        },
        coords={"chain": coords["chain"], "draw": coords["draw"]},
    )
    return az.InferenceData(posterior=posterior, sample_stats=sample_stats)


# ── Dataset fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def t_dataset() -> RegressionDataset:
    """Small Student-t-noise dataset."""
    return simulate_dataset(N_SMALL, np.random.default_rng(42), noise="student_t")


@pytest.fixture
def normal_dataset() -> RegressionDataset:
    """Small Normal-noise dataset."""
    return simulate_dataset(N_SMALL, np.random.default_rng(42), noise="normal")


# ── Posterior fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def normal_idata(t_dataset) -> az.InferenceData:
    return make_idata(t_dataset, family="normal")


@pytest.fixture
def t_idata(t_dataset) -> az.InferenceData:
    return make_idata(t_dataset, family="student_t_mixture", seed=1)
