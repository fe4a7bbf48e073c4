"""MCMC inference for regression model specs.

``build_regression_graph`` turns a ``RegressionModelSpec`` into a PyMC model;
``PyMCEngine`` samples it (nutpie's Rust NUTS by default, ``pm.sample`` as the
fallback) and hands back typed ``PosteriorDraws``. Convergence is checked on
every fit and failures are surfaced as ``ConvergenceWarning``, never dropped.
"""

from __future__ import annotations

import time
import warnings
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import arviz as az
import numpy as np
import pymc as pm
import pytensor.tensor as pt

from predcheck.config import (
    BFMI_THRESHOLD,
    DEFAULT_SAMPLER,
    ESS_THRESHOLD,
    MAX_DIVERGENCES,
    N_CHAINS,
    N_DRAWS,
    N_TUNE,
    RANDOM_SEED,
    RHAT_THRESHOLD,
    SAMPLERS,
)
from predcheck.dataset import RegressionDataset
from predcheck.draws import PosteriorDraws
from predcheck.model_spec import RegressionModelSpec

# Scalar parameters checked for convergence; per-observation latents are skipped
CONVERGENCE_VARS = ["beta", "sigma", "nu"]


class ConvergenceWarning(UserWarning):
    """MCMC diagnostics (R-hat, ESS, divergences, E-BFMI) did not pass."""


@runtime_checkable
class InferenceEngine(Protocol):
    """Anything that can turn data plus a model spec into posterior draws."""

    def fit(self, dataset: RegressionDataset, spec: RegressionModelSpec) -> PosteriorDraws: ...


def build_regression_graph(dataset: RegressionDataset, spec: RegressionModelSpec) -> pm.Model:
    """Build the PyMC model graph for ``spec`` over ``dataset`` (no sampling).

    Model structure:
        beta ~ prior (one per coefficient), tau ~ prior
        mu = X @ beta
        normal:             y ~ Normal(mu, tau)
        student_t_mixture:  nu ~ prior, w ~ Gamma(nu/2, nu/2), y ~ Normal(mu, tau * w)

    Deterministics sigma, mu and resid are only recorded when retained.
    """
    spec.validate()

    X = dataset.covariates
    y = dataset.y
    coords = {
        "coef": list(dataset.coef_names),
        "obs_id": np.arange(dataset.n_obs),
    }
    if X.shape[1] != len(coords["coef"]):
        msg = f"Design matrix has {X.shape[1]} columns but {len(coords['coef'])} coefficient names"
        raise ValueError(msg)

    with pm.Model(coords=coords) as model:
        beta = spec.priors["beta"].build("beta", dims="coef")
        tau = spec.priors["tau"].build("tau")

        if "sigma" in spec.retain:
            pm.Deterministic("sigma", 1.0 / pt.sqrt(tau))

        mu = pt.dot(X, beta)
        if "mu" in spec.retain:
            mu = pm.Deterministic("mu", mu, dims="obs_id")
        if "resid" in spec.retain:
            pm.Deterministic("resid", y - mu, dims="obs_id")

        if spec.likelihood.needs_df:
            nu = spec.priors["nu"].build("nu")
            w = pm.Gamma("w", alpha=nu / 2.0, beta=nu / 2.0, dims="obs_id")
            pm.Normal(spec.likelihood.observed, mu=mu, tau=tau * w, observed=y, dims="obs_id")
        else:
            pm.Normal(spec.likelihood.observed, mu=mu, tau=tau, observed=y, dims="obs_id")

    return model


def check_convergence(idata: az.InferenceData, label: str) -> dict:
    """Check R-hat, ESS, divergences and E-BFMI for the scalar parameters.

    Prints one line per check, warns with ConvergenceWarning if anything
    fails, and returns all metrics plus an ``all_ok`` flag.
    """
    diag: dict = {}
    available_vars = [v for v in CONVERGENCE_VARS if v in idata.posterior]
    n_chains = int(idata.posterior.sizes["chain"])

    rhat_ok = True
    ess_ok = True
    if n_chains > 1:
        rhat = az.rhat(idata, var_names=available_vars)
        for var in available_vars:
            max_rhat = float(rhat[var].max())
            diag[f"{var}_rhat_max"] = max_rhat
            ok = max_rhat < RHAT_THRESHOLD
            rhat_ok = rhat_ok and ok
            print(f"  R-hat ({var}): max = {max_rhat:.4f}  {'OK' if ok else 'WARNING'}")
    else:
        print("  R-hat: skipped (single chain)")

    ess = az.ess(idata, var_names=available_vars)
    for var in available_vars:
        min_ess = float(ess[var].min())
        diag[f"{var}_ess_min"] = min_ess
        ok = min_ess > ESS_THRESHOLD
        ess_ok = ess_ok and ok
        print(f"  ESS ({var}): min = {min_ess:.0f}  {'OK' if ok else 'WARNING'}")

    sample_stats = getattr(idata, "sample_stats", None)
    div_ok = True
    bfmi_ok = True
    if sample_stats is not None and "diverging" in sample_stats:
        divergences = int(sample_stats["diverging"].sum().values)
        diag["divergences"] = divergences
        div_ok = divergences < MAX_DIVERGENCES
        print(f"  Divergences: {divergences}  {'OK' if div_ok else 'WARNING'}")
    if sample_stats is not None and "energy" in sample_stats:
        bfmi_values = az.bfmi(idata)
        diag["ebfmi"] = [float(v) for v in bfmi_values]
        bfmi_ok = all(v > BFMI_THRESHOLD for v in bfmi_values)
        for i, v in enumerate(bfmi_values):
            print(f"  E-BFMI chain {i}: {v:.3f}  {'OK' if v > BFMI_THRESHOLD else 'WARNING'}")

    diag["all_ok"] = rhat_ok and ess_ok and div_ok and bfmi_ok
    if diag["all_ok"]:
        print("  CONVERGENCE: ALL CHECKS PASSED")
    else:
        print("  CONVERGENCE: SOME CHECKS FAILED — inspect diagnostics")
        warnings.warn(
            f"{label}: MCMC convergence checks failed "
            f"(R-hat ok={rhat_ok}, ESS ok={ess_ok}, divergences ok={div_ok}, "
            f"E-BFMI ok={bfmi_ok}). Posterior draws may be unreliable.",
            ConvergenceWarning,
            stacklevel=2,
        )
    return diag


@dataclass(frozen=True)
class PyMCEngine:
    """Sample regression models with PyMC, via nutpie or pm.sample."""

    draws: int = N_DRAWS
    tune: int = N_TUNE
    chains: int = N_CHAINS
    seed: int = RANDOM_SEED
    sampler: str = DEFAULT_SAMPLER
    progress_bar: bool = True

    def __post_init__(self) -> None:
        if self.sampler not in SAMPLERS:
            msg = f"Unknown sampler: {self.sampler!r}. Supported: {', '.join(SAMPLERS)}"
            raise ValueError(msg)
        if self.draws < 1 or self.chains < 1 or self.tune < 0:
            msg = (
                f"draws and chains must be positive and tune non-negative, got "
                f"draws={self.draws}, tune={self.tune}, chains={self.chains}"
            )
            raise ValueError(msg)

    def sample(
        self, dataset: RegressionDataset, spec: RegressionModelSpec
    ) -> tuple[az.InferenceData, float]:
        """Build and sample the model. Returns (InferenceData, sampling_time_seconds)."""
        model = build_regression_graph(dataset, spec)
        for line in spec.describe():
            print(f"    {line}")

        print(f"  Sampling: {self.draws} draws, {self.tune} tune, {self.chains} chains")
        print(f"  seed={self.seed}, sampler={self.sampler}")

        t0 = time.time()
        if self.sampler == "nutpie":
            import nutpie

            print("  Compiling model with nutpie...")
            compiled = nutpie.compile_pymc_model(model)
            idata = nutpie.sample(
                compiled,
                draws=self.draws,
                tune=self.tune,
                chains=self.chains,
                seed=self.seed,
                progress_bar=self.progress_bar,
                store_divergences=True,
            )
        else:
            with model:
                idata = pm.sample(
                    draws=self.draws,
                    tune=self.tune,
                    chains=self.chains,
                    cores=self.chains,
                    random_seed=self.seed,
                    progressbar=self.progress_bar,
                )
        sampling_time = time.time() - t0

        print(f"  Sampling complete in {sampling_time:.1f}s")
        return idata, sampling_time

    def fit(self, dataset: RegressionDataset, spec: RegressionModelSpec) -> PosteriorDraws:
        """Sample, check convergence, and return typed posterior draws."""
        idata, _ = self.sample(dataset, spec)
        diagnostics = check_convergence(idata, spec.label)
        return PosteriorDraws.from_idata(idata, spec, diagnostics=diagnostics)
