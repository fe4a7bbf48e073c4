"""Posterior predictive check computations — pure functions, no I/O.

All functions take numpy arrays, typed posterior draws or InferenceData and
return polars frames, dicts or xarray datasets. No file reading, no prints,
fully testable with synthetic draws.

Log-likelihood is computed in numpy/scipy from the stored draws rather than by
rebuilding the PyMC model. The Student-t model's likelihood is the marginal
t density, with the latent mixing weights integrated out, so LOO is computed
per observation rather than per (observation, weight) pair.
"""

from __future__ import annotations

from typing import Any

import arviz as az
import numpy as np
import polars as pl
import xarray as xr
from numpy.typing import NDArray
from scipy import stats

from predcheck.config import TAIL_QUANTILE, VALUE_RANGE
from predcheck.dataset import RegressionDataset
from predcheck.draws import PosteriorDraws
from predcheck.predictive import PredictiveReplicates

OBSERVED = "Observed"
SIMULATED = "Simulated"

# Statistics compared by run_ppc_battery: name -> function of a 1-D array
BATTERY_STATS = {
    "mean": np.mean,
    "sd": lambda v: np.std(v, ddof=1),
    "min": np.min,
    "max": np.max,
    "q01": lambda v: np.quantile(v, 0.01),
    "q99": lambda v: np.quantile(v, 0.99),
}


def _replicate_values(replicates: PredictiveReplicates | NDArray) -> NDArray[np.floating]:
    values = replicates.values if isinstance(replicates, PredictiveReplicates) else replicates
    values = np.asarray(values, dtype=np.float64)
    if values.ndim != 2:
        msg = f"Replicates must be a 2-D (n_obs, k) matrix, got shape {values.shape}"
        raise ValueError(msg)
    return values


# ── Comparison Frame ─────────────────────────────────────────────────────────


def build_comparison_frame(
    observed: NDArray[np.floating],
    replicates: PredictiveReplicates | NDArray,
    *,
    value_range: float | None = VALUE_RANGE,
) -> pl.DataFrame:
    """Stack observed and simulated responses into one long frame.

    Columns: ``source`` (Observed / Simulated), ``replicate`` (null for the
    observed rows, else the replicate column index) and ``value``. With
    ``value_range`` set, rows with ``|value| > value_range`` are dropped.
    An empty replicate matrix yields Observed rows only.

    Raises:
        ValueError: If the replicate matrix has a different number of rows than
            the observed vector.
    """
    observed = np.asarray(observed, dtype=np.float64)
    values = _replicate_values(replicates)
    if values.shape[0] != observed.shape[0]:
        msg = (
            f"Replicates have {values.shape[0]} rows but the observed response "
            f"has {observed.shape[0]} entries"
        )
        raise ValueError(msg)

    n, k = values.shape
    obs_df = pl.DataFrame(
        {
            "source": [OBSERVED] * n,
            "replicate": pl.Series([None] * n, dtype=pl.Int64),
            "value": observed,
        }
    )
    sim_df = pl.DataFrame(
        {
            "source": [SIMULATED] * (n * k),
            # Column-major flattening keeps each replicate contiguous
            "replicate": np.repeat(np.arange(k, dtype=np.int64), n),
            "value": values.ravel(order="F"),
        },
        schema={"source": pl.Utf8, "replicate": pl.Int64, "value": pl.Float64},
    )
    df = pl.concat([obs_df.cast({"value": pl.Float64}), sim_df])

    if value_range is not None:
        if value_range <= 0:
            msg = f"value_range must be positive, got {value_range}"
            raise ValueError(msg)
        df = df.filter(pl.col("value").abs() <= value_range)
    return df


# ── Residual Tail Check ──────────────────────────────────────────────────────


def compute_residuals(y: NDArray[np.floating], mu: NDArray[np.floating]) -> NDArray[np.floating]:
    """Residuals ``y - mu``.

    Raises:
        ValueError: If the two vectors differ in length.
    """
    y = np.asarray(y, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    if y.shape != mu.shape:
        msg = f"Response has shape {y.shape} but mean has shape {mu.shape}"
        raise ValueError(msg)
    return y - mu


def compute_tail_check(
    dataset: RegressionDataset,
    draws: PosteriorDraws,
    replicates: PredictiveReplicates,
    *,
    q: float = TAIL_QUANTILE,
) -> dict[str, Any]:
    """Compare the upper quantile of |residual| between observed and simulated data.

    The observed residual is taken against the posterior-mean mean vector; each
    simulated residual against the mean vector of the draw that generated it.
    A model with too-light tails produces simulated quantiles well below the
    observed one (ratio > 1, p-value near 0).

    Returns dict with:
      - observed_q: q-quantile of |y - E[mu]|
      - replicated_q: per-replicate quantiles of |y_rep - mu_r|
      - replicated_q_mean / replicated_q_sd
      - ratio: observed_q / replicated_q_mean
      - gap: observed_q - replicated_q_mean
      - bayesian_p: fraction of replicates with quantile >= observed_q
    An empty replicate set gives NaN for every replicate-based statistic.
    """
    if not 0.0 < q < 1.0:
        msg = f"Quantile must lie in (0, 1), got {q}"
        raise ValueError(msg)
    if replicates.n_obs != dataset.n_obs:
        msg = f"Replicates have {replicates.n_obs} rows but the dataset has {dataset.n_obs}"
        raise ValueError(msg)

    covariates = dataset.covariates
    observed_resid = compute_residuals(dataset.y, draws.posterior_mean_mu(covariates))
    observed_q = float(np.quantile(np.abs(observed_resid), q))

    replicated_q = np.empty(replicates.n_replicates, dtype=np.float64)
    for j, r in enumerate(replicates.draw_indices):
        mu_r = draws.mean_vector(int(r), covariates)
        sim_resid = compute_residuals(replicates.values[:, j], mu_r)
        replicated_q[j] = np.quantile(np.abs(sim_resid), q)

    if replicated_q.size == 0:
        mean_q = sd_q = ratio = gap = p_value = float("nan")
    else:
        mean_q = float(replicated_q.mean())
        sd_q = float(replicated_q.std())
        ratio = observed_q / mean_q if mean_q > 0 else float("nan")
        gap = observed_q - mean_q
        p_value = float(np.mean(replicated_q >= observed_q))

    return {
        "quantile": q,
        "observed_q": observed_q,
        "replicated_q": replicated_q,
        "replicated_q_mean": mean_q,
        "replicated_q_sd": sd_q,
        "ratio": ratio,
        "gap": gap,
        "bayesian_p": p_value,
        "n_replicates": int(replicated_q.size),
    }


# ── PPC Battery ──────────────────────────────────────────────────────────────


def run_ppc_battery(
    observed: NDArray[np.floating],
    replicates: PredictiveReplicates | NDArray,
) -> dict[str, Any]:
    """Compare summary statistics of the observed response to the replicates.

    For each statistic in BATTERY_STATS returns the observed value, the
    replicated mean and SD, and the Bayesian p-value P(T(y_rep) >= T(y)).
    Replicated per-replicate values are kept under ``replicated_<stat>`` for
    plotting. With no replicates every replicate-based number is NaN.
    """
    observed = np.asarray(observed, dtype=np.float64)
    values = _replicate_values(replicates)
    if values.shape[0] != observed.shape[0]:
        msg = (
            f"Replicates have {values.shape[0]} rows but the observed response "
            f"has {observed.shape[0]} entries"
        )
        raise ValueError(msg)

    k = values.shape[1]
    result: dict[str, Any] = {"n_replicates": k, "n_obs": int(observed.shape[0])}
    for name, fn in BATTERY_STATS.items():
        obs_stat = float(fn(observed))
        rep_stats = np.array([fn(values[:, j]) for j in range(k)], dtype=np.float64)
        result[f"observed_{name}"] = obs_stat
        result[f"replicated_{name}"] = rep_stats
        if k == 0:
            result[f"replicated_{name}_mean"] = float("nan")
            result[f"replicated_{name}_sd"] = float("nan")
            result[f"bayesian_p_{name}"] = float("nan")
        else:
            result[f"replicated_{name}_mean"] = float(rep_stats.mean())
            result[f"replicated_{name}_sd"] = float(rep_stats.std())
            result[f"bayesian_p_{name}"] = float(np.mean(rep_stats >= obs_stat))
    return result


def battery_table(battery: dict[str, Any]) -> pl.DataFrame:
    """Flatten a run_ppc_battery() result into one row per statistic."""
    return pl.DataFrame(
        [
            {
                "statistic": name,
                "observed": battery[f"observed_{name}"],
                "replicated_mean": battery[f"replicated_{name}_mean"],
                "replicated_sd": battery[f"replicated_{name}_sd"],
                "bayesian_p": battery[f"bayesian_p_{name}"],
            }
            for name in BATTERY_STATS
        ],
        schema={
            "statistic": pl.Utf8,
            "observed": pl.Float64,
            "replicated_mean": pl.Float64,
            "replicated_sd": pl.Float64,
            "bayesian_p": pl.Float64,
        },
    )


# ── Log-Likelihood Computation ───────────────────────────────────────────────


def compute_log_likelihood(draws: PosteriorDraws, dataset: RegressionDataset) -> xr.Dataset:
    """Pointwise log-likelihood of the observed response for every draw.

    Normal model:    log N(y_i | mu_i, sigma)
    Student-t model: log t_nu(y_i | mu_i, sigma), the mixing weights integrated out

    Returns xarray Dataset with variable ``y`` of shape (chain, draw, obs).
    """
    y = dataset.y
    if draws.mu is not None:
        mu = draws.mu
        if mu.shape[1] != y.shape[0]:
            msg = (
                f"Stored mean vectors have {mu.shape[1]} entries but the dataset "
                f"has {y.shape[0]}"
            )
            raise ValueError(msg)
    else:
        mu = draws.coefficients @ dataset.covariates.T  # (S, n)

    sigma = draws.sigma[:, None]
    if draws.is_student_t:
        log_lik = stats.t.logpdf(y[None, :], df=draws.nu[:, None], loc=mu, scale=sigma)
    else:
        log_lik = stats.norm.logpdf(y[None, :], loc=mu, scale=sigma)

    log_lik = log_lik.reshape(draws.n_chains, draws.draws_per_chain, y.shape[0])
    ds = xr.Dataset(
        {"y": (["chain", "draw", "obs"], log_lik)},
        coords={
            "chain": np.arange(draws.n_chains),
            "draw": np.arange(draws.draws_per_chain),
            "obs": np.arange(y.shape[0]),
        },
    )
    return ds


def add_log_likelihood_to_idata(
    idata: az.InferenceData,
    log_lik_dataset: xr.Dataset,
) -> az.InferenceData:
    """Add log_likelihood group to InferenceData (returns new object)."""
    return idata.copy() + az.InferenceData(log_likelihood=log_lik_dataset)


# ── LOO-CV Model Comparison ──────────────────────────────────────────────────


def compute_loo(idata: az.InferenceData) -> az.ELPDData:
    """Compute LOO-CV using PSIS (Pareto-smoothed importance sampling).

    Requires log_likelihood group in idata.
    """
    return az.loo(idata, pointwise=True)


def compare_models(
    model_idatas: dict[str, az.InferenceData],
) -> tuple[object, dict[str, az.ELPDData]]:
    """Compare models via LOO-CV.

    Args:
        model_idatas: {model_name: idata_with_log_likelihood}

    Returns:
        (comparison_df, {model_name: loo_result})
    """
    loo_results = {name: compute_loo(idata) for name, idata in model_idatas.items()}
    comparison = az.compare(loo_results)
    return comparison, loo_results


def summarize_pareto_k(loo_result: az.ELPDData) -> dict[str, int | float]:
    """Count observations in each Pareto k diagnostic category.

    Categories (Vehtari et al. 2017):
      good:       k < 0.5
      ok:         0.5 <= k < 0.7
      bad:        0.7 <= k < 1.0
      very_bad:   k >= 1.0
    """
    k_values = np.asarray(loo_result.pareto_k.values)

    return {
        "good": int(np.sum(k_values < 0.5)),
        "ok": int(np.sum((k_values >= 0.5) & (k_values < 0.7))),
        "bad": int(np.sum((k_values >= 0.7) & (k_values < 1.0))),
        "very_bad": int(np.sum(k_values >= 1.0)),
        "total": len(k_values),
        "max_k": float(np.max(k_values)),
        "mean_k": float(np.mean(k_values)),
    }
