"""Posterior predictive replicates — pure functions, no I/O.

Each replicate is one full response vector generated from exactly one
posterior draw: its own mean vector, its own noise scale and (for the
Student-t model) its own degrees of freedom. Draws are picked uniformly
without replacement; the posterior mean is never used in place of a draw for
the mean or scale, since that would hide posterior uncertainty.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from predcheck.config import DF_MODES
from predcheck.dataset import RegressionDataset
from predcheck.draws import DrawRecord, PosteriorDraws


@dataclass(frozen=True)
class PredictiveReplicates:
    """Simulated responses: ``values[:, j]`` was generated from draw ``draw_indices[j]``."""

    values: NDArray[np.floating]
    draw_indices: NDArray[np.integer]
    model_name: str
    df_mode: str = "draw"

    @property
    def n_obs(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_replicates(self) -> int:
        return int(self.values.shape[1])


def select_draw_indices(n_draws: int, k: int, rng: np.random.Generator) -> NDArray[np.int64]:
    """Choose ``k`` distinct draw indices uniformly from ``range(n_draws)``.

    Raises:
        ValueError: If k is negative or exceeds the number of draws.
    """
    if k < 0:
        msg = f"Number of replicates must be non-negative, got k={k}"
        raise ValueError(msg)
    if k > n_draws:
        msg = f"Cannot select {k} distinct draws from {n_draws} available"
        raise ValueError(msg)
    if k == 0:
        return np.empty(0, dtype=np.int64)
    return rng.choice(n_draws, size=k, replace=False).astype(np.int64)


def simulate_from_draw(
    record: DrawRecord,
    rng: np.random.Generator,
    *,
    nu: float | None = None,
) -> NDArray[np.floating]:
    """Generate one response vector from a single draw.

    Normal:     y = mu + sigma * z
    Student-t:  y = mu + sigma * z / sqrt(g),  g ~ Gamma(nu/2, rate=nu/2)

    Args:
        record: The draw's parameters.
        rng: Random source.
        nu: Degrees-of-freedom override (plug-in estimate). Defaults to the
            draw's own nu.

    Raises:
        ValueError: On non-positive or non-finite sigma/nu, or non-finite means.
    """
    mu = np.asarray(record.mu, dtype=np.float64)
    sigma = record.sigma
    if not np.isfinite(sigma) or sigma <= 0:
        msg = f"Draw {record.index}: noise scale must be positive and finite, got {sigma}"
        raise ValueError(msg)
    if not np.all(np.isfinite(mu)):
        msg = f"Draw {record.index}: mean vector contains non-finite values"
        raise ValueError(msg)

    z = rng.normal(0.0, 1.0, size=mu.shape[0])

    if record.family == "student_t_mixture":
        df = record.nu if nu is None else nu
        if df is None or not np.isfinite(df) or df <= 0:
            msg = f"Draw {record.index}: degrees of freedom must be positive, got {df}"
            raise ValueError(msg)
        half_df = df / 2.0
        g = rng.gamma(shape=half_df, scale=1.0 / half_df, size=mu.shape[0])
        return mu + sigma * z / np.sqrt(g)

    return mu + sigma * z


def simulate_replicates(
    draws: PosteriorDraws,
    dataset: RegressionDataset,
    k: int,
    rng: np.random.Generator,
    *,
    df_mode: str = "draw",
) -> PredictiveReplicates:
    """Draw ``k`` posterior draws and generate one replicate dataset from each.

    Args:
        draws: Posterior draws of the fitted model.
        dataset: Observed data (supplies covariates and n).
        k: Number of replicates. ``k=0`` returns an empty (n, 0) matrix.
        rng: Random source, used for both draw selection and data generation.
        df_mode: "draw" uses each draw's own nu; "posterior_mean" plugs in the
            posterior-mean nu for every replicate (Student-t model only).

    Returns:
        PredictiveReplicates with values of shape (n, k).
    """
    if df_mode not in DF_MODES:
        msg = f"Unknown df_mode: {df_mode!r}. Supported: {', '.join(DF_MODES)}"
        raise ValueError(msg)

    covariates = dataset.covariates
    n = dataset.n_obs
    indices = select_draw_indices(draws.n_draws, k, rng)

    nu_override = None
    if df_mode == "posterior_mean" and draws.is_student_t:
        nu_override = draws.posterior_mean_nu()

    values = np.empty((n, len(indices)), dtype=np.float64)
    for j, r in enumerate(indices):
        record = draws.draw(int(r), covariates)
        if record.mu.shape[0] != n:
            msg = f"Draw {r}: mean vector has {record.mu.shape[0]} entries, expected {n}"
            raise ValueError(msg)
        values[:, j] = simulate_from_draw(record, rng, nu=nu_override)

    return PredictiveReplicates(
        values=values,
        draw_indices=indices,
        model_name=draws.model_name,
        df_mode=df_mode,
    )
