"""Typed access to posterior draws.

``PosteriorDraws`` flattens (chain, draw) into a single draw axis (chain-major)
and exposes each parameter as a named field. ``DrawRecord`` is one complete,
self-consistent parameter assignment: everything needed to generate a dataset
from a single draw, and nothing from any other draw.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import polars as pl
from numpy.typing import NDArray

from predcheck.config import COEF_NAMES

if TYPE_CHECKING:
    import arviz as az

    from predcheck.model_spec import RegressionModelSpec


@dataclass(frozen=True)
class DrawRecord:
    """All parameters of posterior draw ``index``."""

    index: int
    family: str
    coefficients: NDArray[np.floating]
    sigma: float
    mu: NDArray[np.floating]
    nu: float | None = None


@dataclass(frozen=True)
class PosteriorDraws:
    """Posterior draws for one fitted regression model.

    Attributes:
        model_name: Registered model name ("normal", "student_t").
        family: Likelihood family ("normal", "student_t_mixture").
        coefficients: (S, p) regression coefficients.
        tau: (S,) noise precision.
        n_chains: Number of chains that produced the S draws.
        nu: (S,) degrees of freedom, Student-t model only.
        weights: (S, n) latent mixing weights, Student-t model only.
        mu: (S, n) per-observation mean, if retained.
        resid: (S, n) residuals, if retained.
        diagnostics: Convergence diagnostics from the fitting run.
    """

    model_name: str
    family: str
    coefficients: NDArray[np.floating]
    tau: NDArray[np.floating]
    n_chains: int = 1
    nu: NDArray[np.floating] | None = None
    weights: NDArray[np.floating] | None = None
    mu: NDArray[np.floating] | None = None
    resid: NDArray[np.floating] | None = None
    coef_names: tuple[str, ...] = COEF_NAMES
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.coefficients.ndim != 2:
            msg = f"coefficients must be 2-D (draws, coefs), got shape {self.coefficients.shape}"
            raise ValueError(msg)
        s = self.coefficients.shape[0]
        if self.tau.shape != (s,):
            msg = f"tau has shape {self.tau.shape}, expected ({s},)"
            raise ValueError(msg)
        if self.family == "student_t_mixture" and self.nu is None:
            msg = f"Model {self.model_name!r} has a Student-t likelihood but no nu draws"
            raise ValueError(msg)
        if self.nu is not None and self.nu.shape != (s,):
            msg = f"nu has shape {self.nu.shape}, expected ({s},)"
            raise ValueError(msg)
        for name in ("weights", "mu", "resid"):
            arr = getattr(self, name)
            if arr is not None and (arr.ndim != 2 or arr.shape[0] != s):
                msg = f"{name} has shape {arr.shape}, expected ({s}, n_obs)"
                raise ValueError(msg)
        if self.n_chains < 1 or s % self.n_chains != 0:
            msg = f"{s} draws cannot be split evenly across {self.n_chains} chains"
            raise ValueError(msg)

    @property
    def n_draws(self) -> int:
        return int(self.coefficients.shape[0])

    @property
    def draws_per_chain(self) -> int:
        return self.n_draws // self.n_chains

    @property
    def sigma(self) -> NDArray[np.floating]:
        """Noise scale 1/sqrt(tau) for every draw."""
        return 1.0 / np.sqrt(self.tau)

    @property
    def is_student_t(self) -> bool:
        return self.family == "student_t_mixture"

    def posterior_mean_nu(self) -> float:
        if self.nu is None:
            msg = f"Model {self.model_name!r} has no degrees-of-freedom parameter"
            raise ValueError(msg)
        return float(self.nu.mean())

    def mean_vector(
        self, index: int, covariates: NDArray[np.floating] | None = None
    ) -> NDArray[np.floating]:
        """Per-observation mean for one draw.

        Uses the retained ``mu`` when available, otherwise ``covariates @ beta[index]``.

        Raises:
            ValueError: If sizes disagree, or neither mu nor covariates is available.
        """
        if covariates is not None and covariates.shape[1] != self.coefficients.shape[1]:
            msg = (
                f"Covariate matrix has {covariates.shape[1]} columns but the model "
                f"has {self.coefficients.shape[1]} coefficients"
            )
            raise ValueError(msg)
        if self.mu is not None:
            if covariates is not None and covariates.shape[0] != self.mu.shape[1]:
                msg = (
                    f"Covariate matrix has {covariates.shape[0]} rows but the stored "
                    f"mean vector has {self.mu.shape[1]} entries"
                )
                raise ValueError(msg)
            return self.mu[index]
        if covariates is None:
            msg = "mu was not retained; pass the covariate matrix to rebuild the mean"
            raise ValueError(msg)
        return covariates @ self.coefficients[index]

    def draw(self, index: int, covariates: NDArray[np.floating] | None = None) -> DrawRecord:
        """Extract the complete parameter assignment of a single draw."""
        if not 0 <= index < self.n_draws:
            msg = f"Draw index {index} out of range [0, {self.n_draws})"
            raise IndexError(msg)
        return DrawRecord(
            index=int(index),
            family=self.family,
            coefficients=self.coefficients[index],
            sigma=float(self.sigma[index]),
            mu=self.mean_vector(index, covariates),
            nu=float(self.nu[index]) if self.nu is not None else None,
        )

    def posterior_mean_mu(self, covariates: NDArray[np.floating] | None = None) -> NDArray:
        """Posterior mean of the per-observation mean vector."""
        if self.mu is not None:
            return self.mu.mean(axis=0)
        if covariates is None:
            msg = "mu was not retained; pass the covariate matrix to rebuild the mean"
            raise ValueError(msg)
        return covariates @ self.coefficients.mean(axis=0)

    def to_frame(self, *, include_vectors: bool = True) -> pl.DataFrame:
        """Wide draw matrix: one row per draw, one column per scalar parameter.

        Vector parameters are expanded to ``name[i]`` columns.
        """
        cols: dict[str, NDArray] = {
            "chain": np.repeat(np.arange(self.n_chains), self.draws_per_chain),
            "draw": np.tile(np.arange(self.draws_per_chain), self.n_chains),
        }
        for j in range(self.coefficients.shape[1]):
            cols[f"beta[{j}]"] = self.coefficients[:, j]
        cols["tau"] = self.tau
        cols["sigma"] = self.sigma
        if self.nu is not None:
            cols["nu"] = self.nu
        if include_vectors:
            for name, arr in (("w", self.weights), ("mu", self.mu), ("resid", self.resid)):
                if arr is None:
                    continue
                for i in range(arr.shape[1]):
                    cols[f"{name}[{i}]"] = arr[:, i]
        return pl.DataFrame(cols)

    @classmethod
    def from_idata(
        cls,
        idata: az.InferenceData,
        spec: RegressionModelSpec,
        diagnostics: dict[str, Any] | None = None,
    ) -> PosteriorDraws:
        """Collect the retained parameters of ``spec`` from an InferenceData posterior.

        Raises:
            ValueError: If beta or tau (or nu for the Student-t model) is absent.
        """
        posterior = idata.posterior
        n_chains = int(posterior.sizes["chain"])

        def _flat(name: str) -> NDArray | None:
            if name not in spec.retain or name not in posterior:
                return None
            values = np.asarray(posterior[name].values, dtype=np.float64)
            return values.reshape(-1, *values.shape[2:])

        coefficients = _flat("beta")
        tau = _flat("tau")
        if coefficients is None or tau is None:
            msg = f"Posterior for {spec.name!r} must contain retained 'beta' and 'tau'"
            raise ValueError(msg)

        coef_names = COEF_NAMES
        if "coef" in posterior["beta"].coords:
            coef_names = tuple(str(c) for c in posterior["beta"].coords["coef"].values)

        return cls(
            model_name=spec.name,
            family=spec.family,
            coefficients=coefficients,
            tau=tau,
            n_chains=n_chains,
            nu=_flat("nu"),
            weights=_flat("w"),
            mu=_flat("mu"),
            resid=_flat("resid"),
            coef_names=coef_names,
            diagnostics=diagnostics or {},
        )
