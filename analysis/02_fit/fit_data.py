"""Posterior summaries for fitted regression models — pure functions, no I/O.

All functions take InferenceData / numpy arrays and return polars frames or
dicts, so they are testable with synthetic posteriors.
"""

from __future__ import annotations

import arviz as az
import numpy as np
import polars as pl

from predcheck.dataset import TrueParameters

SUMMARY_VARS = ["beta", "sigma", "tau", "nu"]
HDI_PROB = 0.95


def _element_names(var: str, idata: az.InferenceData) -> list[str]:
    da = idata.posterior[var]
    extra_dims = [d for d in da.dims if d not in ("chain", "draw")]
    if not extra_dims:
        return [var]
    coord = da.coords[extra_dims[0]].values
    return [f"{var}[{c}]" for c in coord]


def summarize_posterior(
    idata: az.InferenceData,
    var_names: list[str] | None = None,
    hdi_prob: float = HDI_PROB,
) -> pl.DataFrame:
    """Mean, SD, HDI, R-hat and bulk ESS for each scalar parameter element.

    Vector parameters (e.g. beta over coefficients) get one row per element.
    Variables absent from the posterior are skipped.
    """
    var_names = var_names or SUMMARY_VARS
    rows = []
    n_chains = int(idata.posterior.sizes["chain"])

    for var in var_names:
        if var not in idata.posterior:
            continue
        values = np.asarray(idata.posterior[var].values, dtype=np.float64)
        if values.ndim > 3:
            msg = (
                "summarize_posterior handles scalars and vectors only, "
                f"{var} has {values.ndim - 2} dims"
            )
            raise ValueError(msg)
        if values.ndim == 2:
            values = values[:, :, None]

        for j, name in enumerate(_element_names(var, idata)):
            chains = values[:, :, j]
            flat = chains.reshape(-1)
            lo, hi = az.hdi(flat, hdi_prob=hdi_prob)
            rows.append(
                {
                    "parameter": name,
                    "mean": float(flat.mean()),
                    "sd": float(flat.std(ddof=1)) if flat.size > 1 else 0.0,
                    "hdi_lo": float(lo),
                    "hdi_hi": float(hi),
                    "rhat": float(az.rhat(chains)) if n_chains > 1 else float("nan"),
                    "ess_bulk": float(az.ess(chains)),
                }
            )

    return pl.DataFrame(
        rows,
        schema={
            "parameter": pl.Utf8,
            "mean": pl.Float64,
            "sd": pl.Float64,
            "hdi_lo": pl.Float64,
            "hdi_hi": pl.Float64,
            "rhat": pl.Float64,
            "ess_bulk": pl.Float64,
        },
    )


def true_values(
    truth: TrueParameters,
    coef_names: list[str] | tuple[str, ...],
    noise: str = "student_t",
) -> dict[str, float]:
    """Map summary parameter names to their generating values.

    nu only has a true value when the data were generated with Student-t noise.
    """
    values = {f"beta[{name}]": float(v) for name, v in zip(coef_names, truth.coefficients)}
    values["sigma"] = float(truth.sigma)
    values["tau"] = 1.0 / float(truth.sigma) ** 2
    if noise == "student_t":
        values["nu"] = float(truth.nu)
    return values


def compare_to_truth(summary: pl.DataFrame, truth: dict[str, float]) -> pl.DataFrame:
    """Join generating values onto a posterior summary and flag HDI coverage.

    Rows without a known truth keep nulls in ``truth`` and ``covered``.
    """
    truth_df = pl.DataFrame(
        {"parameter": list(truth.keys()), "truth": list(truth.values())},
        schema={"parameter": pl.Utf8, "truth": pl.Float64},
    )
    return summary.join(truth_df, on="parameter", how="left").with_columns(
        ((pl.col("truth") >= pl.col("hdi_lo")) & (pl.col("truth") <= pl.col("hdi_hi"))).alias(
            "covered"
        ),
        (pl.col("mean") - pl.col("truth")).alias("error"),
    )
