"""
Posterior Predictive Checks — Regression Model Fits (Phase 2)

Fits the Normal-error and Student-t-error regressions to the simulated dataset
with MCMC and checks convergence. Posteriors are saved as NetCDF for the PPC
phase.

Usage:
  uv run python analysis/02_fit/fit.py [--scenario student_t] [--run-id ...]
      [--models normal student_t] [--draws 1000] [--tune 1000] [--chains 2]
      [--sampler nutpie] [--seed 42] [--simulate-dir ...]

Outputs (in results/<scenario>/<run_id>/02_fit/):
  - data/:   idata_{model}.nc, posterior_summary_{model}.parquet,
             convergence_{model}.json
  - plots/:  trace plots, posterior vs truth forest
  - 02_fit_report.html
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import polars as pl

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from predcheck.config import (
    DEFAULT_SAMPLER,
    N_CHAINS,
    N_DRAWS,
    N_TUNE,
    RANDOM_SEED,
    SAMPLERS,
)
from predcheck.engine import PyMCEngine, check_convergence
from predcheck.model_spec import MODELS, RegressionModelSpec, get_model_spec

try:
    from analysis.run_context import RunContext, resolve_upstream_dir, scenario_root
except ModuleNotFoundError:
    from run_context import RunContext, resolve_upstream_dir, scenario_root

try:
    from analysis.simulate import load_dataset
except ModuleNotFoundError:
    from simulate import load_dataset  # type: ignore[no-redef]

try:
    from analysis.fit_data import compare_to_truth, summarize_posterior, true_values
except ModuleNotFoundError:
    from fit_data import (  # type: ignore[no-redef]
        compare_to_truth,
        summarize_posterior,
        true_values,
    )

try:
    from analysis.fit_report import build_fit_report
except ModuleNotFoundError:
    from fit_report import build_fit_report  # type: ignore[no-redef]

# ── Primer ───────────────────────────────────────────────────────────────────

FIT_PRIMER = """\
# Regression Model Fits

## Purpose

Fits two Bayesian linear regressions to the same data. Both share the mean
structure `mu = b0 + b1*x1 + b2*x2`; they differ only in the error model. The
PPC phase then asks which error model can regenerate data that looks like the
observed response.

## Method

### Normal errors
- `beta_j ~ Normal(0, 100)`, `tau ~ Gamma(0.01, 0.01)`
- `y_i ~ Normal(mu_i, precision = tau)`

### Student-t errors (scale mixture)
- Same priors for beta and tau, `nu ~ Uniform(1.1, 10)`
- `w_i ~ Gamma(nu/2, nu/2)`, `y_i ~ Normal(mu_i, precision = tau * w_i)`
- Integrating out `w_i` gives `y_i ~ mu_i + sigma * t_nu`.

Both models record `sigma = 1/sqrt(tau)`, `mu` and `resid = y - mu` as
deterministics. Sampling uses nutpie (Rust NUTS) by default.

### Convergence
R-hat < 1.01, bulk ESS > 400, fewer than 10 divergences, E-BFMI > 0.3.
Failures are reported as warnings; the posterior is still saved.

## Inputs
- `results/<scenario>/<run_id>/01_simulate/data/dataset.parquet`

## Outputs

| File | Description |
|------|-------------|
| `data/idata_{model}.nc` | Full posterior (ArviZ NetCDF) |
| `data/posterior_summary_{model}.parquet` | Mean, SD, HDI, R-hat, ESS vs truth |
| `data/convergence_{model}.json` | Convergence diagnostics |
| `plots/trace_{model}.png` | Trace plots for scalar parameters |
| `plots/posterior_vs_truth.png` | HDI forest with true values |

## Caveats
- Under Student-t data the Normal model's sigma estimates the marginal SD,
  not the generating scale, so its sigma interval is not expected to cover it.
- The latent weights `w` add one parameter per observation to the t model.
"""

MODEL_COLORS = {"normal": "#1f77b4", "student_t": "#d62728"}
TRACE_VARS = ["beta", "sigma", "nu"]


# ── CLI ──────────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Regression model fits for PPC (Phase 2)")
    parser.add_argument("--scenario", default="student_t", help="Scenario label for output")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
    parser.add_argument(
        "--simulate-dir", default=None, help="Override simulate results directory"
    )
    parser.add_argument(
        "--models",
        nargs="+",
        default=list(MODELS),
        choices=list(MODELS),
        help="Models to fit",
    )
    parser.add_argument("--draws", type=int, default=N_DRAWS, help="MCMC draws per chain")
    parser.add_argument("--tune", type=int, default=N_TUNE, help="MCMC tuning steps")
    parser.add_argument("--chains", type=int, default=N_CHAINS, help="Number of chains")
    parser.add_argument("--sampler", default=DEFAULT_SAMPLER, choices=SAMPLERS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED, help="Sampler seed")
    return parser.parse_args(argv)


# ── Helpers ──────────────────────────────────────────────────────────────────


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


# ── Plots ────────────────────────────────────────────────────────────────────


def plot_trace(idata: az.InferenceData, spec: RegressionModelSpec, plots_dir: Path) -> None:
    """ArviZ trace plot for the scalar parameters of one model."""
    var_names = [v for v in TRACE_VARS if v in idata.posterior]
    axes = az.plot_trace(idata, var_names=var_names, compact=True)
    fig = np.asarray(axes).ravel()[0].figure
    fig.suptitle(f"{spec.label} — trace", fontsize=13, y=1.02)
    fig.tight_layout()
    save_fig(fig, plots_dir / f"trace_{spec.name}.png")


def plot_posterior_vs_truth(summaries: dict[str, pl.DataFrame], plots_dir: Path) -> None:
    """HDI forest for every model with the generating values marked."""
    params = []
    for df in summaries.values():
        for p in df["parameter"].to_list():
            if p not in params and p != "tau":
                params.append(p)

    fig, axes = plt.subplots(1, len(params), figsize=(3.2 * len(params), 3.5), squeeze=False)
    offsets = np.linspace(-0.15, 0.15, max(len(summaries), 1))

    for ax, param in zip(axes[0], params):
        truth = None
        for offset, (name, df) in zip(offsets, summaries.items()):
            row = df.filter(pl.col("parameter") == param)
            if row.height == 0:
                continue
            r = row.row(0, named=True)
            color = MODEL_COLORS.get(name, "#333333")
            ax.plot([offset, offset], [r["hdi_lo"], r["hdi_hi"]], color=color, linewidth=2)
            ax.scatter([offset], [r["mean"]], color=color, s=20, label=name, zorder=3)
            if r.get("truth") is not None:
                truth = r["truth"]
        if truth is not None:
            ax.axhline(truth, color="black", linestyle="--", linewidth=1, label="truth")
        ax.set_title(param, fontsize=10)
        ax.set_xticks([])
        ax.set_xlim(-0.5, 0.5)

    handles, labels = axes[0][0].get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, loc="lower center", ncol=len(labels), fontsize=8)
    fig.suptitle("Posterior means and 95% HDIs vs true values", fontsize=13, y=1.02)
    fig.tight_layout(rect=(0, 0.08, 1, 1))
    save_fig(fig, plots_dir / "posterior_vs_truth.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    with RunContext(
        scenario=args.scenario,
        analysis_name="02_fit",
        params=vars(args),
        primer=FIT_PRIMER,
        run_id=args.run_id,
    ) as ctx:
        print(f"Regression Model Fits — Scenario {ctx.scenario}")
        print(f"Output: {ctx.run_dir}")

        simulate_dir = resolve_upstream_dir(
            "01_simulate",
            scenario_root(ctx.scenario),
            args.run_id,
            override=Path(args.simulate_dir) if args.simulate_dir else None,
        )
        dataset = load_dataset(simulate_dir / "data")
        print(f"  Dataset: n={dataset.n_obs}, noise={dataset.noise} ({simulate_dir})")

        engine = PyMCEngine(
            draws=args.draws,
            tune=args.tune,
            chains=args.chains,
            seed=args.seed,
            sampler=args.sampler,
        )
        truth = true_values(dataset.truth, dataset.coef_names, dataset.noise)

        summaries: dict[str, pl.DataFrame] = {}
        diagnostics: dict[str, dict] = {}
        timings: dict[str, float] = {}

        for name in args.models:
            spec = get_model_spec(name)
            print_header(f"FITTING — {spec.label}")
            idata, sampling_time = engine.sample(dataset, spec)
            timings[name] = sampling_time

            print_header(f"CONVERGENCE — {spec.label}")
            diag = check_convergence(idata, spec.label)
            diag["sampling_time_s"] = round(sampling_time, 1)
            diagnostics[name] = diag

            summary = compare_to_truth(summarize_posterior(idata), truth)
            summaries[name] = summary
            print(f"\n{summary}")

            idata.to_netcdf(str(ctx.data_dir / f"idata_{name}.nc"))
            print(f"  Saved: idata_{name}.nc")
            summary.write_parquet(ctx.data_dir / f"posterior_summary_{name}.parquet")
            print(f"  Saved: posterior_summary_{name}.parquet")
            with open(ctx.data_dir / f"convergence_{name}.json", "w") as f:
                json.dump(diag, f, indent=2, default=str)
            print(f"  Saved: convergence_{name}.json")

            plot_trace(idata, spec, ctx.plots_dir)

        print_header("PLOTS")
        plot_posterior_vs_truth(summaries, ctx.plots_dir)

        print_header("BUILDING REPORT")
        build_fit_report(
            ctx.report,
            specs=[get_model_spec(name) for name in args.models],
            summaries=summaries,
            diagnostics=diagnostics,
            engine=engine,
            plots_dir=ctx.plots_dir,
        )


if __name__ == "__main__":
    main()
