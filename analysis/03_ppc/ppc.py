"""
Posterior Predictive Checks — Replicates, Tail Check and LOO-CV (Phase 3)

Loads the simulated dataset and the fitted posteriors, generates replicate
response vectors (one per sampled posterior draw) and compares them to the
observed response: density and boxplot overlays, a summary-statistic battery,
a residual tail check, and PSIS-LOO model comparison.

Usage:
  uv run python analysis/03_ppc/ppc.py [--scenario student_t] [--run-id ...]
      [--models normal student_t] [--n-replicates 50] [--value-range 100]
      [--df-mode draw] [--seed 42] [--skip-loo]
      [--simulate-dir ...] [--fit-dir ...]

Outputs (in results/<scenario>/<run_id>/03_ppc/):
  - data/:   replicates_{model}.parquet, comparison_{model}.parquet,
             ppc_summary.json, loo_comparison.json, pareto_k_{model}.parquet
  - plots/:  density overlays, boxplots, tail check, Pareto k, LOO comparison
  - 03_ppc_report.html
"""

import argparse
import json
import sys
import warnings
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import polars as pl
from scipy.stats import gaussian_kde

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from predcheck.config import DF_MODES, N_REPLICATES, RANDOM_SEED, VALUE_RANGE
from predcheck.dataset import RegressionDataset
from predcheck.draws import PosteriorDraws
from predcheck.model_spec import MODELS, get_model_spec
from predcheck.predictive import PredictiveReplicates, simulate_replicates

try:
    from analysis.run_context import RunContext, resolve_upstream_dir, scenario_root
except ModuleNotFoundError:
    from run_context import RunContext, resolve_upstream_dir, scenario_root

try:
    from analysis.simulate import load_dataset
except ModuleNotFoundError:
    from simulate import load_dataset  # type: ignore[no-redef]

try:
    from analysis.ppc_data import (
        OBSERVED,
        SIMULATED,
        add_log_likelihood_to_idata,
        battery_table,
        build_comparison_frame,
        compare_models,
        compute_log_likelihood,
        compute_loo,
        compute_tail_check,
        run_ppc_battery,
        summarize_pareto_k,
    )
except ModuleNotFoundError:
    from ppc_data import (  # type: ignore[no-redef]
        OBSERVED,
        SIMULATED,
        add_log_likelihood_to_idata,
        battery_table,
        build_comparison_frame,
        compare_models,
        compute_log_likelihood,
        compute_loo,
        compute_tail_check,
        run_ppc_battery,
        summarize_pareto_k,
    )

try:
    from analysis.ppc_report import build_ppc_report
except ModuleNotFoundError:
    from ppc_report import build_ppc_report  # type: ignore[no-redef]

# ── Primer ───────────────────────────────────────────────────────────────────

PPC_PRIMER = """\
# Posterior Predictive Checks

## Purpose

A fitted model should be able to regenerate data that looks like the data it
was fit to. This phase simulates replicate responses from each fitted
regression and compares them to the observed response. With Student-t data,
the Normal-error model cannot reproduce the heavy tails; the Student-t model
can.

## Method

### Replicates
k posterior draws are picked uniformly without replacement. Each draw yields
one replicate response vector using only that draw's parameters:
- Normal model: `y_rep = mu_r + sigma_r * z`
- Student-t model: `y_rep = mu_r + sigma_r * z / sqrt(g)`, `g ~ Gamma(nu_r/2, nu_r/2)`

With `--df-mode posterior_mean` the Student-t replicates use the posterior
mean of nu instead of each draw's own nu.

### Comparisons
- **Density overlay**: observed density (black) over the replicate densities.
- **Boxplots**: observed vs pooled simulated values.
- **Battery**: mean, SD, min, max, 1st and 99th percentile; Bayesian p-value
  `P(T(y_rep) >= T(y))`.
- **Tail check**: 99th percentile of |residual|. Observed residuals use the
  posterior-mean `mu`; simulated residuals use the generating draw's `mu`.
- **LOO-CV**: PSIS-LOO ELPD per model and ArviZ `compare()`. The Student-t
  log-likelihood is the marginal t density.

Values with `|y| > value_range` are dropped from the comparison frame and
plots (default 100).

## Inputs
- `results/<scenario>/<run_id>/01_simulate/data/dataset.parquet`
- `results/<scenario>/<run_id>/02_fit/data/idata_{model}.nc`

## Outputs

| File | Description |
|------|-------------|
| `data/replicates_{model}.parquet` | Replicate matrix, one column per draw |
| `data/comparison_{model}.parquet` | Long Observed/Simulated frame |
| `data/ppc_summary.json` | Battery, tail check and LOO per model |
| `data/loo_comparison.json` | LOO-CV results |
| `data/pareto_k_{model}.parquet` | Pointwise Pareto k |
| `plots/density_{model}.png` | Density overlay |
| `plots/boxplot_{model}.png` | Observed vs simulated boxplots |
| `plots/tail_check.png` | Replicated absolute-residual quantiles vs observed |
| `plots/pareto_k.png`, `plots/loo_comparison.png` | LOO diagnostics |

## Interpretation Guide
- **Bayesian p-value in [0.05, 0.95]**: the statistic is reproduced.
- **Tail ratio near 1**: simulated tails match the observed tails. A ratio
  well above 1 means the model's tails are too light.
- **LOO ELPD**: higher is better; a difference larger than 2 SE is meaningful.
"""

MODEL_COLORS = {"normal": "#1f77b4", "student_t": "#d62728"}


# ── CLI ──────────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Posterior predictive checks (Phase 3)")
    parser.add_argument("--scenario", default="student_t", help="Scenario label for output")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
    parser.add_argument(
        "--simulate-dir", default=None, help="Override simulate results directory"
    )
    parser.add_argument("--fit-dir", default=None, help="Override fit results directory")
    parser.add_argument(
        "--models",
        nargs="+",
        default=list(MODELS),
        choices=list(MODELS),
        help="Models to check",
    )
    parser.add_argument(
        "--n-replicates", type=int, default=N_REPLICATES, help="Replicate datasets per model"
    )
    parser.add_argument(
        "--value-range",
        type=float,
        default=VALUE_RANGE,
        help="Drop |value| beyond this from comparisons and plots",
    )
    parser.add_argument("--df-mode", default="draw", choices=DF_MODES)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED, help="Replicate seed")
    parser.add_argument("--skip-loo", action="store_true", help="Skip LOO-CV computation")
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


def _load_convergence(fit_data_dir: Path, model_name: str) -> dict:
    path = fit_data_dir / f"convergence_{model_name}.json"
    if not path.exists():
        return {}
    with open(path) as f:
        return json.load(f)


def json_ready(value: object) -> object:
    """Map NaN and infinities to None, recursively, so the output is strict JSON."""
    if isinstance(value, dict):
        return {k: json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_ready(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def _replicates_frame(replicates: PredictiveReplicates) -> pl.DataFrame:
    return pl.DataFrame(
        {
            f"draw_{int(r)}": replicates.values[:, j]
            for j, r in enumerate(replicates.draw_indices)
        }
    )


# ── Plots ────────────────────────────────────────────────────────────────────


def plot_density_overlay(frame: pl.DataFrame, label: str, path: Path) -> None:
    """Observed density (black) over one thin density line per replicate."""
    observed = frame.filter(pl.col("source") == OBSERVED)["value"].to_numpy()
    simulated = frame.filter(pl.col("source") == SIMULATED)

    if frame.height == 0:
        lo, hi = -1.0, 1.0
    else:
        lo, hi = frame["value"].min(), frame["value"].max()
    grid = np.linspace(lo, hi, 512)

    fig, ax = plt.subplots(figsize=(8, 4.5))
    n_reps = 0
    for (_,), rep in simulated.group_by(["replicate"], maintain_order=True):
        values = rep["value"].to_numpy()
        if values.size < 2:
            continue
        ax.plot(grid, gaussian_kde(values)(grid), color="#d62728", alpha=0.15, linewidth=0.7)
        n_reps += 1
    if observed.size >= 2:
        ax.plot(grid, gaussian_kde(observed)(grid), color="black", linewidth=2, label="Observed")
    if n_reps:
        ax.plot([], [], color="#d62728", alpha=0.6, label=f"Simulated ({n_reps} replicates)")
    else:
        ax.text(
            0.98, 0.95, "no replicates", transform=ax.transAxes, ha="right", va="top", fontsize=9
        )

    ax.set_xlabel("y")
    ax.set_ylabel("Density")
    ax.set_title(f"{label} — observed vs simulated density")
    ax.legend(fontsize=8)
    fig.tight_layout()
    save_fig(fig, path)


def plot_boxplots(frame: pl.DataFrame, label: str, path: Path) -> None:
    """Side-by-side boxplots of observed and pooled simulated values."""
    groups = []
    names = []
    for source in (OBSERVED, SIMULATED):
        values = frame.filter(pl.col("source") == source)["value"].to_numpy()
        if values.size:
            groups.append(values)
            names.append(source)

    fig, ax = plt.subplots(figsize=(6, 4.5))
    if groups:
        ax.boxplot(groups, tick_labels=names, showfliers=True, flierprops={"markersize": 2})
    ax.set_ylabel("y")
    ax.set_title(f"{label} — observed vs simulated")
    fig.tight_layout()
    save_fig(fig, path)


def plot_tail_check(tail_results: dict[str, dict], labels: dict[str, str], path: Path) -> None:
    """Histogram of replicated |residual| quantiles per model, observed as a red line."""
    n_models = len(tail_results)
    fig, axes = plt.subplots(1, n_models, figsize=(5 * n_models, 4), squeeze=False)

    for ax, (name, tail) in zip(axes[0], tail_results.items()):
        color = MODEL_COLORS.get(name, "#333333")
        if tail["n_replicates"] > 0:
            ax.hist(tail["replicated_q"], bins=20, alpha=0.7, color=color, edgecolor="white")
        ax.axvline(tail["observed_q"], color="red", linewidth=2, label="Observed")
        ax.set_title(f"{labels[name]}\nratio = {tail['ratio']:.2f}, p = {tail['bayesian_p']:.3f}")
        ax.set_xlabel(f"q{tail['quantile'] * 100:g} of |residual|")
        ax.set_ylabel("Replicates")
        ax.legend(fontsize=8)

    fig.suptitle("Residual tail check", fontsize=14, y=1.02)
    fig.tight_layout()
    save_fig(fig, path)


def plot_pareto_k(pareto_results: dict[str, np.ndarray], path: Path) -> None:
    """Pareto k diagnostic scatter per model."""
    n_models = len(pareto_results)
    fig, axes = plt.subplots(1, n_models, figsize=(5 * n_models, 4), squeeze=False)

    thresholds = [0.5, 0.7, 1.0]
    threshold_colors = ["#4CAF50", "#FFC107", "#FF5722", "#B71C1C"]

    for ax, (name, k_vals) in zip(axes[0], pareto_results.items()):
        colors = np.where(
            k_vals < 0.5,
            threshold_colors[0],
            np.where(
                k_vals < 0.7,
                threshold_colors[1],
                np.where(k_vals < 1.0, threshold_colors[2], threshold_colors[3]),
            ),
        )
        ax.scatter(np.arange(len(k_vals)), k_vals, c=colors, s=3, alpha=0.5)
        for t, c in zip(thresholds, threshold_colors[1:]):
            ax.axhline(t, color=c, linestyle="--", linewidth=0.8, alpha=0.5)
        ax.set_title(name)
        ax.set_xlabel("Observation Index")
        ax.set_ylabel("Pareto k")
        ax.set_ylim(min(-0.1, k_vals.min() - 0.1), max(1.5, k_vals.max() + 0.1))

    fig.suptitle("Pareto k Diagnostics", fontsize=14, y=1.02)
    fig.tight_layout()
    save_fig(fig, path)


def plot_loo_comparison(comparison_df: object, path: Path) -> None:
    """ELPD forest plot from az.compare() output."""
    fig, ax = plt.subplots(figsize=(8, 3))
    az.plot_compare(comparison_df, ax=ax)
    ax.set_title("LOO-CV Model Comparison")
    fig.tight_layout()
    save_fig(fig, path)


# ── Per-Model Processing ─────────────────────────────────────────────────────


def process_model(
    name: str,
    idata: az.InferenceData,
    dataset: RegressionDataset,
    *,
    fit_data_dir: Path,
    n_replicates: int,
    value_range: float,
    df_mode: str,
    rng: np.random.Generator,
    ctx: RunContext,
) -> dict:
    """Replicates, comparison frame, battery and tail check for one model."""
    spec = get_model_spec(name)
    print_header(f"PPC — {spec.label}")

    draws = PosteriorDraws.from_idata(
        idata, spec, diagnostics=_load_convergence(fit_data_dir, name)
    )
    print(f"  Posterior draws: {draws.n_draws} ({draws.n_chains} chains)")
    if draws.diagnostics and not draws.diagnostics.get("all_ok", True):
        print("  WARNING: fit did not pass convergence checks — interpret PPC with care")

    k = min(n_replicates, draws.n_draws)
    if k < n_replicates:
        print(f"  WARNING: only {draws.n_draws} draws available, using k={k}")
    replicates = simulate_replicates(draws, dataset, k, rng, df_mode=df_mode)
    print(f"  Replicates: {replicates.n_replicates} x {replicates.n_obs} (df_mode={df_mode})")

    frame = build_comparison_frame(dataset.y, replicates, value_range=value_range)
    n_dropped = dataset.n_obs * (1 + replicates.n_replicates) - frame.height
    print(f"  Comparison frame: {frame.height:,} rows ({n_dropped:,} beyond ±{value_range:g})")

    battery = run_ppc_battery(dataset.y, replicates)
    for row in battery_table(battery).iter_rows(named=True):
        print(
            f"    {row['statistic']:>5}: observed {row['observed']:9.3f}, "
            f"replicated {row['replicated_mean']:9.3f} ± {row['replicated_sd']:.3f}, "
            f"p = {row['bayesian_p']:.3f}"
        )

    tail = compute_tail_check(dataset, draws, replicates)
    print(
        f"  Tail check: observed q{tail['quantile'] * 100:g} = {tail['observed_q']:.3f}, "
        f"replicated = {tail['replicated_q_mean']:.3f} ± {tail['replicated_q_sd']:.3f}, "
        f"ratio = {tail['ratio']:.3f}, p = {tail['bayesian_p']:.3f}"
    )

    _replicates_frame(replicates).write_parquet(ctx.data_dir / f"replicates_{name}.parquet")
    print(f"  Saved: replicates_{name}.parquet")
    frame.write_parquet(ctx.data_dir / f"comparison_{name}.parquet")
    print(f"  Saved: comparison_{name}.parquet")

    plot_density_overlay(frame, spec.label, ctx.plots_dir / f"density_{name}.png")
    plot_boxplots(frame, spec.label, ctx.plots_dir / f"boxplot_{name}.png")

    return {
        "label": spec.label,
        "draws": draws,
        "replicates": replicates,
        "battery": battery,
        "tail": tail,
        "convergence_ok": draws.diagnostics.get("all_ok"),
    }


def run_loo(
    model_results: dict[str, dict],
    idatas: dict[str, az.InferenceData],
    dataset: RegressionDataset,
    ctx: RunContext,
) -> dict[str, dict]:
    """Log-likelihood, PSIS-LOO and comparison across the checked models."""
    print_header("LOO-CV")
    loo_models = {}
    for name, result in model_results.items():
        print(f"  Computing log-likelihood for {name}...")
        log_lik = compute_log_likelihood(result["draws"], dataset)
        loo_models[name] = add_log_likelihood_to_idata(idatas[name], log_lik)

    comparison = None
    if len(loo_models) >= 2:
        print(f"  Comparing {len(loo_models)} models...")
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            comparison, loo_individual = compare_models(loo_models)
        print(f"\n{comparison}")
    else:
        loo_individual = {}
        for name, idata_ll in loo_models.items():
            print(f"  Computing LOO for {name}...")
            loo_individual[name] = compute_loo(idata_ll)

    loo_data = {}
    pareto_results = {}
    for name, loo_result in loo_individual.items():
        pareto_summary = summarize_pareto_k(loo_result)
        pareto_results[name] = np.asarray(loo_result.pareto_k.values)
        loo_data[name] = {
            "elpd_loo": float(loo_result.elpd_loo),
            "se": float(loo_result.se),
            "p_loo": float(loo_result.p_loo),
            "pareto_k": pareto_summary,
        }
        print(
            f"  {name}: ELPD = {loo_result.elpd_loo:.1f} (SE = {loo_result.se:.1f}), "
            f"p_loo = {loo_result.p_loo:.1f}"
        )
        print(
            f"    Pareto k: {pareto_summary['good']} good, {pareto_summary['ok']} ok, "
            f"{pareto_summary['bad']} bad, {pareto_summary['very_bad']} very bad"
        )

    if comparison is not None:
        for name in loo_data:
            loo_data[name]["rank"] = int(comparison.loc[name, "rank"])
            loo_data[name]["elpd_diff"] = float(comparison.loc[name, "elpd_diff"])
            loo_data[name]["weight"] = float(comparison.loc[name, "weight"])

    with open(ctx.data_dir / "loo_comparison.json", "w") as f:
        json.dump(json_ready(loo_data), f, indent=2, default=str, allow_nan=False)
    print("  Saved: loo_comparison.json")
    for name, k_vals in pareto_results.items():
        pk_df = pl.DataFrame({"obs_id": np.arange(len(k_vals)), "pareto_k": k_vals})
        pk_df.write_parquet(ctx.data_dir / f"pareto_k_{name}.parquet")
        print(f"  Saved: pareto_k_{name}.parquet")

    if pareto_results:
        plot_pareto_k(pareto_results, ctx.plots_dir / "pareto_k.png")
    if comparison is not None:
        plot_loo_comparison(comparison, ctx.plots_dir / "loo_comparison.png")

    return loo_data


# ── Main ─────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    with RunContext(
        scenario=args.scenario,
        analysis_name="03_ppc",
        params=vars(args),
        primer=PPC_PRIMER,
        run_id=args.run_id,
    ) as ctx:
        print(f"Posterior Predictive Checks — Scenario {ctx.scenario}")
        print(f"Output: {ctx.run_dir}")

        root = scenario_root(ctx.scenario)
        simulate_dir = resolve_upstream_dir(
            "01_simulate",
            root,
            args.run_id,
            override=Path(args.simulate_dir) if args.simulate_dir else None,
        )
        fit_dir = resolve_upstream_dir(
            "02_fit",
            root,
            args.run_id,
            override=Path(args.fit_dir) if args.fit_dir else None,
        )
        dataset = load_dataset(simulate_dir / "data")
        print(f"  Dataset: n={dataset.n_obs}, noise={dataset.noise} ({simulate_dir})")
        print(f"  Fits: {fit_dir}")

        idatas: dict[str, az.InferenceData] = {}
        for name in args.models:
            nc_path = fit_dir / "data" / f"idata_{name}.nc"
            if not nc_path.exists():
                print(f"  WARNING: {name} NetCDF not found: {nc_path}")
                continue
            idatas[name] = az.from_netcdf(str(nc_path))
        if not idatas:
            msg = f"No fitted models found in {fit_dir / 'data'} — run the fit phase first"
            raise FileNotFoundError(msg)

        rng = np.random.default_rng(args.seed)
        model_results: dict[str, dict] = {}
        for name, idata in idatas.items():
            model_results[name] = process_model(
                name,
                idata,
                dataset,
                fit_data_dir=fit_dir / "data",
                n_replicates=args.n_replicates,
                value_range=args.value_range,
                df_mode=args.df_mode,
                rng=rng,
                ctx=ctx,
            )

        plot_tail_check(
            {name: r["tail"] for name, r in model_results.items()},
            {name: r["label"] for name, r in model_results.items()},
            ctx.plots_dir / "tail_check.png",
        )

        loo_data: dict[str, dict] = {}
        if not args.skip_loo:
            loo_data = run_loo(model_results, idatas, dataset, ctx)

        print_header("SAVING")
        summary = {}
        for name, r in model_results.items():
            summary[name] = {
                "label": r["label"],
                "df_mode": args.df_mode,
                "n_replicates": r["replicates"].n_replicates,
                "convergence_ok": r["convergence_ok"],
                "battery": {
                    k: v for k, v in r["battery"].items() if not isinstance(v, np.ndarray)
                },
                "tail_check": {
                    k: v for k, v in r["tail"].items() if not isinstance(v, np.ndarray)
                },
            }
            if name in loo_data:
                summary[name]["loo"] = loo_data[name]
        with open(ctx.data_dir / "ppc_summary.json", "w") as f:
            json.dump(json_ready(summary), f, indent=2, default=str, allow_nan=False)
        print("  Saved: ppc_summary.json")

        print_header("BUILDING REPORT")
        build_ppc_report(
            ctx.report,
            model_results=model_results,
            loo_data=loo_data,
            dataset_noise=dataset.noise,
            df_mode=args.df_mode,
            plots_dir=ctx.plots_dir,
        )


if __name__ == "__main__":
    main()
