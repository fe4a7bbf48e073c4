"""
Posterior Predictive Checks — Synthetic Regression Data (Phase 1)

Generates the covariate/response dataset the models are fit to. The generative
model is known, so later phases can compare posteriors and predictive
replicates against ground truth.

  x1 ~ Normal(0, 1)
  x2 ~ Binomial(10, 0.1)
  y  = b0 + b1*x1 + b2*x2 + eps

with eps either Normal(0, sigma) or sigma * t_3 (a Normal scaled by an
InverseGamma-distributed variance).

Usage:
  uv run python analysis/01_simulate/simulate.py [--scenario student_t]
      [--noise student_t] [--n 5000] [--seed 42] [--run-id ...]

Outputs (in results/<scenario>/<run_id>/01_simulate/):
  - data/:   dataset.parquet, truth.json, dataset_summary.json
  - plots/:  response distribution, true-noise QQ plot
  - 01_simulate_report.html
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
from scipy import stats

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from predcheck.config import N_OBS, NOISE_FAMILIES, RANDOM_SEED
from predcheck.dataset import (
    RegressionDataset,
    TrueParameters,
    describe_dataset,
    simulate_dataset,
)

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

try:
    from analysis.simulate_report import build_simulate_report
except ModuleNotFoundError:
    from simulate_report import build_simulate_report  # type: ignore[no-redef]

# ── Primer ───────────────────────────────────────────────────────────────────

SIMULATE_PRIMER = """\
# Synthetic Regression Data

## Purpose

Creates a dataset from a known linear model so the posterior predictive checks
downstream have a ground truth. With Student-t noise the data has heavier tails
than a Normal-error regression can reproduce — exactly the misfit a posterior
predictive check should expose.

## Method

- `x1 ~ Normal(0, 1)`, `x2 ~ Binomial(10, 0.1)`
- `y = b0 + b1*x1 + b2*x2 + eps`
- Normal noise: `eps = sigma * z`
- Student-t noise: `eps = sigma * z * sqrt(v)`, `v ~ InverseGamma(nu/2, nu/2)`, nu = 3

All draws come from one seeded generator in a fixed order (x1, x2, noise), so
the same seed reproduces the dataset bit for bit.

## Outputs

| File | Description |
|------|-------------|
| `data/dataset.parquet` | obs_id, y, x1, x2 |
| `data/truth.json` | Noise family, seed and generating parameters |
| `data/dataset_summary.json` | Summary statistics |
| `plots/response_distribution.png` | Histogram of y with a Normal reference |
| `plots/noise_qq.png` | QQ plot of the true noise against the Normal |

## Caveats

- t_3 noise has finite variance but infinite kurtosis: sample SDs are unstable.
"""

DATASET_FILE = "dataset.parquet"
TRUTH_FILE = "truth.json"


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synthetic regression data for PPC")
    parser.add_argument("--scenario", default="student_t", help="Scenario label for output")
    parser.add_argument(
        "--noise",
        default=None,
        choices=NOISE_FAMILIES,
        help="Noise family (default: the scenario name)",
    )
    parser.add_argument("--n", type=int, default=N_OBS, help="Number of observations")
    parser.add_argument("--seed", type=int, default=RANDOM_SEED, help="Random seed")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
    return parser.parse_args(argv)


def resolve_noise(scenario: str, noise: str | None) -> str:
    """Pick the noise family: explicit --noise, else the scenario name."""
    if noise is not None:
        return noise
    normalized = scenario.strip().lower().replace("-", "_")
    if normalized not in NOISE_FAMILIES:
        msg = (
            f"Scenario {scenario!r} is not a noise family; pass --noise "
            f"({', '.join(NOISE_FAMILIES)})"
        )
        raise ValueError(msg)
    return normalized


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


# ── Persistence ──────────────────────────────────────────────────────────────


def save_dataset(dataset: RegressionDataset, data_dir: Path, seed: int) -> None:
    """Write dataset.parquet and truth.json into ``data_dir``."""
    dataset.to_frame().write_parquet(data_dir / DATASET_FILE)
    truth = {"noise": dataset.noise, "n_obs": dataset.n_obs, "seed": seed}
    truth.update(dataset.truth.to_dict())
    with open(data_dir / TRUTH_FILE, "w") as f:
        json.dump(truth, f, indent=2)
    print(f"  Saved: {DATASET_FILE}, {TRUTH_FILE}")


def load_dataset(data_dir: Path) -> RegressionDataset:
    """Read a dataset written by save_dataset().

    Raises:
        FileNotFoundError: If the parquet file is missing.
    """
    parquet = data_dir / DATASET_FILE
    if not parquet.exists():
        msg = f"No dataset at {parquet} — run the simulate phase first"
        raise FileNotFoundError(msg)
    df = pl.read_parquet(parquet)

    truth_path = data_dir / TRUTH_FILE
    noise = "student_t"
    truth = None
    if truth_path.exists():
        with open(truth_path) as f:
            meta = json.load(f)
        noise = meta.get("noise", noise)
        truth = TrueParameters.from_dict(meta)
    return RegressionDataset.from_frame(df, noise=noise, truth=truth)


# ── Plots ────────────────────────────────────────────────────────────────────


def plot_response_distribution(dataset: RegressionDataset, plots_dir: Path) -> None:
    """Histogram of y with a moment-matched Normal density for reference."""
    y = dataset.y
    fig, ax = plt.subplots(figsize=(8, 4.5))
    lo, hi = np.percentile(y, [0.5, 99.5])
    ax.hist(y, bins=80, range=(lo, hi), density=True, alpha=0.6, color="#1f77b4", label="y")
    grid = np.linspace(lo, hi, 400)
    ax.plot(grid, stats.norm.pdf(grid, y.mean(), y.std()), "k--", linewidth=1, label="Normal fit")
    ax.set_xlabel("y")
    ax.set_ylabel("Density")
    ax.set_title(f"Response distribution ({dataset.noise} noise, n = {dataset.n_obs:,})")
    ax.legend(fontsize=8)
    fig.tight_layout()
    save_fig(fig, plots_dir / "response_distribution.png")


def plot_noise_qq(dataset: RegressionDataset, plots_dir: Path) -> None:
    """QQ plot of the realized noise (y - X @ beta_true) against the Normal."""
    eps = dataset.y - dataset.covariates @ np.asarray(dataset.truth.coefficients)
    fig, ax = plt.subplots(figsize=(5, 5))
    (osm, osr), (slope, intercept, _) = stats.probplot(eps, dist="norm")
    ax.scatter(osm, osr, s=4, alpha=0.4, color="#1f77b4")
    ax.plot(osm, slope * osm + intercept, "r-", linewidth=1)
    ax.set_xlabel("Normal quantiles")
    ax.set_ylabel("Noise quantiles")
    ax.set_title("True noise vs Normal")
    fig.tight_layout()
    save_fig(fig, plots_dir / "noise_qq.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    noise = resolve_noise(args.scenario, args.noise)

    with RunContext(
        scenario=args.scenario,
        analysis_name="01_simulate",
        params=vars(args),
        primer=SIMULATE_PRIMER,
        run_id=args.run_id,
    ) as ctx:
        print(f"Synthetic Regression Data — Scenario {ctx.scenario}")
        print(f"Output: {ctx.run_dir}")

        print_header("SIMULATING")
        rng = np.random.default_rng(args.seed)
        dataset = simulate_dataset(args.n, rng, noise=noise)
        truth = dataset.truth
        print(f"  n={dataset.n_obs}, noise={noise}, seed={args.seed}")
        print(f"  beta = {truth.coefficients}, sigma = {truth.sigma}, nu = {truth.nu}")

        summary = describe_dataset(dataset)
        for key, value in summary.items():
            print(f"  {key}: {value:.4f}" if isinstance(value, float) else f"  {key}: {value}")

        print_header("SAVING")
        save_dataset(dataset, ctx.data_dir, args.seed)
        with open(ctx.data_dir / "dataset_summary.json", "w") as f:
            json.dump(summary, f, indent=2)

        plot_response_distribution(dataset, ctx.plots_dir)
        plot_noise_qq(dataset, ctx.plots_dir)

        print_header("BUILDING REPORT")
        build_simulate_report(
            ctx.report,
            dataset=dataset,
            summary=summary,
            seed=args.seed,
            plots_dir=ctx.plots_dir,
        )


if __name__ == "__main__":
    main()
