"""HTML report builder for the posterior predictive check phase.

Sections: how-to-read, executive summary, per-model density and boxplot
overlays with the statistic battery, the residual tail check, LOO-CV
comparison and a short verdict.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any

import polars as pl

try:
    from analysis.ppc_data import battery_table
    from analysis.report import (
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )
except ModuleNotFoundError:
    from ppc_data import battery_table  # type: ignore[no-redef]
    from report import (  # type: ignore[no-redef]
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )

# Ratio of observed to replicated |residual| quantile treated as a tail misfit
TAIL_RATIO_TOLERANCE = 0.15
# Two-sided cutoff for flagging a Bayesian p-value in the battery
EXTREME_P = 0.05


def build_ppc_report(
    report: ReportBuilder,
    *,
    model_results: dict[str, dict],
    loo_data: dict[str, dict],
    dataset_noise: str,
    df_mode: str,
    plots_dir: Path,
) -> None:
    """Build the full PPC + LOO-CV HTML report."""
    _add_how_to_read(report)
    _add_executive_summary(report, model_results, loo_data, dataset_noise, df_mode)

    for name, result in model_results.items():
        _add_model_overlays(report, name, result, plots_dir)

    _add_tail_check(report, model_results, plots_dir)
    if loo_data:
        _add_loo_comparison(report, loo_data, plots_dir)
    _add_verdict(report, model_results, loo_data)

    print(f"  Report: {report.n_sections} sections added")


# ── Section Builders ─────────────────────────────────────────────────────────


def _add_how_to_read(report: ReportBuilder) -> None:
    report.add(
        TextSection(
            id="how-to-read",
            title="How to Read This Report",
            html="""
<div style="background: #f0f7ff; padding: 1em; border-radius: 6px; margin-bottom: 1em;">
<p><strong>This report checks whether each fitted regression can regenerate data
that looks like the observed response.</strong></p>

<p>Every replicate is a complete simulated response vector drawn from one posterior
draw. If the model is right, the observed data should look like just another
replicate.</p>

<ul>
<li><strong>Density overlay</strong>: the black observed curve should sit inside the
band of red replicate curves, including in the tails.</li>
<li><strong>Bayesian p-value</strong>: fraction of replicates whose statistic is at least
the observed one. Values near 0 or 1 flag a statistic the model gets wrong.</li>
<li><strong>Tail ratio</strong>: observed 99th percentile of |residual| divided by the
replicated one. Near 1 is good; well above 1 means the model's tails are too light.</li>
<li><strong>ELPD</strong>: out-of-sample predictive accuracy from PSIS-LOO. Higher is
better.</li>
</ul>
</div>
""",
        )
    )


def _add_executive_summary(
    report: ReportBuilder,
    model_results: dict[str, dict],
    loo_data: dict[str, dict],
    dataset_noise: str,
    df_mode: str,
) -> None:
    rows = []
    for name, result in model_results.items():
        tail = result["tail"]
        battery = result["battery"]
        row: dict[str, Any] = {
            "Model": result["label"],
            "Replicates": result["replicates"].n_replicates,
            "SD p": battery["bayesian_p_sd"],
            "q99 p": battery["bayesian_p_q99"],
            "Tail ratio": tail["ratio"],
            "Tail p": tail["bayesian_p"],
            "Converged": "yes" if result.get("convergence_ok") else "no / unknown",
        }
        if name in loo_data:
            row["ELPD"] = loo_data[name]["elpd_loo"]
            row["p_loo"] = loo_data[name]["p_loo"]
        rows.append(row)

    if not rows:
        return

    num_formats = {"SD p": ".3f", "q99 p": ".3f", "Tail ratio": ".3f", "Tail p": ".3f"}
    df = pl.DataFrame(rows)
    if "ELPD" in df.columns:
        num_formats["ELPD"] = ".1f"
        num_formats["p_loo"] = ".1f"

    html = make_gt(
        df,
        title="PPC Executive Summary",
        subtitle=f"Data noise: {dataset_noise}; degrees of freedom per {df_mode}",
        number_formats=num_formats,
        source_note=(
            "SD p / q99 p: Bayesian p-values for the response SD and 99th percentile. "
            "Tail ratio: observed / replicated 99th percentile of |residual|."
        ),
    )
    report.add(TableSection(id="executive-summary", title="Executive Summary", html=html))


def _add_model_overlays(
    report: ReportBuilder,
    name: str,
    result: dict,
    plots_dir: Path,
) -> None:
    label = result["label"]
    k = result["replicates"].n_replicates

    path = plots_dir / f"density_{name}.png"
    if path.exists():
        report.add(
            FigureSection.from_file(
                f"density-{name}",
                f"{label} — Density Overlay",
                path,
                caption=f"Black: observed response. Red: {k} replicate datasets, "
                "each generated from one posterior draw.",
            )
        )
    path = plots_dir / f"boxplot_{name}.png"
    if path.exists():
        report.add(
            FigureSection.from_file(
                f"boxplot-{name}",
                f"{label} — Boxplots",
                path,
                caption="Observed values against all simulated values pooled.",
            )
        )

    battery = battery_table(result["battery"]).with_columns(
        (
            (pl.col("bayesian_p") < EXTREME_P) | (pl.col("bayesian_p") > 1 - EXTREME_P)
        ).fill_null(False).alias("extreme")
    )
    html = make_gt(
        battery,
        title=f"{label} — Statistic Battery",
        column_labels={
            "statistic": "Statistic",
            "observed": "Observed",
            "replicated_mean": "Replicated Mean",
            "replicated_sd": "Replicated SD",
            "bayesian_p": "p-value",
        },
        number_formats={
            "observed": ".3f",
            "replicated_mean": ".3f",
            "replicated_sd": ".3f",
            "bayesian_p": ".3f",
        },
        source_note=(
            "p-value: P(T(y_rep) >= T(y)) over the replicates. "
            f"Shaded rows fall outside [{EXTREME_P}, {1 - EXTREME_P:.2f}]."
        ),
        flag_column="extreme",
    )
    report.add(TableSection(id=f"battery-{name}", title=f"{label} — Battery", html=html))


def _add_tail_check(
    report: ReportBuilder,
    model_results: dict[str, dict],
    plots_dir: Path,
) -> None:
    rows = [
        {
            "Model": result["label"],
            "Observed q99": result["tail"]["observed_q"],
            "Replicated q99": result["tail"]["replicated_q_mean"],
            "Replicated SD": result["tail"]["replicated_q_sd"],
            "Ratio": result["tail"]["ratio"],
            "Gap": result["tail"]["gap"],
            "p-value": result["tail"]["bayesian_p"],
            "misfit": abs(result["tail"]["ratio"] - 1.0) > TAIL_RATIO_TOLERANCE,
        }
        for result in model_results.values()
    ]
    if rows:
        html = make_gt(
            pl.DataFrame(rows),
            title="Residual Tail Check",
            subtitle="99th percentile of |residual|",
            number_formats={
                "Observed q99": ".3f",
                "Replicated q99": ".3f",
                "Replicated SD": ".3f",
                "Ratio": ".3f",
                "Gap": ".3f",
                "p-value": ".3f",
            },
            source_note=(
                "Observed residuals are taken against the posterior-mean mean vector; "
                "simulated residuals against the generating draw's mean vector."
            ),
            flag_column="misfit",
        )
        report.add(TableSection(id="tail-check", title="Residual Tail Check", html=html))

    path = plots_dir / "tail_check.png"
    if path.exists():
        report.add(
            FigureSection.from_file(
                "tail-check-plot",
                "Tail Check Distribution",
                path,
                caption="Histogram: replicated quantiles. Red line: observed quantile.",
            )
        )


def _add_loo_comparison(
    report: ReportBuilder,
    loo_data: dict[str, dict],
    plots_dir: Path,
) -> None:
    rows = []
    for name, loo in loo_data.items():
        pk = loo["pareto_k"]
        rows.append(
            {
                "Model": name,
                "ELPD": loo["elpd_loo"],
                "SE": loo["se"],
                "p_loo": loo["p_loo"],
                "k Good": pk["good"],
                "k OK": pk["ok"],
                "k Bad": pk["bad"],
                "k Very Bad": pk["very_bad"],
                "Weight": loo.get("weight"),
            }
        )
    html = make_gt(
        pl.DataFrame(rows),
        title="LOO-CV Model Comparison",
        number_formats={"ELPD": ".1f", "SE": ".1f", "p_loo": ".1f", "Weight": ".3f"},
        source_note=(
            "ELPD: expected log pointwise predictive density (higher = better). "
            "p_loo: effective number of parameters. "
            "Pareto k > 0.7 marks observations where PSIS is unreliable."
        ),
    )
    report.add(TableSection(id="loo-table", title="LOO-CV Comparison", html=html))

    for file, id, title in (
        ("loo_comparison.png", "loo-plot", "LOO-CV ELPD"),
        ("pareto_k.png", "pareto-k", "Pareto k Diagnostics"),
    ):
        path = plots_dir / file
        if path.exists():
            report.add(FigureSection.from_file(id, title, path))


def _add_verdict(
    report: ReportBuilder,
    model_results: dict[str, dict],
    loo_data: dict[str, dict],
) -> None:
    items = []
    for name, result in model_results.items():
        ratio = result["tail"]["ratio"]
        if math.isnan(ratio):
            verdict = "no replicates; tail fit not assessed"
        elif abs(ratio - 1.0) <= TAIL_RATIO_TOLERANCE:
            verdict = "reproduces the observed tails"
        elif ratio > 1.0:
            verdict = "tails too light: observed extremes exceed what the model generates"
        else:
            verdict = "tails too heavy: the model generates more extreme values than observed"
        items.append(
            f"<li><strong>{result['label']}</strong>: {verdict} (ratio {ratio:.2f})</li>"
        )

    if len(loo_data) >= 2:
        best = max(loo_data.items(), key=lambda x: x[1]["elpd_loo"])
        items.append(f"<li>Best out-of-sample fit by ELPD: <strong>{best[0]}</strong></li>")

    report.add(TextSection(id="verdict", title="Verdict", html=f"<ul>{''.join(items)}</ul>"))
