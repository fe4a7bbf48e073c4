"""HTML report builder for the model-fit phase.

Sections: model definitions, convergence summary, posterior-vs-truth tables
per model, trace plots and the truth forest.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import polars as pl

from predcheck.engine import PyMCEngine
from predcheck.model_spec import RegressionModelSpec

try:
    from analysis.report import (
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )
except ModuleNotFoundError:
    from report import (  # type: ignore[no-redef]
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )


def build_fit_report(
    report: ReportBuilder,
    *,
    specs: list[RegressionModelSpec],
    summaries: dict[str, pl.DataFrame],
    diagnostics: dict[str, dict],
    engine: PyMCEngine,
    plots_dir: Path,
) -> None:
    """Build the model-fit HTML report."""
    _add_model_definitions(report, specs, engine)
    _add_convergence_summary(report, specs, diagnostics)

    for spec in specs:
        if spec.name in summaries:
            _add_posterior_table(report, spec, summaries[spec.name])
        path = plots_dir / f"trace_{spec.name}.png"
        if path.exists():
            report.add(
                FigureSection.from_file(
                    f"trace-{spec.name}",
                    f"{spec.label} — Trace",
                    path,
                    caption="Left: per-chain marginal densities. Right: sampled values by "
                    "iteration. Chains should overlap and look like stationary noise.",
                )
            )

    path = plots_dir / "posterior_vs_truth.png"
    if path.exists():
        report.add(
            FigureSection.from_file(
                "posterior-vs-truth",
                "Posterior vs Truth",
                path,
                caption="Dots: posterior means. Bars: 95% HDIs. Dashed line: generating value.",
            )
        )

    print(f"  Report: {report.n_sections} sections added")


# ── Section Builders ─────────────────────────────────────────────────────────


def _add_model_definitions(
    report: ReportBuilder, specs: list[RegressionModelSpec], engine: PyMCEngine
) -> None:
    items = []
    for spec in specs:
        lines = "".join(f"<li><code>{line}</code></li>" for line in spec.describe())
        items.append(
            f"<p><strong>{spec.label}</strong> (<code>{spec.name}</code>)</p><ul>{lines}</ul>"
        )
    sampler = (
        f"<p>Sampler: {engine.sampler}, {engine.chains} chains x {engine.draws} draws "
        f"after {engine.tune} tuning steps, seed {engine.seed}.</p>"
    )
    report.add(
        TextSection(id="models", title="Model Definitions", html="".join(items) + sampler)
    )


def _add_convergence_summary(
    report: ReportBuilder, specs: list[RegressionModelSpec], diagnostics: dict[str, dict]
) -> None:
    rows = []
    for spec in specs:
        diag = diagnostics.get(spec.name)
        if diag is None:
            continue
        rhats = [v for k, v in diag.items() if k.endswith("_rhat_max")]
        ess = [v for k, v in diag.items() if k.endswith("_ess_min")]
        row: dict[str, Any] = {
            "Model": spec.label,
            "Max R-hat": max(rhats) if rhats else None,
            "Min ESS": min(ess) if ess else None,
            "Divergences": diag.get("divergences"),
            "Min E-BFMI": min(diag["ebfmi"]) if diag.get("ebfmi") else None,
            "Time (s)": diag.get("sampling_time_s"),
            "Status": "OK" if diag.get("all_ok") else "WARNING",
            "failed": not diag.get("all_ok", False),
        }
        rows.append(row)
    if not rows:
        return

    html = make_gt(
        pl.DataFrame(rows),
        title="Convergence Diagnostics",
        number_formats={
            "Max R-hat": ".4f",
            "Min ESS": ",.0f",
            "Min E-BFMI": ".3f",
            "Time (s)": ".1f",
        },
        source_note="Thresholds: R-hat < 1.01, ESS > 400, divergences < 10, E-BFMI > 0.3.",
        flag_column="failed",
    )
    report.add(TableSection(id="convergence", title="Convergence", html=html))


def _add_posterior_table(
    report: ReportBuilder, spec: RegressionModelSpec, summary: pl.DataFrame
) -> None:
    df = summary.select(
        "parameter", "mean", "sd", "hdi_lo", "hdi_hi", "truth", "covered", "rhat", "ess_bulk"
    ).with_columns(
        (~pl.col("covered")).fill_null(False).alias("missed"),
        pl.when(pl.col("covered").is_null())
        .then(pl.lit(""))
        .when(pl.col("covered"))
        .then(pl.lit("yes"))
        .otherwise(pl.lit("NO"))
        .alias("covered")
    )
    html = make_gt(
        df,
        title=f"{spec.label} — Posterior Summary",
        column_labels={
            "parameter": "Parameter",
            "mean": "Mean",
            "sd": "SD",
            "hdi_lo": "HDI 2.5%",
            "hdi_hi": "HDI 97.5%",
            "truth": "Truth",
            "covered": "Covered",
            "rhat": "R-hat",
            "ess_bulk": "ESS",
        },
        number_formats={
            "mean": ".3f",
            "sd": ".3f",
            "hdi_lo": ".3f",
            "hdi_hi": ".3f",
            "truth": ".3f",
            "rhat": ".3f",
            "ess_bulk": ",.0f",
        },
        flag_column="missed",
    )
    report.add(
        TableSection(id=f"posterior-{spec.name}", title=f"{spec.label} — Posterior", html=html)
    )
