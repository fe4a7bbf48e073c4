"""HTML report builder for the simulate phase."""

from pathlib import Path

import polars as pl

from predcheck.config import COEF_NAMES, X2_PROB, X2_TRIALS
from predcheck.dataset import RegressionDataset

try:
    from analysis.report import FigureSection, ReportBuilder, TableSection, TextSection, make_gt
except ModuleNotFoundError:
    from report import (  # type: ignore[no-redef]
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )


def build_simulate_report(
    report: ReportBuilder,
    *,
    dataset: RegressionDataset,
    summary: dict,
    seed: int,
    plots_dir: Path,
) -> None:
    """Add the generative model, truth table, summary statistics and plots."""
    _add_generative_model(report, dataset)
    _add_truth_table(report, dataset, seed)
    _add_summary_table(report, summary)
    _add_figure(
        report,
        plots_dir / "response_distribution.png",
        "response-distribution",
        "Response Distribution",
        "Dashed line: Normal density with the sample mean and SD.",
    )
    _add_figure(
        report,
        plots_dir / "noise_qq.png",
        "noise-qq",
        "True Noise vs Normal",
        "Points bending away from the red line at both ends indicate heavy tails.",
    )

    print(f"  Report: {report.n_sections} sections added")


def _add_generative_model(report: ReportBuilder, dataset: RegressionDataset) -> None:
    if dataset.noise == "student_t":
        noise = (
            "eps = sigma * z * sqrt(v), z ~ Normal(0, 1), "
            f"v ~ InverseGamma({dataset.truth.nu / 2:g}, {dataset.truth.nu / 2:g})"
        )
    else:
        noise = "eps = sigma * z, z ~ Normal(0, 1)"
    report.add(
        TextSection(
            id="generative-model",
            title="Generative Model",
            html=(
                "<ul>"
                "<li>x1 ~ Normal(0, 1)</li>"
                f"<li>x2 ~ Binomial({X2_TRIALS}, {X2_PROB})</li>"
                "<li>y = b0 + b1 x1 + b2 x2 + eps</li>"
                f"<li>{noise}</li>"
                "</ul>"
            ),
        )
    )


def _add_truth_table(report: ReportBuilder, dataset: RegressionDataset, seed: int) -> None:
    truth = dataset.truth
    rows = [
        {"Parameter": f"beta ({name})", "Value": v}
        for name, v in zip(COEF_NAMES, truth.coefficients)
    ]
    rows.append({"Parameter": "sigma", "Value": truth.sigma})
    if dataset.noise == "student_t":
        rows.append({"Parameter": "nu", "Value": truth.nu})
    html = make_gt(
        pl.DataFrame(rows),
        title="True Parameters",
        subtitle=f"Noise: {dataset.noise}, seed {seed}",
        number_formats={"Value": ".2f"},
    )
    report.add(TableSection(id="truth", title="True Parameters", html=html))


def _add_summary_table(report: ReportBuilder, summary: dict) -> None:
    df = pl.DataFrame(
        {
            "Statistic": list(summary.keys()),
            "Value": [float(v) for v in summary.values()],
        }
    )
    html = make_gt(df, title="Dataset Summary", number_formats={"Value": ".3f"})
    report.add(TableSection(id="summary", title="Dataset Summary", html=html))


def _add_figure(report: ReportBuilder, path: Path, id: str, title: str, caption: str) -> None:
    if path.exists():
        report.add(FigureSection.from_file(id, title, path, caption=caption))
