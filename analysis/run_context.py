"""Reusable run context for structured analysis output.

Every phase script (simulate, fit, ppc) uses RunContext to get:
  - Structured output directories: results/<scenario>/<analysis>/<date>/plots/ + data/
  - Automatic console log capture (run_log.txt)
  - Run metadata (run_info.json): git hash, timestamp, parameters, library versions
  - A `latest` symlink pointing to the most recent run
  - A convenience report symlink in the scenario root (e.g. 03_ppc_report.html)

A scenario names the generative noise family the run is about ("student_t",
"normal"), so the two demonstrations never overwrite each other.

Run-directory mode (pipeline runs):
  When run_id is set, all phases write into a single grouped directory:
    results/<scenario>/<run_id>/<analysis>/plots/ + data/
  A scenario-level `latest` symlink points to the run directory.

Legacy mode (individual phase runs):
  When run_id is None, each phase writes to its own date directory:
    results/<scenario>/<analysis>/<date>/plots/ + data/
  A phase-level `latest` symlink points to the date directory.

Usage:
    with RunContext(
        scenario="student_t",
        analysis_name="01_simulate",
        params=vars(args),
        primer=SIMULATE_PRIMER,
    ) as ctx:
        df.write_parquet(ctx.data_dir / "dataset_student_t.parquet")
        save_fig(fig, ctx.plots_dir / "response.png")
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import sys
from datetime import datetime
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from pathlib import Path
from types import TracebackType
from typing import TextIO
from zoneinfo import ZoneInfo

from predcheck.config import RESULTS_ROOT, TIMEZONE, _VERSION

_TZ = ZoneInfo(TIMEZONE)

_TRACKED_PACKAGES = ("numpy", "pymc", "nutpie", "arviz", "polars")


class _TeeStream:
    """Wraps a stream to duplicate output to both the original stream and a buffer.

    All print() output goes to both the console (so the user sees progress)
    and an internal StringIO buffer (captured for run_log.txt).
    """

    def __init__(self, original: io.TextIOBase) -> None:
        self._original = original
        self._buffer = io.StringIO()

    def write(self, data: str) -> int:
        self._original.write(data)
        self._buffer.write(data)
        return len(data)

    def flush(self) -> None:
        self._original.flush()

    def getvalue(self) -> str:
        return self._buffer.getvalue()


def _normalize_scenario(scenario: str) -> str:
    """Convert a scenario label to its directory name.

    Examples:
        "student-t"  -> "student_t"
        "Normal"     -> "normal"
        " t3 "       -> "t3"
    """
    normalized = re.sub(r"[\s\-]+", "_", scenario.strip().lower())
    if not normalized:
        msg = "Scenario name must not be empty"
        raise ValueError(msg)
    return normalized


def _git_commit_hash() -> str:
    """Get the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _library_versions() -> dict[str, str]:
    versions = {}
    for name in _TRACKED_PACKAGES:
        try:
            versions[name] = _pkg_version(name)
        except PackageNotFoundError:
            versions[name] = "not installed"
    return versions


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds into a human-readable string.

    Examples: "3.2s", "1m 45s", "1h 12m 5s"
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m {secs}s"


def _next_run_label(analysis_dir: Path, today: str) -> str:
    """Return a unique run label for today, appending .1, .2, etc. if needed.

    First run of the day:  "261018"
    Second run:            "261018.1"

    Checks for existing directories (not symlinks) under *analysis_dir*.
    """
    if not (analysis_dir / today).exists() or (analysis_dir / today).is_symlink():
        return today

    n = 1
    while (analysis_dir / f"{today}.{n}").exists():
        n += 1
    return f"{today}.{n}"


def generate_run_id(scenario: str, results_root: Path | None = None) -> str:
    """Generate a run ID for grouping pipeline phases.

    Format: {scenario}-{YYMMDD}. Same-day collisions get .1, .2, etc. suffixes.

    Examples:
        "student_t" → "student_t-261018"
        "normal" (second run same day) → "normal-261018.1"

    Args:
        scenario: Scenario label.
        results_root: Optional scenario directory for collision checking.
    """
    base = f"{_normalize_scenario(scenario)}-{datetime.now(_TZ).strftime('%y%m%d')}"

    if results_root is None:
        return base

    if not (results_root / base).exists() or (results_root / base).is_symlink():
        return base
    n = 1
    while (results_root / f"{base}.{n}").exists():
        n += 1
    return f"{base}.{n}"


def resolve_upstream_dir(
    phase: str,
    results_root: Path,
    run_id: str | None = None,
    override: Path | None = None,
) -> Path:
    """Resolve the output directory for an upstream phase.

    Precedence:
      1. Explicit CLI override (e.g. --simulate-dir /some/path)
      2. Run-directory path: results_root/{run_id}/{phase}
      3. Legacy phase path: results_root/{phase}/latest
      4. New-layout fallback: results_root/latest/{phase}

    The caller should verify the returned path exists before reading from it.
    """
    if override is not None:
        return override
    if run_id is not None:
        return results_root / run_id / phase
    legacy = results_root / phase / "latest"
    if legacy.exists():
        return legacy
    return results_root / "latest" / phase


def scenario_root(scenario: str, results_root: Path | None = None) -> Path:
    """Directory holding every run of a scenario."""
    return (results_root or Path(RESULTS_ROOT)) / _normalize_scenario(scenario)


class RunContext:
    """Context manager that sets up structured output for an analysis run.

    Creates the directory tree, captures console output, and writes
    metadata on exit.

    Attributes:
        scenario: Normalized scenario label (e.g. "student_t").
        analysis_name: Name of the analysis phase (e.g. "01_simulate").
        params: Script parameters to record in run_info.json.
        run_dir: Root of this run's output.
        plots_dir: Directory for PNG plots.
        data_dir: Directory for parquet/NetCDF/JSON outputs.
    """

    def __init__(
        self,
        scenario: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.scenario = _normalize_scenario(scenario)
        self.analysis_name = analysis_name
        self.params = params or {}
        self.run_id = run_id

        today = datetime.now(_TZ).strftime("%y%m%d")
        self._scenario_root = scenario_root(self.scenario, results_root)

        if run_id is not None:
            self._analysis_dir = self._scenario_root / run_id / analysis_name
            self.run_dir = self._analysis_dir
            self._run_label = run_id
        else:
            self._analysis_dir = self._scenario_root / analysis_name
            run_label = _next_run_label(self._analysis_dir, today)
            self.run_dir = self._analysis_dir / run_label
            self._run_label = run_label

        self.plots_dir = self.run_dir / "plots"
        self.data_dir = self.run_dir / "data"

        self._today = today
        self._primer = primer
        self._tee: _TeeStream | None = None
        self._original_stdout: TextIO | None = None
        self._start_time: datetime | None = None

        self.report = self._init_report()

    def __enter__(self) -> RunContext:
        self.setup()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.finalize(failed=exc_type is not None)

    def _init_report(self) -> object:
        """Initialize a ReportBuilder, or None if the report module isn't available."""
        try:
            try:
                from analysis.report import ReportBuilder
            except ModuleNotFoundError:
                from report import ReportBuilder  # type: ignore[no-redef]
            return ReportBuilder(
                title=f"{self.analysis_name.upper()} Report",
                scenario=self.scenario,
            )
        except ImportError:
            return None

    def setup(self) -> None:
        """Create directories, write primer, and start log capture."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.plots_dir.mkdir(exist_ok=True)
        self.data_dir.mkdir(exist_ok=True)

        if self._primer:
            readme = self._analysis_dir / "README.md"
            readme.write_text(self._primer, encoding="utf-8")

        self._original_stdout = sys.stdout
        self._tee = _TeeStream(sys.stdout)
        sys.stdout = self._tee  # type: ignore[assignment]
        self._start_time = datetime.now(_TZ)

    def finalize(self, *, failed: bool = False) -> None:
        """Write run_info.json, run_log.txt, the HTML report, and update latest symlink."""
        # Restore stdout before writing metadata (so our writes aren't captured)
        log_text = ""
        if self._tee is not None:
            log_text = self._tee.getvalue()
        if self._original_stdout is not None:
            sys.stdout = self._original_stdout  # type: ignore[assignment]

        (self.run_dir / "run_log.txt").write_text(log_text, encoding="utf-8")

        end_time = datetime.now(_TZ)
        elapsed_seconds = (end_time - self._start_time).total_seconds() if self._start_time else 0.0
        run_info = {
            "analysis": self.analysis_name,
            "scenario": self.scenario,
            "run_date": self._today,
            "run_label": self._run_label,
            "run_id": self.run_id,
            "failed": failed,
            "timestamp_start": (self._start_time.isoformat() if self._start_time else None),
            "timestamp_end": end_time.isoformat(),
            "elapsed_seconds": round(elapsed_seconds, 1),
            "elapsed_display": _format_elapsed(elapsed_seconds),
            "git_commit": _git_commit_hash(),
            "python_version": sys.version,
            "predcheck_version": _VERSION,
            "libraries": _library_versions(),
            "params": self.params,
        }
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(run_info, f, indent=2, default=str)

        print(f"\n{self.analysis_name.upper()} completed in {run_info['elapsed_display']}")

        report_name = None
        if self.report is not None and getattr(self.report, "has_sections", False):
            self.report.git_hash = run_info["git_commit"]
            report_name = f"{self.analysis_name}_report.html"
            self.report.write(self.run_dir / report_name)

        # Failed runs leave `latest` and the scenario report link pointing at the last good run
        if failed:
            return

        if self.run_id is not None:
            latest = self._scenario_root / "latest"
            target = self.run_id
        else:
            latest = self._analysis_dir / "latest"
            target = self._run_label
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(target)

        if report_name is not None:
            report_link = self._scenario_root / report_name
            if report_link.is_symlink() or report_link.exists():
                report_link.unlink()
            if self.run_id is not None:
                report_link.symlink_to(Path("latest") / self.analysis_name / report_name)
            else:
                report_link.symlink_to(Path(self.analysis_name) / "latest" / report_name)
