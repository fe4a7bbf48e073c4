"""
Posterior Predictive Checks — Full Pipeline

Runs simulate → fit → ppc for one scenario under a shared run ID, so every
phase writes into results/<scenario>/<run_id>/<phase>/ and downstream phases
find their inputs without directory overrides.

Usage:
  uv run python analysis/pipeline.py [--scenario student_t] [--noise ...]
      [--n 5000] [--seed 42] [--draws 1000] [--tune 1000] [--chains 2]
      [--sampler nutpie] [--n-replicates 50] [--df-mode draw] [--skip-loo]
"""

import argparse
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from predcheck.config import (
    DEFAULT_SAMPLER,
    DF_MODES,
    N_CHAINS,
    N_DRAWS,
    N_OBS,
    N_REPLICATES,
    N_TUNE,
    NOISE_FAMILIES,
    RANDOM_SEED,
    SAMPLERS,
    VALUE_RANGE,
)

from analysis.fit import main as fit_main
from analysis.ppc import main as ppc_main
from analysis.run_context import _format_elapsed, generate_run_id, scenario_root
from analysis.simulate import main as simulate_main


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full PPC pipeline for one scenario")
    parser.add_argument("--scenario", default="student_t", help="Scenario label for output")
    parser.add_argument("--noise", default=None, choices=NOISE_FAMILIES)
    parser.add_argument("--run-id", default=None, help="Reuse an explicit run ID")
    parser.add_argument("--n", type=int, default=N_OBS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    parser.add_argument("--draws", type=int, default=N_DRAWS)
    parser.add_argument("--tune", type=int, default=N_TUNE)
    parser.add_argument("--chains", type=int, default=N_CHAINS)
    parser.add_argument("--sampler", default=DEFAULT_SAMPLER, choices=SAMPLERS)
    parser.add_argument("--n-replicates", type=int, default=N_REPLICATES)
    parser.add_argument("--value-range", type=float, default=VALUE_RANGE)
    parser.add_argument("--df-mode", default="draw", choices=DF_MODES)
    parser.add_argument("--skip-loo", action="store_true")
    return parser.parse_args(argv)


def phase_argv(args: argparse.Namespace, run_id: str) -> dict[str, list[str]]:
    """Per-phase argument lists derived from the pipeline arguments."""
    common = ["--scenario", args.scenario, "--run-id", run_id]
    simulate = [*common, "--n", str(args.n), "--seed", str(args.seed)]
    if args.noise is not None:
        simulate += ["--noise", args.noise]
    fit = [
        *common,
        "--draws", str(args.draws),
        "--tune", str(args.tune),
        "--chains", str(args.chains),
        "--sampler", args.sampler,
        "--seed", str(args.seed),
    ]  # fmt: skip
    ppc = [
        *common,
        "--n-replicates", str(args.n_replicates),
        "--value-range", str(args.value_range),
        "--df-mode", args.df_mode,
        "--seed", str(args.seed),
    ]  # fmt: skip
    if args.skip_loo:
        ppc.append("--skip-loo")
    return {"01_simulate": simulate, "02_fit": fit, "03_ppc": ppc}


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    run_id = args.run_id or generate_run_id(args.scenario, scenario_root(args.scenario))
    print(f"Pipeline run {run_id} (scenario {args.scenario})")

    phases = {
        "01_simulate": simulate_main,
        "02_fit": fit_main,
        "03_ppc": ppc_main,
    }
    argvs = phase_argv(args, run_id)

    t0 = time.time()
    for name, phase_main in phases.items():
        print(f"\n>>> {name}")
        phase_main(argvs[name])
    print(f"\nPipeline {run_id} completed in {_format_elapsed(time.time() - t0)}")


if __name__ == "__main__":
    main()
