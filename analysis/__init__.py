"""Analysis pipeline for posterior predictive checks.

Pipeline phases (in order):
  01_simulate  — Synthetic regression data with known ground truth
  02_fit       — MCMC fits of the Normal-error and Student-t-error models
  03_ppc       — Posterior predictive replicates, tail checks, LOO-CV

Shared infrastructure at root: run_context.py, report.py, pipeline.py

Uses a PEP 302 meta-path finder so that ``from analysis.ppc_data import X``
transparently loads ``analysis.03_ppc.ppc_data``.
"""

from __future__ import annotations

import importlib
import sys
import types
from importlib.abc import MetaPathFinder
from importlib.machinery import ModuleSpec

_MODULE_MAP: dict[str, str] = {
    "simulate": "01_simulate",
    "simulate_report": "01_simulate",
    "fit": "02_fit",
    "fit_data": "02_fit",
    "fit_report": "02_fit",
    "ppc": "03_ppc",
    "ppc_data": "03_ppc",
    "ppc_report": "03_ppc",
}


class _AliasLoader:
    """Loader that imports the real module and registers it under the alias."""

    def __init__(self, real_name: str) -> None:
        self.real_name = real_name

    def create_module(self, spec: ModuleSpec) -> types.ModuleType | None:
        return None  # use default semantics

    def exec_module(self, module: types.ModuleType) -> None:
        real = importlib.import_module(self.real_name)
        module.__dict__.update(real.__dict__)
        module.__file__ = real.__file__
        module.__loader__ = real.__loader__
        if hasattr(real, "__path__"):
            module.__path__ = real.__path__


class _AnalysisRedirectFinder(MetaPathFinder):
    """Redirect ``analysis.<name>`` imports to ``analysis.<NN_subdir>.<name>``."""

    def find_spec(
        self,
        fullname: str,
        path: object = None,
        target: types.ModuleType | None = None,
    ) -> ModuleSpec | None:
        parts = fullname.split(".")
        if len(parts) == 2 and parts[0] == "analysis" and parts[1] in _MODULE_MAP:
            name = parts[1]
            real = f"analysis.{_MODULE_MAP[name]}.{name}"
            return ModuleSpec(fullname, _AliasLoader(real))
        return None


sys.meta_path.insert(0, _AnalysisRedirectFinder())
