"""Symbolic execution of EVM bytecode: violation search, postconditions and equivalence."""

from __future__ import annotations

from .checks import EquivalenceReport, Verdict, ViolationReport
from .config import Config, load_config
from .runner import Runner, run_check, run_equivalence

__version__ = "0.1.0"

__all__ = [
    "Config",
    "EquivalenceReport",
    "Runner",
    "Verdict",
    "ViolationReport",
    "__version__",
    "load_config",
    "run_check",
    "run_equivalence",
]
