"""Decision-procedure backends behind one interface."""

from __future__ import annotations

from ..config import SOLVERS
from ..errors import ConfigError
from .base import CheckResult, Solver, SolverPool
from .smtlib import DEFAULT_COMMAND, SmtLibSolver
from .z3_backend import Z3Solver

__all__ = ["CheckResult", "SmtLibSolver", "Solver", "SolverPool", "Z3Solver", "make_solver"]


def make_solver(name: str = "z3", timeout_ms: int = 30_000, command: str | None = None) -> Solver:
    if name == "z3":
        return Z3Solver(timeout_ms=timeout_ms)
    if name == "smtlib":
        return SmtLibSolver(command or DEFAULT_COMMAND, timeout_ms=timeout_ms)
    raise ConfigError(f"unknown solver {name!r}; expected one of {', '.join(SOLVERS)}")
