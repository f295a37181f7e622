"""Backend-neutral solver interface."""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from enum import StrEnum

from ..errors import ModelUnavailable
from ..expr import ArrayValue, Expr, Model, Op, array_reads, free_variables, iter_dag
from ..expr import build as B
from ..expr.core import BUFFER, STORAGE


class CheckResult(StrEnum):
    SAT = "sat"
    UNSAT = "unsat"
    UNKNOWN = "unknown"


class Solver(ABC):
    """One decision-procedure session.

    Every query carries its full constraint set; a session keeps no assertions
    between queries. Sessions are not thread-safe, use a :class:`SolverPool`
    to give each worker its own.
    """

    name = "abstract"

    def __init__(self, timeout_ms: int = 30_000) -> None:
        self.timeout_ms = timeout_ms
        self.queries = 0

    @abstractmethod
    def check(self, constraints: Sequence[Expr]) -> CheckResult:
        """Satisfiability of the conjunction of *constraints*."""

    @abstractmethod
    def _values(self, constraints: Sequence[Expr], terms: Sequence[Expr]) -> dict[Expr, int] | None:
        """Solve and read *terms* from the model, or ``None`` when not satisfiable."""

    def values(self, constraints: Sequence[Expr], terms: Sequence[Expr]) -> dict[Expr, int]:
        """Concrete values of *terms* in one model of *constraints*.

        Raises :class:`ModelUnavailable` unless the constraints are satisfiable.
        """
        found = self._values(list(constraints), list(terms))
        if found is None:
            raise ModelUnavailable("constraints are not known to be satisfiable")
        return found

    def model(self, constraints: Sequence[Expr], extra: Iterable[Expr] = ()) -> Model:
        """A model covering every variable and array read in *constraints* and *extra*."""
        constraints = list(constraints)
        roots = constraints + list(extra)
        variables = free_variables(roots)
        scalars = [v for v in variables if v.sort not in (BUFFER, STORAGE)]
        scalars += [B.length_var(v.name) for v in variables if v.sort == BUFFER]
        reads = array_reads(roots)
        indices = [index for _, index in reads]
        selects = [B.select(array, index) for array, index in reads]
        applications = [n for n in iter_dag(tuple(roots)) if n.op is Op.APPLY]
        terms = list(dict.fromkeys(scalars + indices + selects + applications))
        found = self.values(constraints, terms)

        model = Model()
        for term in scalars:
            model.values[term.name] = found[term]
        slots: dict[str, dict[int, int]] = {}
        for (array, index), read in zip(reads, selects):
            slots.setdefault(array.name, {}).setdefault(found[index], found[read])
        for name, entries in slots.items():
            model.arrays[name] = ArrayValue.of(entries)
        for node in applications:
            model.terms[node] = found[node]
        return model

    def close(self) -> None:
        """Release the session's resources."""

    def __enter__(self) -> Solver:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class SolverPool:
    """Hands out one solver session per thread and closes them all at the end."""

    def __init__(self, factory: Callable[[], Solver]) -> None:
        self.factory = factory
        self._local = threading.local()
        self._lock = threading.Lock()
        self._sessions: list[Solver] = []

    def get(self) -> Solver:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self.factory()
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    @property
    def queries(self) -> int:
        with self._lock:
            return sum(s.queries for s in self._sessions)

    def close(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()

    def __enter__(self) -> SolverPool:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
