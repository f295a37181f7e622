"""Equivalence of two programs run against one shared symbolic environment."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from ..engine.explorer import Exploration, Leaf
from ..errors import ModelUnavailable
from ..expr import Expr, Model, evaluate
from ..expr import build as B
from ..solver import CheckResult, Solver, SolverPool
from .base import Discrepancy, EquivalenceReport
from .counterexample import CounterexampleSynthesizer

logger = logging.getLogger(__name__)


def canonical(constraints: Iterable[Expr]) -> list[Expr]:
    """Deduplicated constraints in structural order, independent of their source."""
    unique = {id(c): c for c in constraints if c is not B.TRUE}
    return sorted(unique.values(), key=lambda c: c.digest)


class EquivalenceChecker:
    """Looks for inputs on which two programs halt differently."""

    def __init__(
        self,
        solver: Solver | SolverPool,
        synthesizer: CounterexampleSynthesizer,
        initial_storage: Callable[[int], Expr],
        facts: Callable[[], list[Expr]] = list,
        first_counterexample: bool = False,
    ) -> None:
        self.solver = solver
        self.synthesizer = synthesizer
        self.initial_storage = initial_storage
        self.facts = facts
        self.first_counterexample = first_counterexample

    def _session(self) -> Solver:
        return self.solver.get() if isinstance(self.solver, SolverPool) else self.solver

    def differences(self, a: Leaf, b: Leaf) -> list[tuple[str, Expr]]:
        """Named conditions under which the outcomes of *a* and *b* are distinguishable."""
        if a.kind.is_normal != b.kind.is_normal:
            return [(f"halt kinds differ ({a.kind} vs {b.kind})", B.TRUE)]
        found = [("return data differs", B.bnot(B.buf_eq(a.returndata, b.returndata)))]
        if a.kind.is_normal:
            # reverted paths leave storage untouched
            for address in sorted(set(a.storage) | set(b.storage)):
                sa = a.storage.get(address) or self.initial_storage(address)
                sb = b.storage.get(address) or self.initial_storage(address)
                found.append((f"storage of {address:#x} differs", B.bnot(B.eq(sa, sb))))
        return [(label, cond) for label, cond in found if cond is not B.FALSE]

    def check(self, exploration_a: Exploration, exploration_b: Exploration) -> EquivalenceReport:
        report = EquivalenceReport(exploration_a, exploration_b)
        halted_a = [leaf for leaf in exploration_a.leaves if leaf.kind.is_halt]
        halted_b = [leaf for leaf in exploration_b.leaves if leaf.kind.is_halt]
        for a in halted_a:
            for b in halted_b:
                discrepancy = self._compare(a, b, report)
                if discrepancy is not None:
                    report.discrepancies.append(discrepancy)
                    if self.first_counterexample:
                        logger.info("equivalence: %s", report.summary())
                        return report
        logger.info("equivalence: %s", report.summary())
        return report

    def _compare(self, a: Leaf, b: Leaf, report: EquivalenceReport) -> Discrepancy | None:
        differences = self.differences(a, b)
        if not differences:
            return None
        differ = B.bor(*(cond for _, cond in differences))
        query = canonical([*a.constraints, *b.constraints, *self.facts()]) + [differ]
        result = self._session().check(query)
        if result is CheckResult.UNSAT:
            return None
        if result is CheckResult.UNKNOWN:
            logger.warning("could not compare paths %s and %s", a.label, b.label)
            report.undecided.append((a, b))
            return None
        try:
            example = self.synthesizer.synthesize(query, [a, b])
        except ModelUnavailable:
            example = None
        description = "; ".join(self._witnessed(differences, example.model if example else None))
        logger.info("paths %s and %s diverge: %s", a.label, b.label, description)
        return Discrepancy(a, b, description, example)

    @staticmethod
    def _witnessed(differences: list[tuple[str, Expr]], model: Model | None) -> list[str]:
        if model is None:
            return [label for label, _ in differences]
        shown = [label for label, cond in differences if evaluate(cond, model) is B.TRUE]
        return shown or [label for label, _ in differences]
