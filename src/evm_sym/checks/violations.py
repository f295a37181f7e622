"""Violation search and postcondition proof over explored leaves."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from ..engine.explorer import Exploration, Leaf
from ..engine.state import LeafKind
from ..errors import ModelUnavailable
from ..expr import Expr
from ..expr import build as B
from ..solver import CheckResult, Solver, SolverPool
from .base import Failure, ViolationReport
from .counterexample import CounterexampleSynthesizer

logger = logging.getLogger(__name__)

# Panic(uint256) as emitted by Solidity's assert and checked arithmetic
PANIC_SELECTOR = 0x4E487B71
PANIC_DESCRIPTIONS = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division or modulo by zero",
    0x21: "invalid enum conversion",
    0x22: "invalid storage byte array encoding",
    0x31: "pop from empty array",
    0x32: "array index out of bounds",
    0x41: "allocation too large",
    0x51: "call to zero-initialized function",
}

Predicate = Callable[[Leaf], Expr]


def panic_condition(returndata: Expr, codes: Iterable[int]) -> Expr:
    """Condition under which *returndata* is ``Panic(code)`` for one of *codes*."""
    codes = list(codes)
    size = B.buf_length(returndata)
    if not codes or not size.is_lit or size.value != 36:
        return B.FALSE
    selector = B.concat(*(B.read_byte(returndata, B.lit(i)) for i in range(4)))
    code = B.read_word(returndata, B.lit(4))
    return B.band(B.eq(selector, B.lit(PANIC_SELECTOR, 32)), B.bor(*(B.eq(code, B.lit(c)) for c in codes)))


@dataclass(slots=True)
class _Outcome:
    failure: Failure | None = None
    undecided: bool = False


class ViolationChecker:
    """Classifies every leaf of an exploration against a safety predicate.

    Without *predicate* this is a violation search: reaching ``INVALID`` or
    reverting with one of *assert_panic_codes* is a failure. With a predicate
    it is a postcondition proof: every normally halting leaf must also satisfy
    ``predicate(leaf)``.
    """

    def __init__(
        self,
        solver: Solver | SolverPool,
        synthesizer: CounterexampleSynthesizer,
        predicate: Predicate | None = None,
        assert_panic_codes: Sequence[int] = (0x01,),
        get_models: bool = False,
        first_counterexample: bool = False,
    ) -> None:
        self.solver = solver
        self.synthesizer = synthesizer
        self.predicate = predicate
        self.assert_panic_codes = tuple(assert_panic_codes)
        self.get_models = get_models
        self.first_counterexample = first_counterexample
        self._outcomes: dict[int, _Outcome] = {}

    @property
    def mode(self) -> str:
        return "violations" if self.predicate is None else "postcondition"

    def _session(self) -> Solver:
        return self.solver.get() if isinstance(self.solver, SolverPool) else self.solver

    def watch(self, leaf: Leaf) -> bool:
        """Explorer callback: classify *leaf* now; True asks the explorer to stop."""
        outcome = self._classify(leaf)
        return self.first_counterexample and outcome.failure is not None

    def check(self, exploration: Exploration) -> ViolationReport:
        report = ViolationReport(mode=self.mode, exploration=exploration)
        for leaf in exploration.leaves:
            outcome = self._classify(leaf)
            if outcome.failure is not None:
                report.failures.append(outcome.failure)
                if self.first_counterexample:
                    break
            elif outcome.undecided:
                report.undecided.append(leaf)
            elif self.get_models:
                try:
                    report.witnesses[leaf.path_id] = self.synthesizer.synthesize(leaf.constraints, [leaf])
                except ModelUnavailable:
                    logger.debug("no witness for path %s", leaf.label)
        logger.info("%s: %s", self.mode, report.summary())
        return report

    def _classify(self, leaf: Leaf) -> _Outcome:
        cached = self._outcomes.get(id(leaf))
        if cached is not None:
            return cached
        outcome = self._evaluate(leaf)
        self._outcomes[id(leaf)] = outcome
        return outcome

    def _evaluate(self, leaf: Leaf) -> _Outcome:
        if leaf.kind is LeafKind.INVALID:
            return self._failing(leaf, (), "INVALID opcode reached")
        if leaf.kind is LeafKind.REVERT:
            condition = panic_condition(leaf.returndata, self.assert_panic_codes)
            if condition is B.FALSE:
                return _Outcome()
            codes = ", ".join(f"{c:#04x}" for c in self.assert_panic_codes)
            return self._query(leaf, condition, f"reverted with Panic({codes})")
        if leaf.kind.is_normal and self.predicate is not None:
            negated = B.bnot(self.predicate(leaf))
            if negated is B.FALSE:
                return _Outcome()
            return self._query(leaf, negated, "postcondition violated")
        return _Outcome()

    def _query(self, leaf: Leaf, condition: Expr, description: str) -> _Outcome:
        if condition is B.TRUE:
            return self._failing(leaf, (), description)
        result = self._session().check(leaf.constraints + (condition,))
        if result is CheckResult.SAT:
            return self._failing(leaf, (condition,), description)
        if result is CheckResult.UNKNOWN:
            logger.warning("could not decide %s on path %s", description, leaf.label)
            return _Outcome(undecided=True)
        return _Outcome()

    def _failing(self, leaf: Leaf, extra: tuple[Expr, ...], description: str) -> _Outcome:
        try:
            example = self.synthesizer.synthesize(leaf.constraints + extra, [leaf])
        except ModelUnavailable:
            # the path constraints themselves timed out; report without a witness
            example = None
        logger.info("path %s: %s", leaf.label, description)
        return _Outcome(failure=Failure(leaf, description, example))
