"""Equivalence checking between two programs."""
from evm_sym import Config, Runner, Verdict, run_equivalence
from evm_sym.bytecode import OpCode, Program, assemble, push
from evm_sym.checks import EquivalenceChecker, canonical
from evm_sym.expr import build as B
from evm_sym.solver import CheckResult, Solver

ADD_SIG = "add(uint256,uint256)"


class Undecided(Solver):
    name = "undecided"

    def check(self, constraints):
        self.queries += 1
        return CheckResult.UNKNOWN

    def _values(self, constraints, terms):
        return None


def _stores(value: int) -> Program:
    return Program.from_bytes(assemble([push(value), OpCode.PUSH0, OpCode.SSTORE, OpCode.STOP]), name=f"stores{value}")


def test_program_is_equivalent_to_itself(safe_add):
    report = run_equivalence(safe_add, safe_add, Config(signature=ADD_SIG))
    assert report.verdict is Verdict.PROVED
    assert report.summary() == "no discrepancies, 3/3 paths"


def test_missing_guard_is_a_discrepancy(safe_add, unchecked_add):
    report = run_equivalence(safe_add, unchecked_add, Config(signature=ADD_SIG))
    assert report.verdict is Verdict.FAILED
    assert len(report.discrepancies) == 2
    for d in report.discrepancies:
        assert d.description == "halt kinds differ (revert vs return)"
        assert d.counterexample is not None


def test_verdict_does_not_depend_on_argument_order(safe_add, unchecked_add):
    forward = run_equivalence(safe_add, unchecked_add, Config(signature=ADD_SIG))
    backward = run_equivalence(unchecked_add, safe_add, Config(signature=ADD_SIG))
    assert forward.verdict is backward.verdict
    assert len(forward.discrepancies) == len(backward.discrepancies)
    assert {d.description for d in backward.discrepancies} == {"halt kinds differ (return vs revert)"}
    # same queries in either order, so the same witnesses
    for f, b in zip(forward.discrepancies, backward.discrepancies):
        assert f.counterexample.calldata == b.counterexample.calldata
        assert f.counterexample.callvalue == b.counterexample.callvalue


def test_storage_difference_is_reported():
    report = run_equivalence(_stores(1), _stores(2))
    assert report.verdict is Verdict.FAILED
    (d,) = report.discrepancies
    assert d.description == "storage of 0xaaaa0000000000000000000000000000000000aa differs"


def test_same_writes_are_equivalent():
    assert run_equivalence(_stores(1), _stores(1)).verdict is Verdict.PROVED


def test_first_counterexample_stops_early(safe_add, unchecked_add):
    report = run_equivalence(safe_add, unchecked_add, Config(signature=ADD_SIG, first_counterexample=True))
    assert len(report.discrepancies) == 1


def test_canonical_order_ignores_source_order():
    x, y = B.var("x"), B.var("y")
    a, b = B.ult(x, y), B.eq(x, B.lit(3))
    assert canonical([a, b, B.TRUE]) == canonical([b, a, a])


def test_undecided_comparisons_are_inconclusive(safe_add, unchecked_add):
    with Runner(Config(signature=ADD_SIG)) as runner:
        exploration_a = runner.explore(safe_add)
        exploration_b = runner.explore(unchecked_add)
        checker = EquivalenceChecker(Undecided(), runner.synthesizer, initial_storage=runner.storage.initial)
        report = checker.check(exploration_a, exploration_b)
    assert report.discrepancies == []
    assert len(report.undecided) >= 2
    assert report.verdict is Verdict.INCONCLUSIVE
    assert report.summary() == f"inconclusive: 3/1 paths, {len(report.undecided)} undecided pair(s)"
