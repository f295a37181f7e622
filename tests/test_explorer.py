"""Path exploration: forking, pruning, loop bounds and cancellation."""
import pytest

from evm_sym.bytecode import OpCode, Program, assemble, label, push, ref
from evm_sym.bytecode.abi import symbolic_calldata
from evm_sym.engine import LeafKind, PathExplorer
from evm_sym.engine.state import Environment, MachineState
from evm_sym.engine.symbolic import Interpreter
from evm_sym.errors import ConfigError, InternalInconsistency
from evm_sym.expr import build as B
from evm_sym.solver import CheckResult, SolverPool, Z3Solver


def _initial(program: Program) -> MachineState:
    return MachineState.initial(program, Environment.symbolic(symbolic_calldata(None)), gas=10_000_000)


def _explore(program: Program, solver, assumptions=(), **kwargs):
    explorer = PathExplorer(Interpreter(), solver, **kwargs)
    return explorer.explore(_initial(program), assumptions)


class TakenSideUnknown(Z3Solver):
    """z3 session that cannot decide the jump-taken side of any branch."""

    def __init__(self) -> None:
        super().__init__(timeout_ms=10_000)
        self.calls = 0

    def check(self, constraints):
        self.calls += 1
        # branch queries come in pairs, the taken side first
        if self.calls % 2 == 1:
            return CheckResult.UNKNOWN
        return super().check(constraints)


def _diamond() -> Program:
    """Two branches in a row; both sides of the first reach the second."""
    return Program.from_bytes(assemble([
        OpCode.CALLVALUE, ref("a"), OpCode.JUMPI,
        label("a"),
        OpCode.PUSH0, OpCode.CALLDATALOAD, ref("b"), OpCode.JUMPI,
        label("b"),
        OpCode.STOP,
    ]))


def test_every_feasible_path_becomes_a_leaf(safe_add, solver):
    result = _explore(safe_add, solver)
    assert [leaf.label for leaf in result.leaves] == ["0.0", "0.1", "1"]
    assert result.count(LeafKind.RETURN) == 1
    assert result.count(LeafKind.REVERT) == 2
    assert result.exhaustive
    assert result.forks == 2


def test_literal_condition_does_not_extend_the_path(solver):
    program = Program.from_bytes(assemble([OpCode.PUSH0, ref("x"), OpCode.JUMPI, OpCode.STOP, label("x"), OpCode.INVALID]))
    result = _explore(program, solver)
    assert len(result.leaves) == 1
    leaf = result.leaves[0]
    assert leaf.kind is LeafKind.STOP
    assert leaf.label == "root"
    assert leaf.constraints == ()
    assert result.branches == 1
    assert result.forks == 0


def test_infeasible_side_is_pruned_without_extending_the_id(safe_add, solver):
    result = _explore(safe_add, solver, assumptions=[B.eq(B.var("callvalue"), B.ZERO)])
    assert [leaf.label for leaf in result.leaves] == ["0", "1"]
    assert {leaf.kind for leaf in result.leaves} == {LeafKind.RETURN, LeafKind.REVERT}


def test_unsatisfiable_path_condition_is_fatal(safe_add, solver):
    with pytest.raises(InternalInconsistency):
        _explore(safe_add, solver, assumptions=[B.FALSE])


def test_loop_is_cut_at_the_iteration_bound(counting_loop, solver):
    result = _explore(counting_loop, solver, max_iterations=5)
    assert result.count(LeafKind.STOP) == 5
    assert result.count(LeafKind.BOUND_REACHED) == 2
    assert not result.exhaustive
    for leaf in result.leaves:
        assert all(count <= 5 for count in leaf.visits.values())
    bounded = [leaf for leaf in result.leaves if leaf.kind is LeafKind.BOUND_REACHED]
    assert [leaf.label for leaf in bounded] == ["1.1.1.1.1.0", "1.1.1.1.1.1"]
    assert all(leaf.reason == "BoundReached" for leaf in bounded)


def test_global_bound_counts_visits_across_paths(solver):
    per_path = _explore(_diamond(), solver, max_iterations=1)
    assert per_path.count(LeafKind.STOP) == 4

    shared = _explore(_diamond(), solver, max_iterations=1, loop_bound_policy="global")
    assert shared.count(LeafKind.STOP) == 2
    assert shared.count(LeafKind.BOUND_REACHED) == 2


def test_unknown_loop_bound_policy_is_rejected(solver):
    with pytest.raises(ConfigError):
        PathExplorer(Interpreter(), solver, loop_bound_policy="sometimes")


def test_parallel_exploration_needs_a_pool(solver):
    with pytest.raises(ConfigError):
        PathExplorer(Interpreter(), solver, workers=2)


def test_parallel_exploration_matches_serial(counting_loop, solver):
    serial = _explore(counting_loop, solver, max_iterations=3)
    with SolverPool(lambda: Z3Solver(timeout_ms=10_000)) as pool:
        parallel = _explore(counting_loop, pool, max_iterations=3, workers=2)
    assert [leaf.label for leaf in parallel.leaves] == [leaf.label for leaf in serial.leaves]
    assert [leaf.kind for leaf in parallel.leaves] == [leaf.kind for leaf in serial.leaves]


def test_on_leaf_can_stop_the_exploration(counting_loop, solver):
    result = _explore(counting_loop, solver, on_leaf=lambda leaf: True)
    assert result.cancelled
    assert len(result.leaves) == 1
    assert result.leaves[0].label == "0"
    assert not result.exhaustive


def test_path_errors_become_leaves(solver):
    program = Program.from_bytes(assemble([OpCode.CALLVALUE, OpCode.MLOAD, OpCode.STOP]))
    result = _explore(program, solver)
    (leaf,) = result.leaves
    assert leaf.kind is LeafKind.UNSUPPORTED
    assert leaf.reason == "UnsupportedSymbolicAddress"
    assert leaf.pc == 1


def test_undecidable_sides_become_undecided_leaves(safe_add):
    with TakenSideUnknown() as session:
        result = _explore(safe_add, session)
    # only the callvalue branch: the taken side is unknown, the other side reverts
    kinds = [leaf.kind for leaf in result.leaves]
    assert kinds == [LeafKind.UNDECIDED, LeafKind.REVERT]
    assert [leaf.label for leaf in result.leaves] == ["0", "1"]
    assert result.leaves[0].reason == "SolverUnknown"
    assert result.forks == 0
    assert not result.exhaustive


def test_undecided_sides_still_count_against_the_bound(counting_loop):
    with TakenSideUnknown() as session:
        result = _explore(counting_loop, session, max_iterations=2)
    assert [leaf.label for leaf in result.leaves] == ["0", "1.0", "1.1.0", "1.1.1"]
    assert result.count(LeafKind.UNDECIDED) == 2
    assert result.count(LeafKind.BOUND_REACHED) == 2
    assert result.branches == 3
    for leaf in result.leaves:
        assert all(count <= 2 for count in leaf.visits.values())


def test_running_out_of_gas_ends_the_path(solver):
    program = Program.from_bytes(assemble([push(1), push(2), OpCode.ADD, OpCode.STOP]))
    explorer = PathExplorer(Interpreter(), solver)
    initial = MachineState.initial(program, Environment.symbolic(symbolic_calldata(None)), gas=5)
    (leaf,) = explorer.explore(initial).leaves
    assert leaf.kind is LeafKind.OUT_OF_GAS
    assert leaf.reason == "OutOfGas"
    assert leaf.pc == 2


def test_symbolic_target_of_an_untaken_jump_is_ignored(solver):
    program = Program.from_bytes(assemble([OpCode.PUSH0, OpCode.CALLVALUE, OpCode.JUMPI, OpCode.STOP]))
    (leaf,) = _explore(program, solver).leaves
    assert leaf.kind is LeafKind.STOP
    assert leaf.label == "root"
