"""Solver backends: in-process z3 and SMT-LIB2 over a subprocess."""
import shlex
import shutil
import sys

import pytest

from evm_sym.errors import ConfigError, ModelUnavailable, SolverFailure
from evm_sym.expr import evaluate
from evm_sym.expr import build as B
from evm_sym.solver import CheckResult, SmtLibSolver, SolverPool, Z3Solver, make_solver
from evm_sym.solver.smtlib import Printer, parse_sexprs, parse_value


def _fake_solver(*lines: str) -> SmtLibSolver:
    """An SMT-LIB "solver" that ignores its script and prints *lines*."""
    body = "import sys; sys.stdin.read(); " + "; ".join(f"print({line!r})" for line in lines)
    return SmtLibSolver(shlex.join([sys.executable, "-c", body]), timeout_ms=30_000)


def test_z3_decides_satisfiability(solver):
    x = B.var("x")
    assert solver.check([B.ult(x, B.lit(10))]) is CheckResult.SAT
    assert solver.check([B.ult(x, B.lit(10)), B.ult(B.lit(20), x)]) is CheckResult.UNSAT
    assert solver.queries == 2


def test_z3_wraparound_is_modular(solver):
    x = B.var("x")
    overflow = B.ult(B.add(x, B.ONE), x)
    assert solver.check([overflow]) is CheckResult.SAT
    assert solver.values([overflow], [x]) == {x: (1 << 256) - 1}


def test_z3_division_by_zero_is_zero(solver):
    x, y = B.var("x"), B.var("y")
    query = [B.eq(y, B.ZERO), B.bnot(B.eq(B.udiv(x, y), B.ZERO))]
    assert solver.check(query) is CheckResult.UNSAT
    query = [B.eq(y, B.ZERO), B.bnot(B.eq(B.urem(x, y), B.ZERO))]
    assert solver.check(query) is CheckResult.UNSAT


def test_values_need_a_satisfiable_query(solver):
    with pytest.raises(ModelUnavailable):
        solver.values([B.FALSE], [B.var("x")])


def test_model_covers_buffers_and_storage(solver):
    cd = B.buf_var("cd")
    slot = B.sload(B.storage_var("s"), B.lit(3))
    constraints = [
        B.eq(B.read_byte(cd, B.ZERO), B.lit(0xAB, 8)),
        B.eq(slot, B.lit(77)),
    ]
    model = solver.model(constraints)
    assert model.values["cd_length"] >= 1
    assert evaluate(B.read_byte(cd, B.ZERO), model) is B.lit(0xAB, 8)
    assert evaluate(slot, model) is B.lit(77)


def test_printer_declares_variables_once():
    x = B.var("x")
    printer = Printer()
    printer.render([B.ult(x, B.lit(10)), B.eq(x, B.lit(3))])
    assert printer.lines.count("(declare-fun |x| () (_ BitVec 256))") == 1
    assert any(line.endswith("(bvult |x| (_ bv10 256)))") for line in printer.lines)


def test_script_asks_for_values():
    x = B.var("x")
    script = SmtLibSolver().script([B.ult(x, B.lit(10))], [x])
    assert "(set-logic QF_AUFBV)" in script
    assert "(check-sat)" in script
    assert "(get-value (|x|))" in script
    assert script.endswith("(exit)\n")


def test_parse_sexprs_and_values():
    parsed = parse_sexprs("sat\n((|x| #x0a) (|p| true) (|y| (_ bv7 256)))")
    assert parsed[0] == "sat"
    pairs = parsed[1]
    assert [parse_value(value) for _, value in pairs] == [10, 1, 7]
    assert parse_value("#b101") == 5
    with pytest.raises(SolverFailure):
        parse_sexprs("((sat)")
    with pytest.raises(SolverFailure):
        parse_value("oops")


def test_smtlib_reads_results_from_the_process():
    x = B.var("x")
    assert _fake_solver("unsat").check([B.ult(x, B.lit(10))]) is CheckResult.UNSAT
    found = _fake_solver("sat", "((|x| (_ bv5 256)))").values([B.ult(x, B.lit(10))], [x])
    assert found == {x: 5}


def test_smtlib_garbage_output_is_a_failure():
    with pytest.raises(SolverFailure):
        _fake_solver("(error \"boom\")").check([B.TRUE])


def test_smtlib_missing_binary_is_a_failure():
    with pytest.raises(SolverFailure):
        SmtLibSolver("/nonexistent/smt-solver -in").check([B.TRUE])


def test_smtlib_timeout_is_unknown():
    body = "import sys, time; sys.stdin.read(); time.sleep(10)"
    session = SmtLibSolver(shlex.join([sys.executable, "-c", body]), timeout_ms=200)
    assert session.check([B.ult(B.var("x"), B.lit(10))]) is CheckResult.UNKNOWN
    with pytest.raises(ModelUnavailable):
        session.values([B.TRUE], [B.var("x")])


@pytest.mark.skipif(shutil.which("z3") is None, reason="z3 executable not installed")
def test_smtlib_against_real_z3():
    x = B.var("x")
    session = SmtLibSolver("z3 -in", timeout_ms=10_000)
    assert session.check([B.ult(B.add(x, B.ONE), x)]) is CheckResult.SAT
    assert session.values([B.eq(B.add(x, B.lit(1)), B.lit(10))], [x]) == {x: 9}


def test_make_solver_by_name():
    assert isinstance(make_solver("z3", timeout_ms=100), Z3Solver)
    assert make_solver("smtlib", command="my-solver --in").command == ["my-solver", "--in"]
    with pytest.raises(ConfigError):
        make_solver("cvc9")


def test_pool_gives_each_thread_its_own_session():
    with SolverPool(lambda: Z3Solver(timeout_ms=1_000)) as pool:
        first = pool.get()
        assert pool.get() is first
        first.check([B.TRUE])
        assert pool.queries == 1
