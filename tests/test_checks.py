"""Violation search, postconditions and counterexample decoding."""
from evm_sym import Config, Runner, Verdict, run_check
from evm_sym.bytecode import OpCode, Program, assemble, label, push, ref
from evm_sym.bytecode.abi import symbolic_calldata
from evm_sym.checks import CounterexampleSynthesizer, ViolationChecker, panic_condition
from evm_sym.engine import Environment, LeafKind
from evm_sym.expr import ArrayValue, Model
from evm_sym.expr import build as B
from evm_sym.solver import CheckResult, Solver

ADD_SIG = "add(uint256,uint256)"
WORD = 1 << 256


class Undecided(Solver):
    """Session that never reaches a verdict."""

    name = "undecided"

    def check(self, constraints):
        self.queries += 1
        return CheckResult.UNKNOWN

    def _values(self, constraints, terms):
        return None


def _panics_on_seven() -> Program:
    """f(x): Panic(0x01) when x == 7, otherwise stops."""
    return Program.from_bytes(assemble([
        push(4), OpCode.CALLDATALOAD, push(7), OpCode.EQ, ref("boom"), OpCode.JUMPI,
        OpCode.STOP,
        label("boom"),
        push(0x4E487B71 << 224), OpCode.PUSH0, OpCode.MSTORE,
        push(1), push(4), OpCode.MSTORE,
        push(36), OpCode.PUSH0, OpCode.REVERT,
    ]), name="panics")


def _returned_word(leaf):
    return B.read_word(leaf.returndata, B.ZERO)


def _no_wraparound(leaf):
    return B.bnot(B.ult(_returned_word(leaf), B.var("arg0")))


def test_guarded_addition_is_proved(safe_add):
    report = run_check(safe_add, Config(signature=ADD_SIG))
    assert report.verdict is Verdict.PROVED
    assert report.summary() == "no violations found, 3 paths explored"
    assert report.exploration.count(LeafKind.REVERT) == 2
    assert report.exploration.count(LeafKind.RETURN) == 1
    assert report.failures == []


def test_reachable_invalid_yields_counterexample(faulty_add):
    report = run_check(faulty_add, Config(signature=ADD_SIG))
    assert report.verdict is Verdict.FAILED
    (failure,) = report.failures
    assert failure.leaf.kind is LeafKind.INVALID
    assert failure.description == "INVALID opcode reached"
    example = failure.counterexample
    assert example.function == ADD_SIG
    a, b = example.arguments["arg0"], example.arguments["arg1"]
    assert (a + b) % WORD < a
    assert example.calldata[:4] == bytes.fromhex("771602f7")
    assert int.from_bytes(example.calldata[4:36], "big") == a
    assert report.summary() == "1 counterexample(s) found, 2 paths explored"


def test_postcondition_fails_on_unchecked_addition(unchecked_add):
    report = run_check(unchecked_add, Config(signature=ADD_SIG), predicate=_no_wraparound)
    assert report.mode == "postcondition"
    assert report.verdict is Verdict.FAILED
    (failure,) = report.failures
    assert failure.description == "postcondition violated"
    a, b = failure.counterexample.arguments["arg0"], failure.counterexample.arguments["arg1"]
    assert a + b >= WORD


def test_postcondition_holds_on_guarded_addition(safe_add):
    report = run_check(safe_add, Config(signature=ADD_SIG), predicate=_no_wraparound)
    assert report.verdict is Verdict.PROVED


def test_panic_revert_counts_as_assertion_failure():
    report = run_check(_panics_on_seven(), Config(signature="f(uint256)"))
    assert report.verdict is Verdict.FAILED
    (failure,) = report.failures
    assert failure.leaf.kind is LeafKind.REVERT
    assert failure.description == "reverted with Panic(0x01)"
    assert failure.counterexample.arguments == {"arg0": 7}


def test_panic_codes_can_be_ignored():
    report = run_check(_panics_on_seven(), Config(signature="f(uint256)", assert_panic_codes=[]))
    assert report.verdict is Verdict.PROVED


def test_panic_condition_needs_exact_layout():
    data = (0x4E487B71).to_bytes(4, "big") + (0x11).to_bytes(32, "big")
    assert panic_condition(B.buf_lit(data), [0x11]) is B.TRUE
    assert panic_condition(B.buf_lit(data), [0x01]) is B.FALSE
    assert panic_condition(B.buf_lit(data[:35]), [0x11]) is B.FALSE


def test_models_for_every_path_on_request(safe_add):
    report = run_check(safe_add, Config(signature=ADD_SIG, get_models=True))
    assert sorted(report.witnesses) == [(0, 0), (0, 1), (1,)]
    assert report.witnesses[(1,)].callvalue != 0
    assert report.witnesses[(0, 0)].callvalue == 0


def test_fixed_caller_and_value_are_reported(faulty_add):
    report = run_check(faulty_add, Config(signature=ADD_SIG, caller=0xCAFE, callvalue=5))
    example = report.failures[0].counterexample
    assert example.caller == 0xCAFE
    assert example.callvalue == 5
    assert example.to_dict()["caller"] == "0x" + "0" * 36 + "cafe"


def test_loop_bound_makes_the_result_inconclusive(counting_loop):
    report = run_check(counting_loop, Config(max_iterations=2))
    assert report.verdict is Verdict.INCONCLUSIVE
    assert report.summary() == "inconclusive: 4 paths explored (2 bound reached)"


def test_unshaped_calldata_is_decoded_as_words():
    synthesizer = CounterexampleSynthesizer(None, Environment.symbolic(symbolic_calldata(None)))
    model = Model(values={"calldata_length": 8}, arrays={"calldata": ArrayValue.of({0: 0xAA, 4: 0xBB})})
    example = synthesizer.decode(model)
    assert example.calldata == b"\xaa\x00\x00\x00\xbb\x00\x00\x00"
    assert example.function is None
    assert example.arguments == {"selector": "0xaa000000", "word0": "0xbb000000"}
    assert example.describe() == "calldata 0xaa000000bb000000 from 0x" + "0" * 40 + " with value 0"


def test_undecided_postcondition_is_inconclusive(safe_add):
    with Runner(Config(signature=ADD_SIG)) as runner:
        exploration = runner.explore(safe_add)
        checker = ViolationChecker(Undecided(), runner.synthesizer, predicate=_no_wraparound)
        report = checker.check(exploration)
    assert report.failures == []
    assert [leaf.kind for leaf in report.undecided] == [LeafKind.RETURN]
    assert report.verdict is Verdict.INCONCLUSIVE
    assert report.summary() == "inconclusive: 3 paths explored (1 undecided)"


def test_gas_exhaustion_is_inconclusive():
    program = Program.from_bytes(assemble([push(1), push(2), OpCode.ADD, OpCode.STOP]))
    report = run_check(program, Config(gas_limit=5))
    assert report.exploration.count(LeafKind.OUT_OF_GAS) == 1
    assert report.verdict is Verdict.INCONCLUSIVE
    assert report.summary() == "inconclusive: 1 paths explored (1 path errors)"
