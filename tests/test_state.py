"""Frame stack and memory behaviour."""
import pytest

from evm_sym.bytecode import Program
from evm_sym.bytecode.abi import symbolic_calldata
from evm_sym.engine.state import MAX_STACK, Environment, Frame, MachineState, concrete
from evm_sym.errors import OutOfGas, StackOverflow, StackUnderflow, UnsupportedSymbolicAddress
from evm_sym.expr import build as B


def _frame() -> Frame:
    return Frame(
        program=Program.from_bytes(b"\x00"),
        address=1,
        storage_address=1,
        caller=B.var("caller"),
        callvalue=B.ZERO,
        calldata=B.EMPTY,
    )


def test_pop_on_empty_stack_underflows():
    frame = _frame()
    with pytest.raises(StackUnderflow):
        frame.pop()
    frame.push(B.ONE)
    with pytest.raises(StackUnderflow):
        frame.popn(2)
    with pytest.raises(StackUnderflow):
        frame.swap(1)


def test_stack_limit():
    frame = _frame()
    for _ in range(MAX_STACK):
        frame.push(B.ZERO)
    with pytest.raises(StackOverflow):
        frame.push(B.ZERO)


def test_popn_returns_top_first():
    frame = _frame()
    for value in (1, 2, 3):
        frame.push(B.lit(value))
    assert [v.value for v in frame.popn(2)] == [3, 2]
    assert [v.value for v in frame.stack] == [1]


def test_dup_and_swap():
    frame = _frame()
    frame.push(B.lit(1))
    frame.push(B.lit(2))
    frame.dup(2)
    assert [v.value for v in frame.stack] == [1, 2, 1]
    frame.swap(2)
    assert [v.value for v in frame.stack] == [1, 2, 1]
    frame.swap(1)
    assert [v.value for v in frame.stack] == [1, 1, 2]


def test_fresh_memory_reads_zero_and_expands_by_words():
    frame = _frame()
    assert frame.mload(0) is B.ZERO
    assert frame.msize == 32
    frame.mstore8(40, B.lit(0xFF))
    assert frame.msize == 64


def test_mstore_then_mload_round_trips_symbolic_words():
    frame = _frame()
    x = B.var("x")
    frame.mstore(0, x)
    assert frame.mload(0) is x
    assert frame.read(0, 32) is B.buf_bytes(B.word_to_bytes(x))


def test_memory_write_copies_from_buffer():
    frame = _frame()
    frame.write(0, B.buf_lit(b"\x01\x02"), B.ZERO, 4)
    assert frame.read(0, 4) is B.buf_lit(b"\x01\x02\x00\x00")


def test_huge_memory_access_runs_out_of_gas():
    with pytest.raises(OutOfGas):
        _frame().mload(1 << 40)


def test_concrete_rejects_symbolic_operands():
    assert concrete(B.lit(7), "offset") == 7
    with pytest.raises(UnsupportedSymbolicAddress):
        concrete(B.var("x"), "offset", pc=3)


def test_clone_is_independent(safe_add):
    state = MachineState.initial(safe_add, Environment.symbolic(symbolic_calldata(None)), gas=100)
    copy = state.clone()
    copy.frame.push(B.ONE)
    copy.storage[1] = B.storage_var("s")
    assert state.frame.stack == []
    assert state.storage == {}
    with pytest.raises(OutOfGas):
        state.charge(101)
    assert state.gas == 0
