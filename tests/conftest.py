"""Shared programs and fixtures."""
from __future__ import annotations

import pytest

from evm_sym.bytecode import OpCode, Program, assemble, label, push, ref
from evm_sym.solver import Z3Solver


def safe_add_code() -> bytes:
    """Non-payable add(x, y) that reverts instead of overflowing."""
    return assemble([
        OpCode.CALLVALUE, OpCode.ISZERO, ref("ok"), OpCode.JUMPI,
        OpCode.PUSH0, OpCode.PUSH0, OpCode.REVERT,
        label("ok"),
        push(4), OpCode.CALLDATALOAD, push(0x24), OpCode.CALLDATALOAD,
        OpCode.DUP2, OpCode.ADD, OpCode.DUP1, OpCode.DUP3, OpCode.GT, OpCode.ISZERO,
        ref("noov"), OpCode.JUMPI,
        OpCode.PUSH0, OpCode.PUSH0, OpCode.REVERT,
        label("noov"),
        OpCode.PUSH0, OpCode.MSTORE, push(32), OpCode.PUSH0, OpCode.RETURN,
    ])


def faulty_add_code() -> bytes:
    """add(x, y) that reaches INVALID exactly when x + y wraps around."""
    return assemble([
        push(4), OpCode.CALLDATALOAD, push(0x24), OpCode.CALLDATALOAD,
        OpCode.DUP2, OpCode.ADD, OpCode.DUP1, OpCode.DUP3, OpCode.GT,
        ref("bad"), OpCode.JUMPI,
        OpCode.PUSH0, OpCode.MSTORE, push(32), OpCode.PUSH0, OpCode.RETURN,
        label("bad"),
        OpCode.INVALID,
    ])


def unchecked_add_code() -> bytes:
    """add(x, y) returning the wrapped sum without any guard."""
    return assemble([
        push(4), OpCode.CALLDATALOAD, push(0x24), OpCode.CALLDATALOAD, OpCode.ADD,
        OpCode.PUSH0, OpCode.MSTORE, push(32), OpCode.PUSH0, OpCode.RETURN,
    ])


def counting_loop_code() -> bytes:
    """for (i = 0; i < n; i++) {} with n read from calldata offset 4."""
    return assemble([
        OpCode.PUSH0,
        label("loop"),
        OpCode.DUP1, push(4), OpCode.CALLDATALOAD, OpCode.GT, OpCode.ISZERO,
        ref("end"), OpCode.JUMPI,
        push(1), OpCode.ADD, ref("loop"), OpCode.JUMP,
        label("end"),
        OpCode.STOP,
    ])


@pytest.fixture
def solver():
    with Z3Solver(timeout_ms=10_000) as session:
        yield session


@pytest.fixture
def safe_add() -> Program:
    return Program.from_bytes(safe_add_code(), name="safe_add")


@pytest.fixture
def faulty_add() -> Program:
    return Program.from_bytes(faulty_add_code(), name="faulty_add")


@pytest.fixture
def unchecked_add() -> Program:
    return Program.from_bytes(unchecked_add_code(), name="unchecked_add")


@pytest.fixture
def counting_loop() -> Program:
    return Program.from_bytes(counting_loop_code(), name="counting_loop")
