"""Symbolic machine state: call frames, memory, storage and the environment."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from ..bytecode.abi import SymbolicCalldata
from ..bytecode.parser import Program
from ..errors import OutOfGas, StackOverflow, StackUnderflow, UnsupportedSymbolicAddress
from ..expr import Expr
from ..expr import build as B

MAX_STACK = 1024
# Memory beyond this many bytes would cost more gas than any block provides.
MAX_MEMORY = 1 << 22

ZERO_BYTE = B.lit(0, 8)


class LeafKind(StrEnum):
    STOP = "stop"
    RETURN = "return"
    REVERT = "revert"
    INVALID = "invalid"
    OUT_OF_GAS = "out_of_gas"
    BOUND_REACHED = "bound_reached"
    UNDECIDED = "undecided"
    UNSUPPORTED = "unsupported"
    EXCEPTION = "exception"

    @property
    def is_normal(self) -> bool:
        return self in (LeafKind.STOP, LeafKind.RETURN)

    @property
    def is_halt(self) -> bool:
        """Outcome produced by the program itself rather than by the exploration."""
        return self in (LeafKind.STOP, LeafKind.RETURN, LeafKind.REVERT, LeafKind.INVALID)


def concrete(value: Expr, what: str, pc: int | None = None) -> int:
    """Integer value of a literal operand used as an address, size or offset."""
    if not value.is_lit:
        raise UnsupportedSymbolicAddress(f"symbolic {what}", pc)
    return int(value.value)


@dataclass(slots=True)
class Environment:
    """Inputs shared by every path of one run."""

    address: int
    caller: Expr
    callvalue: Expr
    calldata: SymbolicCalldata
    origin: Expr
    block: dict[str, Expr] = field(default_factory=dict)
    assumptions: list[Expr] = field(default_factory=list)

    @classmethod
    def symbolic(
        cls,
        calldata: SymbolicCalldata,
        address: int = 0xAAAA0000000000000000000000000000000000AA,
        caller: int | None = None,
        callvalue: int | None = None,
    ) -> Environment:
        """Environment with every unspecified input left as a fresh symbol."""
        caller_expr = B.var("caller") if caller is None else B.lit(caller)
        value_expr = B.var("callvalue") if callvalue is None else B.lit(callvalue)
        origin = B.var("origin")
        address_bound = B.lit(1 << 160)
        assumptions = list(calldata.constraints)
        assumptions.append(B.ult(origin, address_bound))
        if caller is None:
            assumptions.append(B.ult(caller_expr, address_bound))
        block = {
            name: B.var(name)
            for name in (
                "coinbase", "timestamp", "number", "prevrandao", "gaslimit",
                "chainid", "basefee", "blobbasefee", "gasprice",
            )
        }
        assumptions.append(B.ult(block["coinbase"], address_bound))
        return cls(
            address=address,
            caller=caller_expr,
            callvalue=value_expr,
            calldata=calldata,
            origin=origin,
            block=block,
            assumptions=assumptions,
        )


@dataclass(slots=True)
class LogRecord:
    address: int
    topics: tuple[Expr, ...]
    data: Expr


@dataclass(slots=True)
class Frame:
    """One activation of a contract's code."""

    program: Program
    address: int
    storage_address: int
    caller: Expr
    callvalue: Expr
    calldata: Expr
    static: bool = False
    pc: int = 0
    jump_pending: bool = False
    stack: list[Expr] = field(default_factory=list)
    memory: list[Expr] = field(default_factory=list)
    returndata: Expr = B.EMPTY
    # caller-side bookkeeping for nested frames
    ret_offset: int = 0
    ret_size: int = 0
    storage_snapshot: dict[int, Expr] | None = None
    transient_snapshot: dict[int, Expr] | None = None
    logs_snapshot: int = 0

    def clone(self) -> Frame:
        return Frame(
            program=self.program,
            address=self.address,
            storage_address=self.storage_address,
            caller=self.caller,
            callvalue=self.callvalue,
            calldata=self.calldata,
            static=self.static,
            pc=self.pc,
            jump_pending=self.jump_pending,
            stack=list(self.stack),
            memory=list(self.memory),
            returndata=self.returndata,
            ret_offset=self.ret_offset,
            ret_size=self.ret_size,
            storage_snapshot=self.storage_snapshot,
            transient_snapshot=self.transient_snapshot,
            logs_snapshot=self.logs_snapshot,
        )

    # -- stack -------------------------------------------------------------

    def push(self, value: Expr) -> None:
        if len(self.stack) >= MAX_STACK:
            raise StackOverflow(f"stack limit {MAX_STACK} exceeded", self.pc)
        self.stack.append(value)

    def pop(self) -> Expr:
        if not self.stack:
            raise StackUnderflow("stack underflow", self.pc)
        return self.stack.pop()

    def popn(self, count: int) -> list[Expr]:
        if len(self.stack) < count:
            raise StackUnderflow(f"need {count} stack items, have {len(self.stack)}", self.pc)
        items = self.stack[-count:][::-1]
        del self.stack[-count:]
        return items

    def dup(self, depth: int) -> None:
        if len(self.stack) < depth:
            raise StackUnderflow(f"DUP{depth} on stack of {len(self.stack)}", self.pc)
        self.push(self.stack[-depth])

    def swap(self, depth: int) -> None:
        if len(self.stack) < depth + 1:
            raise StackUnderflow(f"SWAP{depth} on stack of {len(self.stack)}", self.pc)
        self.stack[-1], self.stack[-depth - 1] = self.stack[-depth - 1], self.stack[-1]

    # -- memory ------------------------------------------------------------

    def _expand(self, offset: int, size: int) -> None:
        if size == 0:
            return
        end = offset + size
        if end > MAX_MEMORY:
            raise OutOfGas(f"memory expansion to {end} bytes", self.pc)
        if end > len(self.memory):
            words = (end + 31) // 32
            self.memory.extend([ZERO_BYTE] * (words * 32 - len(self.memory)))

    def mload(self, offset: int) -> Expr:
        self._expand(offset, 32)
        return B.concat(*self.memory[offset : offset + 32])

    def mstore(self, offset: int, word: Expr) -> None:
        self._expand(offset, 32)
        self.memory[offset : offset + 32] = B.word_to_bytes(word)

    def mstore8(self, offset: int, word: Expr) -> None:
        self._expand(offset, 1)
        self.memory[offset] = B.extract(7, 0, word)

    def read(self, offset: int, size: int) -> Expr:
        """Memory slice as a buffer expression."""
        self._expand(offset, size)
        return B.buf_bytes(self.memory[offset : offset + size])

    def write(self, offset: int, data: Expr, data_offset: Expr, size: int) -> None:
        """Copy *size* bytes of buffer *data* from *data_offset* into memory."""
        self._expand(offset, size)
        for i in range(size):
            self.memory[offset + i] = B.read_byte(data, B.add(data_offset, B.lit(i)))

    @property
    def msize(self) -> int:
        return len(self.memory)


@dataclass(slots=True)
class MachineState:
    """Everything one path carries: the frame stack plus world-state effects."""

    env: Environment
    frames: list[Frame]
    storage: dict[int, Expr] = field(default_factory=dict)
    transient: dict[int, Expr] = field(default_factory=dict)
    storage_reads: list[tuple[int, Expr, Expr]] = field(default_factory=list)
    logs: list[LogRecord] = field(default_factory=list)
    gas: int = 30_000_000
    fresh: int = 0
    # assumptions produced while stepping, drained into the path constraints
    pending: list[Expr] = field(default_factory=list)

    @classmethod
    def initial(cls, program: Program, env: Environment, gas: int) -> MachineState:
        frame = Frame(
            program=program,
            address=env.address,
            storage_address=env.address,
            caller=env.caller,
            callvalue=env.callvalue,
            calldata=env.calldata.buffer,
        )
        return cls(env=env, frames=[frame], gas=gas)

    @property
    def frame(self) -> Frame:
        return self.frames[-1]

    @property
    def depth(self) -> int:
        return len(self.frames)

    def charge(self, amount: int) -> None:
        if amount > self.gas:
            self.gas = 0
            raise OutOfGas(f"needs {amount} gas", self.frame.pc)
        self.gas -= amount

    def fresh_name(self, prefix: str) -> str:
        self.fresh += 1
        return f"{prefix}_{self.fresh}"

    def clone(self) -> MachineState:
        return MachineState(
            env=self.env,
            frames=[f.clone() for f in self.frames],
            storage=dict(self.storage),
            transient=dict(self.transient),
            storage_reads=list(self.storage_reads),
            logs=list(self.logs),
            gas=self.gas,
            fresh=self.fresh,
            pending=list(self.pending),
        )
