"""Single-step symbolic interpreter for EVM bytecode."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..bytecode.opcodes import BASE_GAS, OpCode
from ..bytecode.parser import Instruction, Program
from ..errors import (
    BadJumpDestination,
    CallDepthExceeded,
    PathError,
    UnrecognizedOpcode,
    UnresolvedCallTarget,
    UnsupportedOperation,
    WriteProtection,
)
from ..expr import Expr
from ..expr import build as B
from .state import Frame, LeafKind, LogRecord, MachineState, concrete
from .storage import StorageModel, SymbolicStorage, storage_name

logger = logging.getLogger(__name__)

CodeLookup = Callable[[int], Program | None]

_BINARY: dict[int, Callable[[Expr, Expr], Expr]] = {
    OpCode.ADD: B.add,
    OpCode.MUL: B.mul,
    OpCode.SUB: B.sub,
    OpCode.DIV: B.udiv,
    OpCode.SDIV: B.sdiv,
    OpCode.MOD: B.urem,
    OpCode.SMOD: B.srem,
    OpCode.EXP: B.exp,
    OpCode.SIGNEXTEND: B.signextend,
    OpCode.AND: B.and_,
    OpCode.OR: B.or_,
    OpCode.XOR: B.xor,
    OpCode.BYTE: B.byte,
    OpCode.SHL: B.shl,
    OpCode.SHR: B.lshr,
    OpCode.SAR: B.ashr,
}

_COMPARE: dict[int, Callable[[Expr, Expr], Expr]] = {
    OpCode.LT: B.ult,
    OpCode.GT: B.ugt,
    OpCode.SLT: B.slt,
    OpCode.SGT: B.sgt,
    OpCode.EQ: B.eq,
}

_BLOCK: dict[int, str] = {
    OpCode.COINBASE: "coinbase",
    OpCode.TIMESTAMP: "timestamp",
    OpCode.NUMBER: "number",
    OpCode.PREVRANDAO: "prevrandao",
    OpCode.GASLIMIT: "gaslimit",
    OpCode.CHAINID: "chainid",
    OpCode.BASEFEE: "basefee",
    OpCode.BLOBBASEFEE: "blobbasefee",
    OpCode.GASPRICE: "gasprice",
}

_CALLS = (OpCode.CALL, OpCode.CALLCODE, OpCode.DELEGATECALL, OpCode.STATICCALL)
_UNMODELLED = (OpCode.CREATE, OpCode.CREATE2, OpCode.SELFDESTRUCT)

# Calls into this range reach precompiled contracts, which are not modelled.
PRECOMPILE_LIMIT = 0x100


@dataclass(slots=True)
class Continue:
    state: MachineState


@dataclass(slots=True)
class Halt:
    state: MachineState
    kind: LeafKind
    returndata: Expr


@dataclass(slots=True)
class Branch:
    state: MachineState
    condition: Expr
    pc_true: int
    pc_false: int
    location: int


StepResult = Continue | Halt | Branch


def _no_code(address: int) -> Program | None:
    return None


class Interpreter:
    """Executes one instruction at a time against a :class:`MachineState`.

    The interpreter holds no per-path state, so one instance serves every
    path of a run, including paths stepped concurrently.
    """

    MAX_DEPTH = 1024

    def __init__(
        self,
        storage: StorageModel | None = None,
        code_for: CodeLookup = _no_code,
        call_fallback: str = "fail",
        max_depth: int = MAX_DEPTH,
    ) -> None:
        self.storage = storage or SymbolicStorage()
        self.code_for = code_for
        self.call_fallback = call_fallback
        self.max_depth = max_depth

    def step(self, state: MachineState) -> StepResult:
        frame = state.frame
        try:
            if frame.jump_pending:
                frame.jump_pending = False
                if frame.pc not in frame.program.jumpdests:
                    raise BadJumpDestination(f"jump to {frame.pc:#x} is not a JUMPDEST", frame.pc)
            instruction = frame.program.at(frame.pc)
            if instruction is None:
                # execution past the end of code stops
                return self._halt(state, LeafKind.STOP, B.EMPTY)
            if not instruction.is_known:
                raise UnrecognizedOpcode(f"undefined opcode {instruction.name}", frame.pc)
            state.charge(BASE_GAS.get(instruction.opcode, 0))
            return self._execute_instruction(state, frame, instruction)
        except PathError as exc:
            if exc.kind == "exception" and state.depth > 1:
                logger.debug("nested frame failed at %#x: %s", frame.pc, exc)
                return self._return_to_caller(state, success=False, returndata=B.EMPTY)
            if exc.pc is None:
                exc.pc = frame.pc
            raise

    def _halt(self, state: MachineState, kind: LeafKind, returndata: Expr) -> StepResult:
        if state.depth == 1:
            return Halt(state, kind, returndata)
        success = kind in (LeafKind.STOP, LeafKind.RETURN)
        data = returndata if kind in (LeafKind.RETURN, LeafKind.REVERT) else B.EMPTY
        return self._return_to_caller(state, success, data)

    def _return_to_caller(self, state: MachineState, success: bool, returndata: Expr) -> StepResult:
        callee = state.frames.pop()
        caller = state.frame
        if not success:
            state.storage = callee.storage_snapshot or {}
            state.transient = callee.transient_snapshot or {}
            del state.logs[callee.logs_snapshot :]
        caller.returndata = returndata
        size = B.buf_length(returndata)
        copied = min(callee.ret_size, size.value) if size.is_lit else callee.ret_size
        caller.write(callee.ret_offset, returndata, B.ZERO, copied)
        caller.push(B.ONE if success else B.ZERO)
        return Continue(state)

    def _execute_instruction(self, state: MachineState, frame: Frame, instruction: Instruction) -> StepResult:
        opcode = instruction.opcode
        pc = instruction.offset
        next_pc = pc + instruction.size

        if OpCode.PUSH0 <= opcode <= OpCode.PUSH32:
            frame.push(B.lit(instruction.push_value))
            frame.pc = next_pc
            return Continue(state)

        if OpCode.DUP1 <= opcode <= OpCode.DUP16:
            frame.dup(opcode - OpCode.DUP1 + 1)
            frame.pc = next_pc
            return Continue(state)

        if OpCode.SWAP1 <= opcode <= OpCode.SWAP16:
            frame.swap(opcode - OpCode.SWAP1 + 1)
            frame.pc = next_pc
            return Continue(state)

        if opcode in _BINARY:
            a, b = frame.popn(2)
            frame.push(_BINARY[opcode](a, b))
            frame.pc = next_pc
            return Continue(state)

        if opcode in _COMPARE:
            a, b = frame.popn(2)
            frame.push(B.bool_to_word(_COMPARE[opcode](a, b)))
            frame.pc = next_pc
            return Continue(state)

        if opcode in (OpCode.ADDMOD, OpCode.MULMOD):
            a, b, n = frame.popn(3)
            frame.push(B.addmod(a, b, n) if opcode == OpCode.ADDMOD else B.mulmod(a, b, n))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.ISZERO:
            frame.push(B.iszero(frame.pop()))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.NOT:
            frame.push(B.not_(frame.pop()))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.POP:
            frame.pop()
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.JUMPDEST:
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.JUMP:
            frame.pc = concrete(frame.pop(), "jump target", pc)
            frame.jump_pending = True
            return Continue(state)

        if opcode == OpCode.JUMPI:
            dest, cond = frame.popn(2)
            condition = B.is_nonzero(cond)
            if condition is B.FALSE and not dest.is_lit:
                # never taken, the target need not be concrete
                frame.pc = next_pc
                return Continue(state)
            target = concrete(dest, "jump target", pc)
            return Branch(state, condition, target, next_pc, pc)

        if opcode == OpCode.PC:
            frame.push(B.lit(pc))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.GAS:
            frame.push(B.lit(state.gas))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.MSIZE:
            frame.push(B.lit(frame.msize))
            frame.pc = next_pc
            return Continue(state)

        # -- memory --------------------------------------------------------

        if opcode == OpCode.MLOAD:
            offset = concrete(frame.pop(), "memory offset", pc)
            frame.push(frame.mload(offset))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.MSTORE:
            offset, value = frame.popn(2)
            frame.mstore(concrete(offset, "memory offset", pc), value)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.MSTORE8:
            offset, value = frame.popn(2)
            frame.mstore8(concrete(offset, "memory offset", pc), value)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.MCOPY:
            dst, src, size = frame.popn(3)
            size_value = concrete(size, "copy size", pc)
            data = frame.read(concrete(src, "memory offset", pc), size_value)
            frame.write(concrete(dst, "memory offset", pc), data, B.ZERO, size_value)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.KECCAK256:
            offset, size = frame.popn(2)
            data = frame.read(concrete(offset, "memory offset", pc), concrete(size, "hash size", pc))
            frame.push(B.keccak(data))
            frame.pc = next_pc
            return Continue(state)

        # -- call environment ----------------------------------------------

        if opcode == OpCode.ADDRESS:
            frame.push(B.lit(frame.address))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.CALLER:
            frame.push(frame.caller)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.CALLVALUE:
            frame.push(frame.callvalue)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.ORIGIN:
            frame.push(state.env.origin)
            frame.pc = next_pc
            return Continue(state)

        if opcode in _BLOCK:
            frame.push(state.env.block[_BLOCK[opcode]])
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.CALLDATALOAD:
            frame.push(B.read_word(frame.calldata, frame.pop()))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.CALLDATASIZE:
            frame.push(B.buf_length(frame.calldata))
            frame.pc = next_pc
            return Continue(state)

        if opcode in (OpCode.CALLDATACOPY, OpCode.CODECOPY, OpCode.RETURNDATACOPY):
            dst, src, size = frame.popn(3)
            if opcode == OpCode.CALLDATACOPY:
                source = frame.calldata
            elif opcode == OpCode.CODECOPY:
                source = B.buf_lit(frame.program.code)
            else:
                source = frame.returndata
            frame.write(concrete(dst, "memory offset", pc), source, src, concrete(size, "copy size", pc))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.CODESIZE:
            frame.push(B.lit(len(frame.program.code)))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.RETURNDATASIZE:
            frame.push(B.buf_length(frame.returndata))
            frame.pc = next_pc
            return Continue(state)

        if opcode in (OpCode.BALANCE, OpCode.BLOCKHASH, OpCode.BLOBHASH):
            name = {OpCode.BALANCE: "balance", OpCode.BLOCKHASH: "blockhash", OpCode.BLOBHASH: "blobhash"}[opcode]
            frame.push(B.apply(name, frame.pop()))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.SELFBALANCE:
            frame.push(B.apply("balance", B.lit(frame.address)))
            frame.pc = next_pc
            return Continue(state)

        if opcode in (OpCode.EXTCODESIZE, OpCode.EXTCODEHASH):
            address = frame.pop()
            program = self.code_for(address.value) if address.is_lit else None
            if program is None:
                name = "extcodesize" if opcode == OpCode.EXTCODESIZE else "extcodehash"
                frame.push(B.apply(name, address))
            elif opcode == OpCode.EXTCODESIZE:
                frame.push(B.lit(len(program.code)))
            else:
                frame.push(B.keccak(B.buf_lit(program.code)) if program.code else B.ZERO)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.EXTCODECOPY:
            address, dst, src, size = frame.popn(4)
            program = self.code_for(address.value) if address.is_lit else None
            if program is None:
                raise UnsupportedOperation("EXTCODECOPY of unknown code", pc)
            frame.write(
                concrete(dst, "memory offset", pc),
                B.buf_lit(program.code),
                src,
                concrete(size, "copy size", pc),
            )
            frame.pc = next_pc
            return Continue(state)

        # -- storage -------------------------------------------------------

        if opcode == OpCode.SLOAD:
            key = frame.pop()
            address = frame.storage_address
            base = state.storage.get(address) or self.storage.initial(address)
            value = self.storage.load(base, key, address, pc)
            state.storage_reads.append((address, key, value))
            frame.push(value)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.SSTORE:
            if frame.static:
                raise WriteProtection("SSTORE in static context", pc)
            key, value = frame.popn(2)
            address = frame.storage_address
            base = state.storage.get(address) or self.storage.initial(address)
            state.storage[address] = self.storage.store(base, key, value, address, pc)
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.TLOAD:
            key = frame.pop()
            frame.push(B.sload(state.transient.get(frame.storage_address, B.EMPTY_STORAGE), key))
            frame.pc = next_pc
            return Continue(state)

        if opcode == OpCode.TSTORE:
            if frame.static:
                raise WriteProtection("TSTORE in static context", pc)
            key, value = frame.popn(2)
            current = state.transient.get(frame.storage_address, B.EMPTY_STORAGE)
            state.transient[frame.storage_address] = B.sstore(current, key, value)
            frame.pc = next_pc
            return Continue(state)

        if OpCode.LOG0 <= opcode <= OpCode.LOG4:
            if frame.static:
                raise WriteProtection("LOG in static context", pc)
            offset, size = frame.popn(2)
            topics = tuple(frame.popn(opcode - OpCode.LOG0)) if opcode > OpCode.LOG0 else ()
            data = frame.read(concrete(offset, "memory offset", pc), concrete(size, "log size", pc))
            state.logs.append(LogRecord(frame.address, topics, data))
            frame.pc = next_pc
            return Continue(state)

        # -- halting -------------------------------------------------------

        if opcode == OpCode.STOP:
            return self._halt(state, LeafKind.STOP, B.EMPTY)

        if opcode in (OpCode.RETURN, OpCode.REVERT):
            offset, size = frame.popn(2)
            data = frame.read(concrete(offset, "memory offset", pc), concrete(size, "return size", pc))
            kind = LeafKind.RETURN if opcode == OpCode.RETURN else LeafKind.REVERT
            return self._halt(state, kind, data)

        if opcode == OpCode.INVALID:
            return self._halt(state, LeafKind.INVALID, B.EMPTY)

        if opcode in _CALLS:
            frame.pc = next_pc
            return self._call(state, frame, instruction)

        if opcode in _UNMODELLED:
            raise UnsupportedOperation(f"{instruction.name} is not modelled", pc)

        raise UnrecognizedOpcode(f"no handler for {instruction.name}", pc)

    def _call(self, state: MachineState, frame: Frame, instruction: Instruction) -> StepResult:
        opcode = instruction.opcode
        pc = instruction.offset
        if opcode in (OpCode.CALL, OpCode.CALLCODE):
            _gas, target, value, args_offset, args_size, ret_offset, ret_size = frame.popn(7)
        else:
            _gas, target, args_offset, args_size, ret_offset, ret_size = frame.popn(6)
            value = B.ZERO
        if opcode == OpCode.CALL and frame.static and not (value.is_lit and value.value == 0):
            raise WriteProtection("value transfer in static context", pc)
        args = frame.read(concrete(args_offset, "memory offset", pc), concrete(args_size, "call data size", pc))
        ret_at = concrete(ret_offset, "memory offset", pc)
        ret_len = concrete(ret_size, "return size", pc)

        program = None
        if target.is_lit and target.value >= PRECOMPILE_LIMIT:
            program = self.code_for(target.value)
        if program is None:
            if self.call_fallback == "havoc":
                return self._havoc_call(state, frame, ret_at, ret_len)
            what = f"{target.value:#x}" if target.is_lit else repr(target)
            raise UnresolvedCallTarget(f"{instruction.name} to unknown code at {what}", pc)
        if not program.code:
            frame.returndata = B.EMPTY
            frame.push(B.ONE)
            return Continue(state)
        if state.depth >= self.max_depth:
            raise CallDepthExceeded(f"call depth {state.depth} reaches the limit {self.max_depth}", pc)

        address = target.value
        if opcode == OpCode.DELEGATECALL:
            callee = Frame(
                program=program,
                address=frame.address,
                storage_address=frame.storage_address,
                caller=frame.caller,
                callvalue=frame.callvalue,
                calldata=args,
                static=frame.static,
            )
        elif opcode == OpCode.CALLCODE:
            callee = Frame(
                program=program,
                address=frame.address,
                storage_address=frame.storage_address,
                caller=B.lit(frame.address),
                callvalue=value,
                calldata=args,
                static=frame.static,
            )
        else:
            callee = Frame(
                program=program,
                address=address,
                storage_address=address,
                caller=B.lit(frame.address),
                callvalue=value,
                calldata=args,
                static=frame.static or opcode == OpCode.STATICCALL,
            )
        callee.ret_offset = ret_at
        callee.ret_size = ret_len
        callee.storage_snapshot = dict(state.storage)
        callee.transient_snapshot = dict(state.transient)
        callee.logs_snapshot = len(state.logs)
        state.frames.append(callee)
        logger.debug("%s %#x -> %#x (depth %d)", instruction.name, frame.address, address, state.depth)
        return Continue(state)

    def _havoc_call(self, state: MachineState, frame: Frame, ret_at: int, ret_len: int) -> StepResult:
        """Unknown callee: fresh success flag and return data, caller storage clobbered."""
        success = B.bool_var(state.fresh_name("call_success"))
        returndata = B.buf_var(state.fresh_name("returndata"))
        state.pending.append(B.ult(B.buf_length(returndata), B.lit(1 << 32)))
        address = frame.storage_address
        state.storage[address] = B.storage_var(f"{storage_name(address)}_{state.fresh_name('after_call')}")
        frame.returndata = returndata
        frame.write(ret_at, returndata, B.ZERO, ret_len)
        frame.push(B.bool_to_word(success))
        return Continue(state)
