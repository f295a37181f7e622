"""EVM bytecode loading and disassembly."""
from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import MalformedBytecode
from .opcodes import OpCode, push_size


@dataclass(slots=True)
class Instruction:
    opcode: int
    offset: int
    operand: bytes = b""
    size: int = 1

    @property
    def name(self) -> str:
        try:
            return OpCode(self.opcode).name
        except ValueError:
            return f"UNKNOWN_0x{self.opcode:02X}"

    @property
    def is_known(self) -> bool:
        return self.opcode in OpCode._value2member_map_

    @property
    def push_value(self) -> int:
        # PUSH data truncated by the end of code is zero-padded on the right
        width = push_size(self.opcode)
        return int.from_bytes(self.operand.ljust(width, b"\x00"), "big")

    def __str__(self) -> str:
        if self.operand:
            return f"{self.offset:04x}: {self.name} 0x{self.operand.hex()}"
        return f"{self.offset:04x}: {self.name}"


@dataclass(slots=True)
class Program:
    code: bytes
    instructions: list[Instruction]
    name: str = "program"

    instruction_map: dict[int, Instruction] = field(init=False)
    jumpdests: frozenset[int] = field(init=False)

    def __post_init__(self) -> None:
        self.instruction_map = {ins.offset: ins for ins in self.instructions}
        self.jumpdests = frozenset(
            ins.offset for ins in self.instructions if ins.opcode == OpCode.JUMPDEST
        )

    @classmethod
    def from_bytes(cls, code: bytes, name: str = "program") -> Program:
        return cls(code=bytes(code), instructions=disassemble(code), name=name)

    @classmethod
    def from_hex(cls, text: str, name: str = "program") -> Program:
        return cls.from_bytes(decode_hex(text), name=name)

    def at(self, pc: int) -> Instruction | None:
        return self.instruction_map.get(pc)

    def listing(self) -> str:
        return "\n".join(str(ins) for ins in self.instructions)


def decode_hex(text: str) -> bytes:
    raw = "".join(text.split())
    raw = raw.removeprefix("0x").removeprefix("0X")
    if len(raw) % 2:
        raise MalformedBytecode(f"odd-length hex bytecode ({len(raw)} digits)")
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise MalformedBytecode(f"invalid hex bytecode: {exc}") from exc


def disassemble(code: bytes) -> list[Instruction]:
    """Split *code* into instructions, skipping over PUSH immediates.

    Bytes that are not assigned an opcode still yield an instruction so the
    interpreter can halt on them when (and only if) they are executed.
    """
    instructions: list[Instruction] = []
    i = 0
    length = len(code)
    while i < length:
        opcode = code[i]
        width = push_size(opcode)
        operand = code[i + 1 : i + 1 + width]
        instructions.append(Instruction(opcode=opcode, offset=i, operand=operand, size=1 + width))
        i += 1 + width
    return instructions
