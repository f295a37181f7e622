"""Tiny label-resolving assembler for hand-written EVM programs."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .opcodes import OpCode


@dataclass(frozen=True, slots=True)
class Label:
    name: str


@dataclass(frozen=True, slots=True)
class PushLabel:
    name: str


Item = OpCode | int | bytes | Label | PushLabel | tuple[OpCode, int]


def label(name: str) -> Label:
    """Mark a jump destination; emits a ``JUMPDEST``."""
    return Label(name)


def ref(name: str) -> PushLabel:
    """Push the offset of label *name* (always a ``PUSH2``)."""
    return PushLabel(name)


def push(value: int) -> tuple[OpCode, int]:
    """Shortest ``PUSHn`` for *value*, ``PUSH0`` for zero."""
    return (OpCode.PUSH0, value) if value == 0 else (OpCode(OpCode.PUSH0 + _byte_len(value)), value)


def _byte_len(value: int) -> int:
    if value < 0 or value >= 1 << 256:
        raise ValueError(f"push value out of range: {value}")
    return max(1, (value.bit_length() + 7) // 8)


def _size(item: Item) -> int:
    if isinstance(item, Label):
        return 1
    if isinstance(item, PushLabel):
        return 3
    if isinstance(item, tuple):
        return 1 + int(item[0]) - int(OpCode.PUSH0)
    if isinstance(item, bytes):
        return len(item)
    return 1


def assemble(items: Iterable[Item]) -> bytes:
    """Assemble opcodes, ``push`` tuples, raw bytes and labels into bytecode."""
    items = list(items)
    offsets: dict[str, int] = {}
    position = 0
    for item in items:
        if isinstance(item, Label):
            if item.name in offsets:
                raise ValueError(f"duplicate label {item.name!r}")
            offsets[item.name] = position
        position += _size(item)

    out = bytearray()
    for item in items:
        if isinstance(item, Label):
            out.append(OpCode.JUMPDEST)
        elif isinstance(item, PushLabel):
            if item.name not in offsets:
                raise ValueError(f"undefined label {item.name!r}")
            out.append(OpCode.PUSH2)
            out += offsets[item.name].to_bytes(2, "big")
        elif isinstance(item, tuple):
            opcode, value = item
            out.append(opcode)
            out += value.to_bytes(int(opcode) - int(OpCode.PUSH0), "big")
        elif isinstance(item, bytes):
            out += item
        else:
            out.append(int(item))
    return bytes(out)
