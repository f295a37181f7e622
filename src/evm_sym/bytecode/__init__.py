"""Bytecode, opcode and ABI helpers."""

from __future__ import annotations

from .abi import AbiType, FunctionSignature, SymbolicCalldata, encode_call, parse_signature, symbolic_calldata
from .assembler import assemble, label, push, ref
from .opcodes import BASE_GAS, OpCode, push_size
from .parser import Instruction, Program, decode_hex, disassemble

__all__ = [
    "BASE_GAS",
    "AbiType",
    "FunctionSignature",
    "Instruction",
    "OpCode",
    "Program",
    "SymbolicCalldata",
    "assemble",
    "decode_hex",
    "disassemble",
    "encode_call",
    "label",
    "parse_signature",
    "push",
    "push_size",
    "ref",
    "symbolic_calldata",
]
