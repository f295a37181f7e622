"""Function signatures, selectors and calldata specialization."""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..expr import Expr
from ..expr import build as B

_TYPE_RE = re.compile(r"^(uint|int|bytes)(\d*)$")
_SIG_RE = re.compile(r"^\s*([A-Za-z_$][A-Za-z0-9_$]*)\s*\((.*)\)\s*$")


@dataclass(frozen=True, slots=True)
class AbiType:
    name: str
    kind: str
    bits: int = 256

    @property
    def is_static(self) -> bool:
        return self.kind != "dynamic"


def parse_type(text: str) -> AbiType:
    name = text.strip()
    if name == "address":
        return AbiType(name, "address", 160)
    if name == "bool":
        return AbiType(name, "bool", 1)
    if name.endswith("]") or name.startswith("(") or name in ("bytes", "string"):
        return AbiType(name, "dynamic", 0)
    match = _TYPE_RE.match(name)
    if match is None:
        raise ValueError(f"unsupported ABI type {name!r}")
    base, size_text = match.groups()
    if base == "bytes":
        size = int(size_text)
        if not 1 <= size <= 32:
            raise ValueError(f"invalid fixed bytes type {name!r}")
        return AbiType(name, "bytes", size * 8)
    bits = int(size_text) if size_text else 256
    if bits % 8 or not 8 <= bits <= 256:
        raise ValueError(f"invalid integer type {name!r}")
    canonical = f"{base}{bits}"
    return AbiType(canonical, base, bits)


def _split_types(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current)
    return parts


@dataclass(frozen=True, slots=True)
class FunctionSignature:
    name: str
    types: tuple[AbiType, ...]

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(t.name for t in self.types)})"

    @property
    def selector(self) -> bytes:
        return B.keccak_bytes(self.canonical.encode())[:4]

    def __str__(self) -> str:
        return self.canonical


def parse_signature(text: str) -> FunctionSignature:
    match = _SIG_RE.match(text)
    if match is None:
        raise ValueError(f"malformed function signature {text!r}")
    name, inner = match.groups()
    return FunctionSignature(name, tuple(parse_type(t) for t in _split_types(inner)))


@dataclass(slots=True)
class Argument:
    name: str
    type: AbiType
    word: Expr


@dataclass(slots=True)
class SymbolicCalldata:
    buffer: Expr
    signature: FunctionSignature | None = None
    arguments: list[Argument] = field(default_factory=list)
    constraints: list[Expr] = field(default_factory=list)


MAX_CALLDATA_LENGTH = 1 << 32


def _type_constraint(t: AbiType, word: Expr) -> Expr:
    if t.kind in ("uint", "address", "bool") and t.bits < 256:
        return B.ult(word, B.lit(1 << t.bits))
    if t.kind == "int" and t.bits < 256:
        return B.eq(word, B.sext(B.extract(t.bits - 1, 0, word), 256))
    if t.kind == "bytes" and t.bits < 256:
        return B.eq(B.and_(word, B.lit((1 << (256 - t.bits)) - 1)), B.ZERO)
    return B.TRUE


def symbolic_calldata(signature: FunctionSignature | None, name: str = "calldata") -> SymbolicCalldata:
    """Calldata for a call: fully symbolic, or shaped by *signature*.

    With a signature the buffer is the selector followed by one symbolic word
    per argument, each constrained to its ABI type's range. Dynamic arguments
    get a symbolic head word and the data after the head stays a symbolic tail.
    """
    if signature is None:
        buffer = B.buf_var(name)
        bound = B.ult(B.buf_length(buffer), B.lit(MAX_CALLDATA_LENGTH))
        return SymbolicCalldata(buffer=buffer, constraints=[bound])

    parts = [B.buf_lit(signature.selector)]
    arguments: list[Argument] = []
    constraints: list[Expr] = []
    for index, abi_type in enumerate(signature.types):
        word = B.var(f"arg{index}")
        arguments.append(Argument(f"arg{index}", abi_type, word))
        parts.append(B.buf_bytes(B.word_to_bytes(word)))
        constraint = _type_constraint(abi_type, word)
        if constraint is not B.TRUE:
            constraints.append(constraint)
    if any(not t.is_static for t in signature.types):
        tail = B.buf_var(f"{name}_tail")
        parts.append(tail)
        constraints.append(B.ult(B.buf_length(tail), B.lit(MAX_CALLDATA_LENGTH)))
    return SymbolicCalldata(
        buffer=B.buf_concat(*parts),
        signature=signature,
        arguments=arguments,
        constraints=constraints,
    )


def decode_value(t: AbiType, value: int) -> int | bool | str:
    """Render one head word as its ABI type; dynamic types stay raw hex."""
    if t.kind == "uint":
        return value
    if t.kind == "int":
        return B.to_signed(value & ((1 << t.bits) - 1), t.bits)
    if t.kind == "bool":
        return bool(value)
    if t.kind == "address":
        return f"0x{value:040x}"
    if t.kind == "bytes":
        size = t.bits // 8
        return "0x" + value.to_bytes(32, "big")[:size].hex()
    return f"0x{value:064x}"


def encode_call(signature: FunctionSignature, *values: int) -> bytes:
    """ABI-encode a call with static arguments given as integers."""
    if len(values) != len(signature.types):
        raise ValueError(f"{signature} takes {len(signature.types)} arguments, got {len(values)}")
    body = b"".join((v % (1 << 256)).to_bytes(32, "big") for v in values)
    return signature.selector + body
