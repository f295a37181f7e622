"""Interned expression nodes and sorts."""
from __future__ import annotations

import hashlib
import threading
import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from typing import Any

__all__ = [
    "BOOL",
    "BUFFER",
    "BYTE",
    "STORAGE",
    "WORD",
    "ArrayValue",
    "BV",
    "Expr",
    "Op",
    "Sort",
    "intern",
    "iter_dag",
]


@dataclass(frozen=True, slots=True)
class Sort:
    kind: str
    width: int = 0

    @property
    def is_bv(self) -> bool:
        return self.kind == "bv"

    def __str__(self) -> str:
        return f"bv{self.width}" if self.kind == "bv" else self.kind


@lru_cache(maxsize=None)
def BV(width: int) -> Sort:
    if width <= 0:
        raise ValueError(f"bit-vector width must be positive, got {width}")
    return Sort("bv", width)


BOOL = Sort("bool")
BUFFER = Sort("buffer")
STORAGE = Sort("storage")
WORD = BV(256)
BYTE = BV(8)


class Op(StrEnum):
    LIT = "lit"
    VAR = "var"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    UDIV = "udiv"
    SDIV = "sdiv"
    UREM = "urem"
    SREM = "srem"
    AND = "and"
    OR = "or"
    XOR = "xor"
    NOT = "not"
    SHL = "shl"
    LSHR = "lshr"
    ASHR = "ashr"
    ITE = "ite"
    EXTRACT = "extract"
    CONCAT = "concat"
    ZEXT = "zext"
    SEXT = "sext"
    ULT = "ult"
    SLT = "slt"
    EQ = "eq"
    BNOT = "bnot"
    BAND = "band"
    BOR = "bor"
    APPLY = "apply"
    BYTES = "bytes"
    BUF_CONCAT = "buf_concat"
    BUF_SLICE = "buf_slice"
    READ_BYTE = "read_byte"
    SELECT = "select"
    SLOAD = "sload"
    SSTORE = "sstore"


@dataclass(frozen=True, slots=True)
class ArrayValue:
    """Concrete array: explicit entries over a default value."""

    entries: tuple[tuple[int, int], ...] = ()
    default: int = 0

    @classmethod
    def of(cls, mapping: dict[int, int], default: int = 0) -> ArrayValue:
        return cls(tuple(sorted((k, v) for k, v in mapping.items() if v != default)), default)

    def get(self, key: int) -> int:
        for k, v in self.entries:
            if k == key:
                return v
        return self.default

    def set(self, key: int, value: int) -> ArrayValue:
        mapping = dict(self.entries)
        mapping[key] = value
        return ArrayValue.of(mapping, self.default)

    def as_dict(self) -> dict[int, int]:
        return dict(self.entries)


@dataclass(frozen=True, slots=True, eq=False, weakref_slot=True)
class Expr:
    """A node in the shared term DAG.

    Nodes are only created through :func:`intern`, so two structurally equal
    nodes are the same object and identity comparison is structural equality.
    """

    op: Op
    sort: Sort
    args: tuple[Expr, ...] = ()
    value: Any = None
    name: str | None = None
    params: tuple[int, ...] = ()
    digest: int = field(default=0, repr=False)

    @property
    def is_lit(self) -> bool:
        return self.op is Op.LIT

    @property
    def width(self) -> int:
        return self.sort.width

    def __repr__(self) -> str:
        if self.op is Op.LIT:
            if self.sort is BOOL:
                return "true" if self.value else "false"
            if self.sort is BUFFER:
                return f"0x{self.value.hex()}"
            if self.sort is STORAGE:
                return f"storage{dict(self.value.entries)}"
            return hex(self.value) if self.value > 9 else str(self.value)
        if self.op is Op.VAR:
            return str(self.name)
        head = self.op.value
        if self.name is not None:
            head = f"{head}:{self.name}"
        if self.params:
            head = f"{head}[{','.join(map(str, self.params))}]"
        inner = ", ".join(repr(a) for a in self.args)
        return f"{head}({inner})"


_TABLE: weakref.WeakValueDictionary[tuple, Expr] = weakref.WeakValueDictionary()
_LOCK = threading.Lock()


def _digest(op: Op, sort: Sort, args: tuple[Expr, ...], value: Any, name: str | None, params: tuple[int, ...]) -> int:
    h = hashlib.blake2b(digest_size=8)
    h.update(f"{op.value}|{sort}|{name}|{params}|".encode())
    if isinstance(value, bytes):
        h.update(value)
    elif value is not None:
        h.update(repr(value).encode())
    for arg in args:
        h.update(arg.digest.to_bytes(8, "big"))
    return int.from_bytes(h.digest(), "big")


def intern(
    op: Op,
    sort: Sort,
    args: tuple[Expr, ...] = (),
    value: Any = None,
    name: str | None = None,
    params: tuple[int, ...] = (),
) -> Expr:
    """Return the unique node for this structure, creating it if needed."""
    key = (op, sort, args, value, name, params)
    with _LOCK:
        node = _TABLE.get(key)
        if node is None:
            node = Expr(op, sort, args, value, name, params, _digest(op, sort, args, value, name, params))
            _TABLE[key] = node
    return node


def iter_dag(roots: Any) -> Iterator[Expr]:
    """Yield every distinct node reachable from *roots*, children first."""
    if isinstance(roots, Expr):
        roots = (roots,)
    seen: set[int] = set()
    for root in roots:
        if id(root) in seen:
            continue
        stack: list[tuple[Expr, bool]] = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                yield node
                continue
            if id(node) in seen:
                continue
            seen.add(id(node))
            stack.append((node, True))
            for arg in reversed(node.args):
                if id(arg) not in seen:
                    stack.append((arg, False))
