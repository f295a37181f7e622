"""DAG walks: substitution, concrete evaluation, variable collection."""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from . import build as B
from .core import BOOL, BUFFER, STORAGE, ArrayValue, Expr, Op, iter_dag

__all__ = ["Model", "array_reads", "evaluate", "evaluate_int", "free_variables", "rebuild", "substitute"]


def _rebuild_extract(node: Expr, args: tuple[Expr, ...]) -> Expr:
    return B.extract(node.params[0], node.params[1], args[0])


_REBUILD: dict[Op, Callable[[Expr, tuple[Expr, ...]], Expr]] = {
    Op.ADD: lambda n, a: B.add(*a),
    Op.SUB: lambda n, a: B.sub(*a),
    Op.MUL: lambda n, a: B.mul(*a),
    Op.UDIV: lambda n, a: B.udiv(*a),
    Op.SDIV: lambda n, a: B.sdiv(*a),
    Op.UREM: lambda n, a: B.urem(*a),
    Op.SREM: lambda n, a: B.srem(*a),
    Op.AND: lambda n, a: B.and_(*a),
    Op.OR: lambda n, a: B.or_(*a),
    Op.XOR: lambda n, a: B.xor(*a),
    Op.NOT: lambda n, a: B.not_(*a),
    Op.SHL: lambda n, a: B.shl(a[1], a[0]),
    Op.LSHR: lambda n, a: B.lshr(a[1], a[0]),
    Op.ASHR: lambda n, a: B.ashr(a[1], a[0]),
    Op.ITE: lambda n, a: B.ite(*a),
    Op.EXTRACT: _rebuild_extract,
    Op.CONCAT: lambda n, a: B.concat(*a),
    Op.ZEXT: lambda n, a: B.zext(a[0], n.params[0]),
    Op.SEXT: lambda n, a: B.sext(a[0], n.params[0]),
    Op.ULT: lambda n, a: B.ult(*a),
    Op.SLT: lambda n, a: B.slt(*a),
    Op.EQ: lambda n, a: B.eq(*a),
    Op.BNOT: lambda n, a: B.bnot(*a),
    Op.BAND: lambda n, a: B.band(*a),
    Op.BOR: lambda n, a: B.bor(*a),
    Op.APPLY: lambda n, a: B.apply(n.name, *a, width=n.width),
    Op.BYTES: lambda n, a: B.buf_bytes(a),
    Op.BUF_CONCAT: lambda n, a: B.buf_concat(*a),
    Op.BUF_SLICE: lambda n, a: B.buf_slice(*a),
    Op.READ_BYTE: lambda n, a: B.read_byte(*a),
    Op.SLOAD: lambda n, a: B.sload(*a),
    Op.SSTORE: lambda n, a: B.sstore(*a),
}


def rebuild(roots: Iterable[Expr], leaf: Callable[[Expr], Expr | None]) -> dict[Expr, Expr]:
    """Rebuild every node under *roots* bottom-up through the folding constructors.

    *leaf* may replace any node (returning ``None`` keeps it); replaced nodes are
    not descended into. Returns the old-node to new-node mapping.
    """
    done: dict[Expr, Expr] = {}
    for node in iter_dag(tuple(roots)):
        replacement = leaf(node)
        if replacement is not None:
            done[node] = replacement
            continue
        if not node.args:
            done[node] = node
            continue
        args = tuple(done.get(a, a) for a in node.args)
        if all(x is y for x, y in zip(args, node.args)):
            done[node] = node
        elif node.op is Op.SELECT:
            done[node] = B.select(*args) if args[0].op is Op.VAR else _select_value(args[0], args[1])
        else:
            done[node] = _REBUILD[node.op](node, args)
    return done


def _select_value(array: Expr, index: Expr) -> Expr:
    if array.sort == STORAGE:
        return B.sload(array, index)
    if array.is_lit and index.is_lit:
        raw = array.value
        return B.lit(raw[index.value] if index.value < len(raw) else 0, 8)
    return B.read_byte(array, index)


def substitute(expr: Expr, mapping: Mapping[Expr, Expr]) -> Expr:
    """Replace sub-terms according to *mapping* and refold."""
    done = rebuild((expr,), mapping.get)
    return done[expr]


@dataclass(slots=True)
class Model:
    """Concrete assignment produced by a satisfiable solver query."""

    values: dict[str, int] = field(default_factory=dict)
    arrays: dict[str, ArrayValue] = field(default_factory=dict)
    terms: dict[Expr, int] = field(default_factory=dict)

    def get(self, name: str, default: int = 0) -> int:
        return self.values.get(name, default)

    def buffer(self, name: str, max_length: int = 4096) -> bytes:
        """Contents of the symbolic buffer *name*, truncated to its modelled length."""
        length = min(self.values.get(f"{name}_length", 0), max_length)
        array = self.arrays.get(name, ArrayValue())
        return bytes(array.get(i) & 0xFF for i in range(length))

    def to_dict(self) -> dict[str, object]:
        return {
            "values": {k: hex(v) for k, v in sorted(self.values.items())},
            "arrays": {
                k: {hex(i): hex(v) for i, v in a.entries} | {"default": hex(a.default)}
                for k, a in sorted(self.arrays.items())
            },
        }


def _model_leaf(model: Model) -> Callable[[Expr], Expr | None]:
    def leaf(node: Expr) -> Expr | None:
        if node in model.terms:
            return B.boolean(bool(model.terms[node])) if node.sort == BOOL else B.lit(model.terms[node], node.width)
        if node.op is not Op.VAR:
            return None
        name = node.name or ""
        if node.sort == BOOL:
            return B.boolean(bool(model.values.get(name, 0)))
        if node.sort == BUFFER:
            return B.buf_lit(model.buffer(name))
        if node.sort == STORAGE:
            return B.storage_lit(model.arrays.get(name, ArrayValue()))
        return B.lit(model.values.get(name, 0), node.width)

    return leaf


def evaluate(expr: Expr, model: Model) -> Expr:
    """Concrete value of *expr* under *model*, as a literal node.

    Uninterpreted applications take the value the model assigned to that exact
    term; keccak applications the model did not cover are hashed for real.
    """
    leaf = _model_leaf(model)
    done = rebuild((expr,), leaf)
    result = done[expr]
    if result.is_lit:
        return result
    return _force_applications(result, leaf)


def _force_applications(expr: Expr, leaf: Callable[[Expr], Expr | None]) -> Expr:
    def fallback(node: Expr) -> Expr | None:
        known = leaf(node)
        if known is not None:
            return known
        if node.op is Op.APPLY and all(a.is_lit for a in node.args):
            if node.name and node.name.startswith("keccak256_"):
                size = int(node.name.rsplit("_", 1)[1]) // 8
                return B.keccak(B.buf_lit(node.args[0].value.to_bytes(size, "big")))
            return B.lit(0, node.width)
        return None

    # each pass resolves the innermost layer of applications
    while not expr.is_lit:
        reduced = rebuild((expr,), fallback)[expr]
        if reduced is expr:
            raise ValueError(f"expression did not reduce to a literal: {expr!r}")
        expr = reduced
    return expr


def evaluate_int(expr: Expr, model: Model) -> int:
    value = evaluate(expr, model).value
    return int(value)


def free_variables(roots: Iterable[Expr]) -> list[Expr]:
    """Variable nodes reachable from *roots*, in deterministic order."""
    found = [node for node in iter_dag(tuple(roots)) if node.op is Op.VAR]
    return sorted(found, key=lambda n: (str(n.sort), n.name or ""))


def array_reads(roots: Iterable[Expr]) -> list[tuple[Expr, Expr]]:
    """``(array variable, index)`` pairs for every read that can reach an array variable."""
    pairs: list[tuple[Expr, Expr]] = []
    seen: set[tuple[int, int]] = set()

    def record(array: Expr, index: Expr) -> None:
        while array.op is Op.SSTORE:
            array = array.args[0]
        if array.op is Op.BUF_SLICE:
            index = B.add(array.args[1], index)
            array = array.args[0]
        if array.op is Op.VAR and (id(array), id(index)) not in seen:
            seen.add((id(array), id(index)))
            pairs.append((array, index))
        elif array.op is Op.BUF_CONCAT:
            offset = B.ZERO
            for part in array.args:
                record(part, B.sub(index, offset))
                offset = B.add(offset, B.buf_length(part))

    for node in iter_dag(tuple(roots)):
        if node.op in (Op.READ_BYTE, Op.SLOAD, Op.SELECT):
            record(node.args[0], node.args[1])
    return pairs
