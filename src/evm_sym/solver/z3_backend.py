"""z3 backend: expressions are translated into a private z3 context."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

import z3

from ..errors import SolverFailure, WidthMismatch
from ..expr import Expr, Op, iter_dag
from ..expr.core import BOOL, BUFFER, STORAGE
from .base import CheckResult, Solver

logger = logging.getLogger(__name__)

# Translations are kept across queries until the cache grows past this size.
MEMO_LIMIT = 200_000

Reader = Callable[[z3.BitVecRef], z3.BitVecRef]


class Z3Solver(Solver):
    """Solver session backed by the z3 Python bindings.

    Each instance owns its own :class:`z3.Context`, so separate instances can
    be used from separate threads.
    """

    name = "z3"

    def __init__(self, timeout_ms: int = 30_000) -> None:
        super().__init__(timeout_ms)
        self.ctx = z3.Context()
        self._solver = z3.Solver(ctx=self.ctx)
        self._solver.set("timeout", int(timeout_ms))
        self._memo: dict[Expr, z3.ExprRef] = {}
        self._buffers: dict[Expr, tuple[Reader, z3.BitVecRef]] = {}
        self._functions: dict[tuple[str, tuple[int, ...], int], z3.FuncDeclRef] = {}

    # -- translation -------------------------------------------------------

    def _bv(self, value: int, width: int) -> z3.BitVecRef:
        return z3.BitVecVal(value, width, self.ctx)

    def _word_sort(self) -> z3.BitVecSortRef:
        return z3.BitVecSort(256, self.ctx)

    def _byte_array(self, name: str) -> z3.ArrayRef:
        return z3.Array(name, self._word_sort(), z3.BitVecSort(8, self.ctx))

    def _function(self, name: str, widths: tuple[int, ...], width: int) -> z3.FuncDeclRef:
        key = (name, widths, width)
        if key not in self._functions:
            domain = [z3.BitVecSort(w, self.ctx) for w in widths]
            self._functions[key] = z3.Function(name, *domain, z3.BitVecSort(width, self.ctx))
        return self._functions[key]

    def translate(self, expr: Expr) -> z3.ExprRef:
        if expr.sort == BUFFER:
            raise WidthMismatch("buffers have no direct z3 translation")
        if len(self._memo) > MEMO_LIMIT:
            self._memo.clear()
            self._buffers.clear()
        for node in iter_dag((expr,)):
            if node in self._memo or node in self._buffers:
                continue
            if node.sort == BUFFER:
                self._buffers[node] = self._translate_buffer(node)
            else:
                self._memo[node] = self._translate_node(node)
        return self._memo[expr]

    def _translate_buffer(self, node: Expr) -> tuple[Reader, z3.BitVecRef]:
        zero = self._bv(0, 8)
        if node.op is Op.LIT:
            array = z3.K(self._word_sort(), zero)
            for i, b in enumerate(node.value):
                if b:
                    array = z3.Store(array, self._bv(i, 256), self._bv(b, 8))
            return (lambda i, a=array: z3.Select(a, i)), self._bv(len(node.value), 256)
        if node.op is Op.VAR:
            array = self._byte_array(node.name)
            length = z3.BitVec(f"{node.name}_length", 256, self.ctx)
            return (lambda i: z3.If(z3.ULT(i, length), z3.Select(array, i), zero)), length
        if node.op is Op.BYTES:
            array = z3.K(self._word_sort(), zero)
            for i, part in enumerate(node.args):
                array = z3.Store(array, self._bv(i, 256), self._memo[part])
            return (lambda i, a=array: z3.Select(a, i)), self._bv(len(node.args), 256)
        if node.op is Op.BUF_SLICE:
            read, _ = self._buffers[node.args[0]]
            offset, size = self._memo[node.args[1]], self._memo[node.args[2]]
            return (lambda i: z3.If(z3.ULT(i, size), read(offset + i), zero)), size
        if node.op is Op.BUF_CONCAT:
            parts = [self._buffers[p] for p in node.args]

            def read_concat(i: z3.BitVecRef) -> z3.BitVecRef:
                result = zero
                start = self._bv(0, 256)
                bounds = []
                for read, length in parts:
                    bounds.append((start, length, read))
                    start = start + length
                for begin, length, read in reversed(bounds):
                    result = z3.If(z3.ULT(i - begin, length), read(i - begin), result)
                return result

            total = self._bv(0, 256)
            for _, length in parts:
                total = total + length
            return read_concat, total
        raise WidthMismatch(f"unexpected buffer node {node.op}")

    def _translate_node(self, node: Expr) -> z3.ExprRef:
        op = node.op
        a = [self._memo[x] for x in node.args if x.sort != BUFFER]
        if op is Op.LIT:
            if node.sort == BOOL:
                return z3.BoolVal(bool(node.value), self.ctx)
            if node.sort == STORAGE:
                array = z3.K(self._word_sort(), self._bv(node.value.default, 256))
                for k, v in node.value.entries:
                    array = z3.Store(array, self._bv(k, 256), self._bv(v, 256))
                return array
            return self._bv(node.value, node.width)
        if op is Op.VAR:
            if node.sort == BOOL:
                return z3.Bool(node.name, self.ctx)
            if node.sort == STORAGE:
                return z3.Array(node.name, self._word_sort(), self._word_sort())
            return z3.BitVec(node.name, node.width, self.ctx)
        if op is Op.ADD:
            return a[0] + a[1]
        if op is Op.SUB:
            return a[0] - a[1]
        if op is Op.MUL:
            return a[0] * a[1]
        if op in (Op.UDIV, Op.SDIV, Op.UREM, Op.SREM):
            zero = self._bv(0, node.width)
            if op is Op.UDIV:
                result = z3.UDiv(a[0], a[1])
            elif op is Op.SDIV:
                result = a[0] / a[1]
            elif op is Op.UREM:
                result = z3.URem(a[0], a[1])
            else:
                result = z3.SRem(a[0], a[1])
            return z3.If(a[1] == zero, zero, result)
        if op is Op.AND:
            return a[0] & a[1]
        if op is Op.OR:
            return a[0] | a[1]
        if op is Op.XOR:
            return a[0] ^ a[1]
        if op is Op.NOT:
            return ~a[0]
        if op is Op.SHL:
            return a[0] << a[1]
        if op is Op.LSHR:
            return z3.LShR(a[0], a[1])
        if op is Op.ASHR:
            return a[0] >> a[1]
        if op is Op.ITE:
            return z3.If(a[0], a[1], a[2])
        if op is Op.EXTRACT:
            return z3.Extract(node.params[0], node.params[1], a[0])
        if op is Op.CONCAT:
            return z3.Concat(*a) if len(a) > 1 else a[0]
        if op is Op.ZEXT:
            return z3.ZeroExt(node.params[0] - node.args[0].width, a[0])
        if op is Op.SEXT:
            return z3.SignExt(node.params[0] - node.args[0].width, a[0])
        if op is Op.ULT:
            return z3.ULT(a[0], a[1])
        if op is Op.SLT:
            return a[0] < a[1]
        if op is Op.EQ:
            return a[0] == a[1]
        if op is Op.BNOT:
            return z3.Not(a[0])
        if op is Op.BAND:
            return z3.And(*a)
        if op is Op.BOR:
            return z3.Or(*a)
        if op is Op.APPLY:
            widths = tuple(x.width for x in node.args)
            return self._function(node.name, widths, node.width)(*a)
        if op is Op.READ_BYTE:
            read, _ = self._buffers[node.args[0]]
            return read(self._memo[node.args[1]])
        if op is Op.SELECT:
            array = node.args[0]
            if array.sort == BUFFER:
                return z3.Select(self._byte_array(array.name), self._memo[node.args[1]])
            return z3.Select(self._memo[array], self._memo[node.args[1]])
        if op is Op.SLOAD:
            return z3.Select(a[0], a[1])
        if op is Op.SSTORE:
            return z3.Store(a[0], a[1], a[2])
        raise WidthMismatch(f"no z3 translation for {op}")

    # -- queries -----------------------------------------------------------

    def _run(self, constraints: Sequence[Expr]) -> z3.CheckSatResult:
        self.queries += 1
        started = time.monotonic()
        try:
            self._solver.push()
            for c in constraints:
                self._solver.add(self.translate(c))
            result = self._solver.check()
        except z3.Z3Exception as e:
            self._solver.pop()
            raise SolverFailure(f"z3 failed: {e}") from e
        elapsed = (time.monotonic() - started) * 1000
        logger.debug("z3 query #%d: %s in %.1f ms (%d constraints)", self.queries, result, elapsed, len(constraints))
        if result == z3.unknown:
            logger.warning("z3 returned unknown: %s", self._solver.reason_unknown())
        return result

    def check(self, constraints: Sequence[Expr]) -> CheckResult:
        result = self._run(constraints)
        self._solver.pop()
        if result == z3.sat:
            return CheckResult.SAT
        if result == z3.unsat:
            return CheckResult.UNSAT
        return CheckResult.UNKNOWN

    def _values(self, constraints: Sequence[Expr], terms: Sequence[Expr]) -> dict[Expr, int] | None:
        result = self._run(constraints)
        try:
            if result != z3.sat:
                return None
            model = self._solver.model()
            found: dict[Expr, int] = {}
            for term in terms:
                value = model.eval(self.translate(term), model_completion=True)
                if term.sort == BOOL:
                    found[term] = int(z3.is_true(value))
                else:
                    found[term] = value.as_long()
            return found
        finally:
            self._solver.pop()

    def close(self) -> None:
        self._memo.clear()
        self._buffers.clear()
        self._functions.clear()
        self._solver.reset()
