"""SMT-LIB2 backend: each query is a script piped to an external solver process."""
from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
from collections.abc import Sequence

from ..errors import SolverFailure, WidthMismatch
from ..expr import Expr, Op, iter_dag
from ..expr.core import BOOL, BUFFER, STORAGE, Sort
from .base import CheckResult, Solver

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "z3 -in"

_WORD = "(_ BitVec 256)"
_BYTE = "(_ BitVec 8)"
_STORAGE_SORT = f"(Array {_WORD} {_WORD})"

_SIMPLE = {
    Op.ADD: "bvadd",
    Op.SUB: "bvsub",
    Op.MUL: "bvmul",
    Op.AND: "bvand",
    Op.OR: "bvor",
    Op.XOR: "bvxor",
    Op.NOT: "bvnot",
    Op.ULT: "bvult",
    Op.SLT: "bvslt",
    Op.EQ: "=",
    Op.BNOT: "not",
    Op.BAND: "and",
    Op.BOR: "or",
    Op.ITE: "ite",
    Op.SLOAD: "select",
    Op.SSTORE: "store",
}
_DIVISION = {Op.UDIV: "bvudiv", Op.SDIV: "bvsdiv", Op.UREM: "bvurem", Op.SREM: "bvsrem"}
_SHIFT = {Op.SHL: "bvshl", Op.LSHR: "bvlshr", Op.ASHR: "bvashr"}


def sort_text(sort: Sort) -> str:
    if sort == BOOL:
        return "Bool"
    if sort == STORAGE:
        return _STORAGE_SORT
    if sort.is_bv:
        return f"(_ BitVec {sort.width})"
    raise WidthMismatch(f"no SMT-LIB sort for {sort}")


def symbol(name: str) -> str:
    return f"|{name}|"


def bv(value: int, width: int) -> str:
    return f"(_ bv{value} {width})"


class Printer:
    """Renders a DAG as SMT-LIB2 declarations plus one ``define-fun`` per shared node."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.names: dict[Expr, str] = {}
        self._declared: set[str] = set()

    def _declare(self, text: str, key: str) -> None:
        if key not in self._declared:
            self._declared.add(key)
            self.lines.append(text)

    def render(self, roots: Sequence[Expr]) -> list[str]:
        for node in iter_dag(tuple(roots)):
            if node not in self.names:
                self._emit(node)
        return [self.names[r] for r in roots]

    def _emit(self, node: Expr) -> None:
        if node.sort == BUFFER:
            self._emit_buffer(node)
            return
        body = self._body(node)
        if node.op in (Op.LIT, Op.VAR) and node.sort != STORAGE:
            self.names[node] = body
            return
        name = f"t{len(self.names)}"
        self.lines.append(f"(define-fun {name} () {sort_text(node.sort)} {body})")
        self.names[node] = name

    def _body(self, node: Expr) -> str:
        op = node.op
        a = [self.names[x] for x in node.args]
        if op is Op.LIT:
            if node.sort == BOOL:
                return "true" if node.value else "false"
            if node.sort == STORAGE:
                text = f"((as const {_STORAGE_SORT}) {bv(node.value.default, 256)})"
                for k, v in node.value.entries:
                    text = f"(store {text} {bv(k, 256)} {bv(v, 256)})"
                return text
            return bv(node.value, node.width)
        if op is Op.VAR:
            self._declare(f"(declare-fun {symbol(node.name)} () {sort_text(node.sort)})", node.name)
            return symbol(node.name)
        if op in _SIMPLE:
            return f"({_SIMPLE[op]} {' '.join(a)})"
        if op in _DIVISION:
            zero = bv(0, node.width)
            return f"(ite (= {a[1]} {zero}) {zero} ({_DIVISION[op]} {a[0]} {a[1]}))"
        if op in _SHIFT:
            return f"({_SHIFT[op]} {a[0]} {a[1]})"
        if op is Op.EXTRACT:
            return f"((_ extract {node.params[0]} {node.params[1]}) {a[0]})"
        if op is Op.CONCAT:
            text = a[0]
            for part in a[1:]:
                text = f"(concat {text} {part})"
            return text
        if op in (Op.ZEXT, Op.SEXT):
            kind = "zero_extend" if op is Op.ZEXT else "sign_extend"
            return f"((_ {kind} {node.params[0] - node.args[0].width}) {a[0]})"
        if op is Op.APPLY:
            domain = " ".join(sort_text(x.sort) for x in node.args)
            fname = symbol(f"{node.name}")
            self._declare(f"(declare-fun {fname} ({domain}) {sort_text(node.sort)})", f"fun:{node.name}")
            return f"({fname} {' '.join(a)})"
        if op is Op.READ_BYTE:
            return f"({a[0]} {a[1]})"
        if op is Op.SELECT:
            array = node.args[0]
            if array.sort == BUFFER:
                self._declare_buffer_var(array.name)
                return f"(select {symbol(array.name)} {a[1]})"
            return f"(select {a[0]} {a[1]})"
        raise WidthMismatch(f"no SMT-LIB rendering for {op}")

    def _declare_buffer_var(self, name: str) -> None:
        self._declare(f"(declare-fun {symbol(name)} () (Array {_WORD} {_BYTE}))", name)
        self._declare(f"(declare-fun {symbol(name + '_length')} () {_WORD})", name + "_length")

    def _emit_buffer(self, node: Expr) -> None:
        """A buffer becomes a byte-reading function ``bN`` and a length term ``lN``."""
        n = len(self.names)
        reader, length = f"b{n}", f"l{n}"
        zero = bv(0, 8)
        if node.op is Op.LIT:
            body = zero
            for i, b in reversed(list(enumerate(node.value))):
                if b:
                    body = f"(ite (= i {bv(i, 256)}) {bv(b, 8)} {body})"
            size = bv(len(node.value), 256)
        elif node.op is Op.VAR:
            self._declare_buffer_var(node.name)
            size = symbol(node.name + "_length")
            body = f"(ite (bvult i {size}) (select {symbol(node.name)} i) {zero})"
        elif node.op is Op.BYTES:
            body = zero
            for i in reversed(range(len(node.args))):
                body = f"(ite (= i {bv(i, 256)}) {self.names[node.args[i]]} {body})"
            size = bv(len(node.args), 256)
        elif node.op is Op.BUF_SLICE:
            source = self.names[node.args[0]]
            offset, size = self.names[node.args[1]], self.names[node.args[2]]
            body = f"(ite (bvult i {size}) ({source} (bvadd {offset} i)) {zero})"
        elif node.op is Op.BUF_CONCAT:
            starts, total = [], bv(0, 256)
            for part in node.args:
                starts.append((total, self._length_of(part), self.names[part]))
                total = f"(bvadd {total} {self._length_of(part)})"
            body = zero
            for start, part_length, part_reader in reversed(starts):
                body = f"(ite (bvult (bvsub i {start}) {part_length}) ({part_reader} (bvsub i {start})) {body})"
            size = total
        else:
            raise WidthMismatch(f"unexpected buffer node {node.op}")
        self.lines.append(f"(define-fun {reader} ((i {_WORD})) {_BYTE} {body})")
        self.lines.append(f"(define-fun {length} () {_WORD} {size})")
        self.names[node] = reader

    def _length_of(self, buffer: Expr) -> str:
        return "l" + self.names[buffer][1:]


# -- output parsing ------------------------------------------------------------

_TOKEN = re.compile(r"\(|\)|\|[^|]*\||\"(?:[^\"]|\"\")*\"|[^\s()]+")


def parse_sexprs(text: str) -> list[object]:
    """Parse solver output into nested lists of atom strings."""
    stack: list[list[object]] = [[]]
    for token in _TOKEN.findall(text):
        if token == "(":
            stack.append([])
        elif token == ")":
            if len(stack) == 1:
                raise SolverFailure(f"unbalanced solver output: {text[:200]!r}")
            done = stack.pop()
            stack[-1].append(done)
        else:
            stack[-1].append(token)
    if len(stack) != 1:
        raise SolverFailure(f"truncated solver output: {text[:200]!r}")
    return stack[0]


def parse_value(value: object) -> int:
    if isinstance(value, str):
        if value == "true":
            return 1
        if value == "false":
            return 0
        if value.startswith("#x"):
            return int(value[2:], 16)
        if value.startswith("#b"):
            return int(value[2:], 2)
    if isinstance(value, list) and len(value) == 3 and value[0] == "_" and str(value[1]).startswith("bv"):
        return int(str(value[1])[2:])
    raise SolverFailure(f"cannot parse solver value {value!r}")


class SmtLibSolver(Solver):
    """Solver session that runs an SMT-LIB2 capable executable per query."""

    name = "smtlib"

    def __init__(self, command: str = DEFAULT_COMMAND, timeout_ms: int = 30_000) -> None:
        super().__init__(timeout_ms)
        self.command = shlex.split(command)

    def script(self, constraints: Sequence[Expr], terms: Sequence[Expr] = ()) -> str:
        printer = Printer()
        asserted = printer.render(list(constraints))
        queried = printer.render(list(terms)) if terms else []
        lines = ["(set-option :produce-models true)", "(set-logic QF_AUFBV)"]
        lines += printer.lines
        lines += [f"(assert {name})" for name in asserted]
        lines.append("(check-sat)")
        if queried:
            lines.append(f"(get-value ({' '.join(queried)}))")
        lines.append("(exit)")
        return "\n".join(lines) + "\n"

    def _solve(self, script: str) -> tuple[CheckResult, list[object]]:
        self.queries += 1
        started = time.monotonic()
        try:
            proc = subprocess.run(
                self.command,
                input=script,
                capture_output=True,
                text=True,
                timeout=self.timeout_ms / 1000,
            )
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %d ms", self.command[0], self.timeout_ms)
            return CheckResult.UNKNOWN, []
        except OSError as e:
            raise SolverFailure(f"cannot run {self.command[0]}: {e}") from e
        elapsed = (time.monotonic() - started) * 1000
        output = parse_sexprs(proc.stdout)
        if not output or output[0] not in ("sat", "unsat", "unknown"):
            raise SolverFailure(f"{self.command[0]} failed (exit {proc.returncode}): {(proc.stdout + proc.stderr)[:500]}")
        result = CheckResult(output[0])
        logger.debug("%s query #%d: %s in %.1f ms", self.command[0], self.queries, result, elapsed)
        return result, output[1:]

    def check(self, constraints: Sequence[Expr]) -> CheckResult:
        result, _ = self._solve(self.script(constraints))
        return result

    def _values(self, constraints: Sequence[Expr], terms: Sequence[Expr]) -> dict[Expr, int] | None:
        terms = list(dict.fromkeys(terms))
        result, rest = self._solve(self.script(constraints, terms))
        if result is not CheckResult.SAT:
            return None
        if not terms:
            return {}
        if not rest or not isinstance(rest[0], list) or len(rest[0]) != len(terms):
            raise SolverFailure(f"unexpected get-value response: {rest[:1]!r}")
        return {term: parse_value(pair[1]) for term, pair in zip(terms, rest[0])}
