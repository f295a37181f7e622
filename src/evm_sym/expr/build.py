"""Expression constructors with eager constant folding.

Every constructor returns a literal when all of its operands are literals, so
callers never see an operator node over constants. A handful of algebraic
identities are also applied; anything else becomes an interned operator node.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from eth_hash.auto import keccak as _keccak

from ..errors import WidthMismatch
from .core import BOOL, BUFFER, BYTE, STORAGE, WORD, BV, ArrayValue, Expr, Op, Sort, intern

MAX_FOLDED_SLICE = 1 << 16


def _mask(width: int) -> int:
    return (1 << width) - 1


def to_signed(value: int, width: int = 256) -> int:
    return value - (1 << width) if value >> (width - 1) else value


def _bv_width(opname: str, *operands: Expr) -> int:
    first = operands[0]
    if not first.sort.is_bv:
        raise WidthMismatch(f"{opname}: expected bit-vector operand, got {first.sort}")
    for other in operands[1:]:
        if other.sort != first.sort:
            raise WidthMismatch(f"{opname}: operand sorts differ ({first.sort} vs {other.sort})")
    return first.sort.width


def _expect(opname: str, operand: Expr, sort: Sort) -> None:
    if operand.sort != sort:
        raise WidthMismatch(f"{opname}: expected {sort}, got {operand.sort}")


def _ordered(a: Expr, b: Expr) -> tuple[Expr, Expr]:
    return (a, b) if a.digest <= b.digest else (b, a)


# -- leaves ------------------------------------------------------------------


def lit(value: int, width: int = 256) -> Expr:
    return intern(Op.LIT, BV(width), value=int(value) & _mask(width))


def var(name: str, width: int = 256) -> Expr:
    return intern(Op.VAR, BV(width), name=name)


def boolean(value: bool) -> Expr:
    return TRUE if value else FALSE


def bool_var(name: str) -> Expr:
    return intern(Op.VAR, BOOL, name=name)


TRUE = intern(Op.LIT, BOOL, value=True)
FALSE = intern(Op.LIT, BOOL, value=False)
ZERO = lit(0)
ONE = lit(1)


def is_true(e: Expr) -> bool:
    return e is TRUE


def is_false(e: Expr) -> bool:
    return e is FALSE


# -- arithmetic --------------------------------------------------------------


def add(a: Expr, b: Expr) -> Expr:
    w = _bv_width("add", a, b)
    if a.is_lit and b.is_lit:
        return lit(a.value + b.value, w)
    if a.is_lit and a.value == 0:
        return b
    if b.is_lit and b.value == 0:
        return a
    return intern(Op.ADD, a.sort, _ordered(a, b))


def sub(a: Expr, b: Expr) -> Expr:
    w = _bv_width("sub", a, b)
    if a.is_lit and b.is_lit:
        return lit(a.value - b.value, w)
    if b.is_lit and b.value == 0:
        return a
    if a is b:
        return lit(0, w)
    return intern(Op.SUB, a.sort, (a, b))


def mul(a: Expr, b: Expr) -> Expr:
    w = _bv_width("mul", a, b)
    if a.is_lit and b.is_lit:
        return lit(a.value * b.value, w)
    for x, y in ((a, b), (b, a)):
        if x.is_lit and x.value == 0:
            return x
        if x.is_lit and x.value == 1:
            return y
    return intern(Op.MUL, a.sort, _ordered(a, b))


def udiv(a: Expr, b: Expr) -> Expr:
    w = _bv_width("udiv", a, b)
    if b.is_lit and b.value == 0:
        return lit(0, w)
    if a.is_lit and b.is_lit:
        return lit(a.value // b.value, w)
    if b.is_lit and b.value == 1:
        return a
    if a.is_lit and a.value == 0:
        return a
    return intern(Op.UDIV, a.sort, (a, b))


def sdiv(a: Expr, b: Expr) -> Expr:
    w = _bv_width("sdiv", a, b)
    if b.is_lit and b.value == 0:
        return lit(0, w)
    if a.is_lit and b.is_lit:
        x, y = to_signed(a.value, w), to_signed(b.value, w)
        q = abs(x) // abs(y)
        return lit(-q if (x < 0) != (y < 0) else q, w)
    if b.is_lit and b.value == 1:
        return a
    return intern(Op.SDIV, a.sort, (a, b))


def urem(a: Expr, b: Expr) -> Expr:
    w = _bv_width("urem", a, b)
    if b.is_lit and b.value in (0, 1):
        return lit(0, w)
    if a.is_lit and b.is_lit:
        return lit(a.value % b.value, w)
    return intern(Op.UREM, a.sort, (a, b))


def srem(a: Expr, b: Expr) -> Expr:
    w = _bv_width("srem", a, b)
    if b.is_lit and b.value == 0:
        return lit(0, w)
    if a.is_lit and b.is_lit:
        x, y = to_signed(a.value, w), to_signed(b.value, w)
        r = abs(x) % abs(y)
        return lit(-r if x < 0 else r, w)
    return intern(Op.SREM, a.sort, (a, b))


def exp(base: Expr, exponent: Expr) -> Expr:
    w = _bv_width("exp", base, exponent)
    if base.is_lit and exponent.is_lit:
        return lit(pow(base.value, exponent.value, 1 << w), w)
    if exponent.is_lit:
        if exponent.value == 0:
            return lit(1, w)
        if exponent.value == 1:
            return base
    if base.is_lit and base.value in (0, 1):
        return ite(eq(exponent, lit(0, w)), lit(1, w), base)
    if base.is_lit and (base.value & (base.value - 1)) == 0:
        # (2**k)**e == 1 << (k * e), and zero once k * e reaches the width
        k = lit(base.value.bit_length() - 1, w)
        return ite(ult(exponent, lit(w, w)), shl(mul(k, exponent), lit(1, w)), lit(0, w))
    return apply("evm_exp", base, exponent)


def addmod(a: Expr, b: Expr, n: Expr) -> Expr:
    _bv_width("addmod", a, b, n)
    if a.is_lit and b.is_lit and n.is_lit:
        return lit((a.value + b.value) % n.value if n.value else 0)
    wide = urem(add(zext(a, 512), zext(b, 512)), zext(n, 512))
    return extract(255, 0, wide)


def mulmod(a: Expr, b: Expr, n: Expr) -> Expr:
    _bv_width("mulmod", a, b, n)
    if a.is_lit and b.is_lit and n.is_lit:
        return lit((a.value * b.value) % n.value if n.value else 0)
    wide = urem(mul(zext(a, 512), zext(b, 512)), zext(n, 512))
    return extract(255, 0, wide)


# -- bitwise -----------------------------------------------------------------


def and_(a: Expr, b: Expr) -> Expr:
    w = _bv_width("and", a, b)
    if a.is_lit and b.is_lit:
        return lit(a.value & b.value, w)
    for x, y in ((a, b), (b, a)):
        if x.is_lit and x.value == 0:
            return x
        if x.is_lit and x.value == _mask(w):
            return y
    if a is b:
        return a
    return intern(Op.AND, a.sort, _ordered(a, b))


def or_(a: Expr, b: Expr) -> Expr:
    w = _bv_width("or", a, b)
    if a.is_lit and b.is_lit:
        return lit(a.value | b.value, w)
    for x, y in ((a, b), (b, a)):
        if x.is_lit and x.value == 0:
            return y
        if x.is_lit and x.value == _mask(w):
            return x
    if a is b:
        return a
    return intern(Op.OR, a.sort, _ordered(a, b))


def xor(a: Expr, b: Expr) -> Expr:
    w = _bv_width("xor", a, b)
    if a.is_lit and b.is_lit:
        return lit(a.value ^ b.value, w)
    if a is b:
        return lit(0, w)
    for x, y in ((a, b), (b, a)):
        if x.is_lit and x.value == 0:
            return y
    return intern(Op.XOR, a.sort, _ordered(a, b))


def not_(a: Expr) -> Expr:
    w = _bv_width("not", a)
    if a.is_lit:
        return lit(~a.value, w)
    if a.op is Op.NOT:
        return a.args[0]
    return intern(Op.NOT, a.sort, (a,))


def shl(shift: Expr, value: Expr) -> Expr:
    """EVM ``SHL``: *value* shifted left by *shift* bits."""
    w = _bv_width("shl", shift, value)
    if shift.is_lit:
        if shift.value >= w:
            return lit(0, w)
        if shift.value == 0:
            return value
        if value.is_lit:
            return lit(value.value << shift.value, w)
    if value.is_lit and value.value == 0:
        return value
    return intern(Op.SHL, value.sort, (value, shift))


def lshr(shift: Expr, value: Expr) -> Expr:
    """EVM ``SHR``."""
    w = _bv_width("lshr", shift, value)
    if shift.is_lit:
        if shift.value >= w:
            return lit(0, w)
        if shift.value == 0:
            return value
        if value.is_lit:
            return lit(value.value >> shift.value, w)
    if value.is_lit and value.value == 0:
        return value
    return intern(Op.LSHR, value.sort, (value, shift))


def ashr(shift: Expr, value: Expr) -> Expr:
    """EVM ``SAR``."""
    w = _bv_width("ashr", shift, value)
    if shift.is_lit and value.is_lit:
        if shift.value >= w:
            return lit(-1 if value.value >> (w - 1) else 0, w)
        return lit(to_signed(value.value, w) >> shift.value, w)
    if shift.is_lit and shift.value == 0:
        return value
    return intern(Op.ASHR, value.sort, (value, shift))


def byte(index: Expr, word: Expr) -> Expr:
    """EVM ``BYTE``: the *index*-th most significant byte of *word*."""
    _bv_width("byte", index, word)
    if index.is_lit:
        if index.value >= 32:
            return ZERO
        hi = 255 - 8 * index.value
        return zext(extract(hi, hi - 7, word), 256)
    result = ZERO
    for i in range(31, -1, -1):
        result = ite(eq(index, lit(i)), byte(lit(i), word), result)
    return result


def signextend(size: Expr, value: Expr) -> Expr:
    """EVM ``SIGNEXTEND``: extend the sign bit of the low ``size + 1`` bytes."""
    _bv_width("signextend", size, value)
    if size.is_lit:
        if size.value >= 31:
            return value
        bits = 8 * (size.value + 1)
        return sext(extract(bits - 1, 0, value), 256)
    return apply("evm_signextend", size, value)


# -- width changes -----------------------------------------------------------


def extract(hi: int, lo: int, x: Expr) -> Expr:
    w = _bv_width("extract", x)
    if not 0 <= lo <= hi < w:
        raise WidthMismatch(f"extract[{hi}:{lo}] out of range for {x.sort}")
    if lo == 0 and hi == w - 1:
        return x
    if x.is_lit:
        return lit(x.value >> lo, hi - lo + 1)
    if x.op is Op.EXTRACT:
        inner_lo = x.params[1]
        return extract(hi + inner_lo, lo + inner_lo, x.args[0])
    if x.op is Op.ZEXT:
        inner = x.args[0]
        if hi < inner.width:
            return extract(hi, lo, inner)
        if lo >= inner.width:
            return lit(0, hi - lo + 1)
    if x.op is Op.CONCAT:
        offset = w
        for part in x.args:
            offset -= part.width
            if lo >= offset and hi < offset + part.width:
                return extract(hi - offset, lo - offset, part)
    return intern(Op.EXTRACT, BV(hi - lo + 1), (x,), params=(hi, lo))


def concat(*parts: Expr) -> Expr:
    """Concatenate bit-vectors, most significant first."""
    flat: list[Expr] = []
    for part in parts:
        if not part.sort.is_bv:
            raise WidthMismatch(f"concat: expected bit-vector operand, got {part.sort}")
        if part.op is Op.CONCAT:
            flat.extend(part.args)
        else:
            flat.append(part)
    merged: list[Expr] = []
    for part in flat:
        if merged:
            prev = merged[-1]
            if prev.is_lit and part.is_lit:
                merged[-1] = lit((prev.value << part.width) | part.value, prev.width + part.width)
                continue
            if (
                prev.op is Op.EXTRACT
                and part.op is Op.EXTRACT
                and prev.args[0] is part.args[0]
                and prev.params[1] == part.params[0] + 1
            ):
                merged[-1] = extract(prev.params[0], part.params[1], prev.args[0])
                continue
        merged.append(part)
    if len(merged) == 1:
        return merged[0]
    width = sum(p.width for p in merged)
    if len(merged) == 2 and merged[0].is_lit and merged[0].value == 0:
        return zext(merged[1], width)
    return intern(Op.CONCAT, BV(width), tuple(merged))


def zext(x: Expr, width: int) -> Expr:
    w = _bv_width("zext", x)
    if width < w:
        raise WidthMismatch(f"zext to {width} bits from {w}")
    if width == w:
        return x
    if x.is_lit:
        return lit(x.value, width)
    return intern(Op.ZEXT, BV(width), (x,), params=(width,))


def sext(x: Expr, width: int) -> Expr:
    w = _bv_width("sext", x)
    if width < w:
        raise WidthMismatch(f"sext to {width} bits from {w}")
    if width == w:
        return x
    if x.is_lit:
        return lit(to_signed(x.value, w), width)
    return intern(Op.SEXT, BV(width), (x,), params=(width,))


# -- predicates --------------------------------------------------------------


def ult(a: Expr, b: Expr) -> Expr:
    _bv_width("ult", a, b)
    if a.is_lit and b.is_lit:
        return boolean(a.value < b.value)
    if a is b or (b.is_lit and b.value == 0):
        return FALSE
    return intern(Op.ULT, BOOL, (a, b))


def ugt(a: Expr, b: Expr) -> Expr:
    return ult(b, a)


def ule(a: Expr, b: Expr) -> Expr:
    return bnot(ult(b, a))


def uge(a: Expr, b: Expr) -> Expr:
    return bnot(ult(a, b))


def slt(a: Expr, b: Expr) -> Expr:
    w = _bv_width("slt", a, b)
    if a.is_lit and b.is_lit:
        return boolean(to_signed(a.value, w) < to_signed(b.value, w))
    if a is b:
        return FALSE
    return intern(Op.SLT, BOOL, (a, b))


def sgt(a: Expr, b: Expr) -> Expr:
    return slt(b, a)


def _bool_word(e: Expr) -> Expr | None:
    """The condition *e* stands for when it is ``ite(c, 1, 0)`` or ``ite(c, 0, 1)``."""
    if e.op is Op.ITE and e.args[1].is_lit and e.args[2].is_lit:
        if e.args[1].value == 1 and e.args[2].value == 0:
            return e.args[0]
        if e.args[1].value == 0 and e.args[2].value == 1:
            return bnot(e.args[0])
    return None


def eq(a: Expr, b: Expr) -> Expr:
    if a.sort != b.sort:
        raise WidthMismatch(f"eq: operand sorts differ ({a.sort} vs {b.sort})")
    if a is b:
        return TRUE
    if a.is_lit and b.is_lit:
        return boolean(a.value == b.value)
    if a.sort == BOOL:
        for x, y in ((a, b), (b, a)):
            if x is TRUE:
                return y
            if x is FALSE:
                return bnot(y)
    if a.sort.is_bv:
        for x, y in ((a, b), (b, a)):
            cond = _bool_word(y)
            if cond is not None and x.is_lit:
                if x.value == 1:
                    return cond
                if x.value == 0:
                    return bnot(cond)
                return FALSE
    return intern(Op.EQ, BOOL, _ordered(a, b))


def bnot(a: Expr) -> Expr:
    _expect("bnot", a, BOOL)
    if a.is_lit:
        return boolean(not a.value)
    if a.op is Op.BNOT:
        return a.args[0]
    return intern(Op.BNOT, BOOL, (a,))


def band(*xs: Expr) -> Expr:
    terms: list[Expr] = []
    for x in xs:
        _expect("band", x, BOOL)
        if x is FALSE:
            return FALSE
        if x is TRUE:
            continue
        for t in x.args if x.op is Op.BAND else (x,):
            if t not in terms:
                terms.append(t)
    if not terms:
        return TRUE
    if len(terms) == 1:
        return terms[0]
    return intern(Op.BAND, BOOL, tuple(sorted(terms, key=lambda t: t.digest)))


def bor(*xs: Expr) -> Expr:
    terms: list[Expr] = []
    for x in xs:
        _expect("bor", x, BOOL)
        if x is TRUE:
            return TRUE
        if x is FALSE:
            continue
        for t in x.args if x.op is Op.BOR else (x,):
            if t not in terms:
                terms.append(t)
    if not terms:
        return FALSE
    if len(terms) == 1:
        return terms[0]
    return intern(Op.BOR, BOOL, tuple(sorted(terms, key=lambda t: t.digest)))


def implies(a: Expr, b: Expr) -> Expr:
    return bor(bnot(a), b)


def ite(cond: Expr, then: Expr, otherwise: Expr) -> Expr:
    _expect("ite", cond, BOOL)
    if then.sort != otherwise.sort:
        raise WidthMismatch(f"ite: branch sorts differ ({then.sort} vs {otherwise.sort})")
    if cond is TRUE:
        return then
    if cond is FALSE:
        return otherwise
    if then is otherwise:
        return then
    if cond.op is Op.BNOT:
        return ite(cond.args[0], otherwise, then)
    return intern(Op.ITE, then.sort, (cond, then, otherwise))


def bool_to_word(cond: Expr) -> Expr:
    return ite(cond, ONE, ZERO)


def is_nonzero(x: Expr) -> Expr:
    """The boolean a ``JUMPI`` condition word stands for."""
    return bnot(eq(x, lit(0, _bv_width("is_nonzero", x))))


def iszero(x: Expr) -> Expr:
    return bool_to_word(eq(x, lit(0, _bv_width("iszero", x))))


# -- uninterpreted functions -------------------------------------------------


def apply(name: str, *args: Expr, width: int = 256) -> Expr:
    for arg in args:
        if not arg.sort.is_bv:
            raise WidthMismatch(f"apply {name}: expected bit-vector operand, got {arg.sort}")
    return intern(Op.APPLY, BV(width), tuple(args), name=name)


# -- byte buffers ------------------------------------------------------------


def buf_lit(data: bytes) -> Expr:
    return intern(Op.LIT, BUFFER, value=bytes(data))


EMPTY = buf_lit(b"")


def buf_var(name: str) -> Expr:
    return intern(Op.VAR, BUFFER, name=name)


def length_var(name: str) -> Expr:
    return var(f"{name}_length")


def buf_bytes(parts: Sequence[Expr]) -> Expr:
    for part in parts:
        _expect("buf_bytes", part, BYTE)
    if all(p.is_lit for p in parts):
        return buf_lit(bytes(p.value for p in parts))
    return intern(Op.BYTES, BUFFER, tuple(parts))


def buf_concat(*bufs: Expr) -> Expr:
    flat: list[Expr] = []
    for buf in bufs:
        _expect("buf_concat", buf, BUFFER)
        for part in buf.args if buf.op is Op.BUF_CONCAT else (buf,):
            if part.is_lit and not part.value:
                continue
            if flat and flat[-1].is_lit and part.is_lit:
                flat[-1] = buf_lit(flat[-1].value + part.value)
            else:
                flat.append(part)
    if not flat:
        return EMPTY
    if len(flat) == 1:
        return flat[0]
    return intern(Op.BUF_CONCAT, BUFFER, tuple(flat))


def buf_length(buf: Expr) -> Expr:
    _expect("buf_length", buf, BUFFER)
    if buf.is_lit:
        return lit(len(buf.value))
    if buf.op is Op.BYTES:
        return lit(len(buf.args))
    if buf.op is Op.VAR:
        return length_var(buf.name)
    if buf.op is Op.BUF_SLICE:
        return buf.args[2]
    total = ZERO
    for part in buf.args:
        total = add(total, buf_length(part))
    return total


def read_byte(buf: Expr, index: Expr) -> Expr:
    """Byte at *index*; reads past the end of the buffer are zero."""
    _expect("read_byte", buf, BUFFER)
    _expect("read_byte index", index, WORD)
    while index.is_lit:
        i = index.value
        if buf.is_lit:
            return lit(buf.value[i], 8) if i < len(buf.value) else lit(0, 8)
        if buf.op is Op.BYTES:
            return buf.args[i] if i < len(buf.args) else lit(0, 8)
        if buf.op is Op.BUF_CONCAT:
            head = buf.args[0]
            head_len = buf_length(head)
            if not head_len.is_lit:
                break
            if i < head_len.value:
                return read_byte(head, index)
            rest = buf_concat(*buf.args[1:])
            buf, index = rest, lit(i - head_len.value)
            continue
        if buf.op is Op.BUF_SLICE:
            size = buf.args[2]
            if size.is_lit and i >= size.value:
                return lit(0, 8)
            if size.is_lit:
                buf, index = buf.args[0], add(buf.args[1], index)
                continue
        break
    return intern(Op.READ_BYTE, BYTE, (buf, index))


def read_word(buf: Expr, index: Expr) -> Expr:
    """Big-endian 32-byte word at *index*."""
    return concat(*(read_byte(buf, add(index, lit(i))) for i in range(32)))


def word_to_bytes(word: Expr) -> list[Expr]:
    _expect("word_to_bytes", word, WORD)
    return [extract(255 - 8 * i, 248 - 8 * i, word) for i in range(32)]


def buf_slice(buf: Expr, offset: Expr, size: Expr) -> Expr:
    _expect("buf_slice", buf, BUFFER)
    if size.is_lit and size.value <= MAX_FOLDED_SLICE:
        if buf.is_lit and offset.is_lit:
            data = buf.value[offset.value : offset.value + size.value]
            return buf_lit(data.ljust(size.value, b"\x00"))
        return buf_bytes([read_byte(buf, add(offset, lit(i))) for i in range(size.value)])
    return intern(Op.BUF_SLICE, BUFFER, (buf, offset, size))


def buf_eq(a: Expr, b: Expr) -> Expr:
    """Equality of two buffers with concrete lengths."""
    la, lb = buf_length(a), buf_length(b)
    if not (la.is_lit and lb.is_lit):
        raise WidthMismatch("buf_eq requires buffers of concrete length")
    if la.value != lb.value:
        return FALSE
    if a is b:
        return TRUE
    return band(*(eq(read_byte(a, lit(i)), read_byte(b, lit(i))) for i in range(la.value)))


def keccak(buf: Expr) -> Expr:
    """keccak256 of a concrete-length buffer; symbolic data stays uninterpreted."""
    size = buf_length(buf)
    if not size.is_lit:
        raise WidthMismatch("keccak requires a buffer of concrete length")
    if buf.is_lit:
        return lit(int.from_bytes(_keccak(buf.value), "big"))
    data = concat(*(read_byte(buf, lit(i)) for i in range(size.value)))
    return apply(f"keccak256_{8 * size.value}", data)


def keccak_bytes(data: bytes) -> bytes:
    return _keccak(data)


# -- storage arrays ----------------------------------------------------------


def storage_var(name: str) -> Expr:
    return intern(Op.VAR, STORAGE, name=name)


def storage_lit(value: ArrayValue) -> Expr:
    return intern(Op.LIT, STORAGE, value=value)


EMPTY_STORAGE = storage_lit(ArrayValue())


def sstore(storage: Expr, key: Expr, value: Expr) -> Expr:
    _expect("sstore", storage, STORAGE)
    _expect("sstore key", key, WORD)
    _expect("sstore value", value, WORD)
    if storage.is_lit and key.is_lit and value.is_lit:
        return storage_lit(storage.value.set(key.value, value.value))
    if storage.op is Op.SSTORE and storage.args[1] is key:
        storage = storage.args[0]
    return intern(Op.SSTORE, STORAGE, (storage, key, value))


def sload(storage: Expr, key: Expr) -> Expr:
    _expect("sload", storage, STORAGE)
    _expect("sload key", key, WORD)
    while storage.op is Op.SSTORE:
        written = storage.args[1]
        if written is key:
            return storage.args[2]
        if written.is_lit and key.is_lit:
            storage = storage.args[0]
            continue
        break
    if storage.is_lit and (key.is_lit or not storage.value.entries):
        return lit(storage.value.get(key.value) if key.is_lit else storage.value.default)
    return intern(Op.SLOAD, WORD, (storage, key))


def select(array: Expr, index: Expr) -> Expr:
    """Raw array read of a buffer or storage variable, ignoring buffer length."""
    if array.op is not Op.VAR or array.sort not in (BUFFER, STORAGE):
        raise WidthMismatch(f"select expects an array variable, got {array!r}")
    _expect("select index", index, WORD)
    return intern(Op.SELECT, BYTE if array.sort == BUFFER else WORD, (array, index))


def conjunction(xs: Iterable[Expr]) -> Expr:
    return band(*xs)
