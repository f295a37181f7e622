"""Expression model: interning, folding and evaluation."""
import pytest

from evm_sym.errors import WidthMismatch
from evm_sym.expr import BOOL, ArrayValue, Model, Op, evaluate, evaluate_int, free_variables, substitute
from evm_sym.expr import build as B

MAX = (1 << 256) - 1


def test_structurally_equal_nodes_are_identical():
    x = B.var("x")
    assert B.var("x") is x
    assert B.add(x, B.lit(1)) is B.add(x, B.lit(1))
    assert B.lit(5) is B.lit(5)
    assert B.lit(5) is not B.lit(5, 8)


def test_commutative_operands_are_ordered_canonically():
    x, y = B.var("x"), B.var("y")
    assert B.add(x, y) is B.add(y, x)
    assert B.mul(x, y) is B.mul(y, x)
    assert B.eq(x, y) is B.eq(y, x)
    a, b = B.ult(x, y), B.ult(y, x)
    assert B.band(a, b) is B.band(b, a)
    assert B.bor(a, b) is B.bor(b, a)


def test_literal_operands_fold():
    assert B.add(B.lit(MAX), B.lit(2)) is B.lit(1)
    assert B.sub(B.lit(0), B.lit(1)) is B.lit(MAX)
    assert B.udiv(B.lit(7), B.lit(0)) is B.ZERO
    assert B.urem(B.lit(7), B.lit(0)) is B.ZERO
    assert B.sdiv(B.lit(MAX), B.lit(1)) is B.lit(MAX)
    assert B.sdiv(B.lit(-6 & MAX), B.lit(4)) is B.lit(-1 & MAX)
    assert B.srem(B.lit(-7 & MAX), B.lit(3)) is B.lit(-1 & MAX)
    assert B.exp(B.lit(2), B.lit(256)) is B.ZERO
    assert B.exp(B.lit(3), B.lit(3)) is B.lit(27)
    assert B.addmod(B.lit(MAX), B.lit(2), B.lit(10)) is B.lit((MAX + 2) % 10)
    assert B.mulmod(B.lit(5), B.lit(5), B.lit(0)) is B.ZERO


def test_shift_and_byte_semantics():
    assert B.shl(B.lit(8), B.lit(1)) is B.lit(256)
    assert B.shl(B.lit(256), B.lit(1)) is B.ZERO
    assert B.lshr(B.lit(4), B.lit(0xF0)) is B.lit(0x0F)
    assert B.ashr(B.lit(4), B.lit(MAX)) is B.lit(MAX)
    assert B.ashr(B.lit(300), B.lit(1 << 255)) is B.lit(MAX)
    assert B.byte(B.lit(31), B.lit(0xAB)) is B.lit(0xAB)
    assert B.byte(B.lit(0), B.lit(0xAB)) is B.ZERO
    assert B.byte(B.lit(32), B.lit(MAX)) is B.ZERO
    assert B.signextend(B.lit(0), B.lit(0x80)) is B.lit(MAX - 0x7F)


def test_comparisons_fold_to_booleans():
    assert B.ult(B.lit(1), B.lit(2)) is B.TRUE
    assert B.slt(B.lit(MAX), B.lit(0)) is B.TRUE
    assert B.ult(B.var("x"), B.ZERO) is B.FALSE
    assert B.eq(B.var("x"), B.var("x")) is B.TRUE
    assert B.iszero(B.lit(0)) is B.ONE


def test_identities_on_symbolic_operands():
    x = B.var("x")
    assert B.add(x, B.ZERO) is x
    assert B.mul(x, B.ONE) is x
    assert B.mul(x, B.ZERO) is B.ZERO
    assert B.sub(x, x) is B.ZERO
    assert B.xor(x, x) is B.ZERO
    assert B.not_(B.not_(x)) is x
    assert B.bnot(B.bnot(B.ult(x, B.lit(3)))) is B.ult(x, B.lit(3))


def test_iszero_of_comparison_becomes_negated_condition():
    x = B.var("x")
    cond = B.ult(x, B.lit(10))
    word = B.bool_to_word(cond)
    assert B.is_nonzero(word) is cond
    assert B.is_nonzero(B.iszero(word)) is B.bnot(cond)


def test_boolean_connectives_flatten_and_short_circuit():
    p, q = B.bool_var("p"), B.bool_var("q")
    assert B.band(p, B.TRUE) is p
    assert B.band(p, B.FALSE) is B.FALSE
    assert B.bor(p, B.TRUE) is B.TRUE
    assert B.band(B.band(p, q), p) is B.band(p, q)
    assert B.band() is B.TRUE
    assert B.bor() is B.FALSE


def test_extract_and_concat_round_trip_to_the_word():
    x = B.var("x")
    assert B.concat(*B.word_to_bytes(x)) is x
    assert B.extract(255, 0, x) is x
    assert B.concat(B.lit(1, 8), B.lit(2, 8)) is B.lit(0x0102, 16)


def test_mismatched_widths_are_rejected():
    with pytest.raises(WidthMismatch):
        B.add(B.var("x"), B.var("y", 8))
    with pytest.raises(WidthMismatch):
        B.band(B.var("x"))
    with pytest.raises(WidthMismatch):
        B.eq(B.var("x"), B.bool_var("p"))


def test_buffer_reads_past_the_end_are_zero():
    buf = B.buf_lit(b"\x01\x02")
    assert B.read_byte(buf, B.lit(1)) is B.lit(2, 8)
    assert B.read_byte(buf, B.lit(5)) is B.lit(0, 8)
    assert B.read_word(buf, B.ZERO) is B.lit(0x0102 << 240)


def test_buffer_concat_and_slice():
    head = B.buf_lit(b"\xaa")
    tail = B.buf_var("tail")
    joined = B.buf_concat(head, tail)
    assert B.read_byte(joined, B.ZERO) is B.lit(0xAA, 8)
    assert B.buf_length(joined) is B.add(B.ONE, B.length_var("tail"))
    assert B.buf_slice(B.buf_lit(b"\x01\x02\x03"), B.ONE, B.lit(4)) is B.buf_lit(b"\x02\x03\x00\x00")
    assert B.buf_concat(B.EMPTY, tail) is tail


def test_storage_reads_see_through_literal_writes():
    base = B.storage_var("s")
    written = B.sstore(B.sstore(base, B.lit(1), B.lit(10)), B.lit(2), B.lit(20))
    assert B.sload(written, B.lit(1)) is B.lit(10)
    assert B.sload(written, B.lit(2)) is B.lit(20)
    assert B.sload(written, B.lit(3)).op is Op.SLOAD
    assert B.sload(written, B.lit(3)).args[0] is base
    assert B.sload(B.EMPTY_STORAGE, B.var("k")) is B.ZERO


def test_keccak_of_concrete_data_is_hashed():
    digest = B.keccak(B.EMPTY)
    assert digest is B.lit(0xC5D2460186F7233C927E7DB2DCC703C0E500B653CA82273B7BFAD8045D85A470)
    assert B.keccak(B.buf_bytes(B.word_to_bytes(B.var("x")))).op is Op.APPLY


def test_evaluate_under_model():
    x, y = B.var("x"), B.var("y")
    model = Model(values={"x": MAX, "y": 2})
    assert evaluate(B.add(x, y), model) is B.lit(1)
    assert evaluate(B.ult(B.add(x, y), x), model) is B.TRUE
    assert evaluate_int(B.mul(y, y), model) == 4
    assert evaluate(B.bool_var("p"), Model()) is B.FALSE


def test_evaluate_buffers_and_storage():
    model = Model(
        values={"cd_length": 3},
        arrays={"cd": ArrayValue.of({0: 0x11, 2: 0x33}), "s": ArrayValue.of({7: 99})},
    )
    assert evaluate(B.buf_var("cd"), model).value == b"\x11\x00\x33"
    assert evaluate_int(B.sload(B.storage_var("s"), B.lit(7)), model) == 99


def test_evaluate_hashes_keccak_of_modelled_data():
    x = B.var("x")
    hashed = B.keccak(B.buf_bytes(B.word_to_bytes(x)))
    expected = B.keccak(B.buf_lit((5).to_bytes(32, "big")))
    assert evaluate(hashed, Model(values={"x": 5})) is expected


def test_substitute_refolds():
    x = B.var("x")
    expr = B.ult(B.add(x, B.ONE), B.lit(10))
    assert substitute(expr, {x: B.lit(3)}) is B.TRUE


def test_free_variables_are_sorted():
    names = [v.name for v in free_variables([B.add(B.var("b"), B.var("a")), B.bool_var("p")])]
    assert names == ["p", "a", "b"]
    assert B.bool_var("p").sort is BOOL
